import os
import re
from dataclasses import dataclass
from datetime import timedelta, timezone

from dateutil import parser as dtparser

from la_archive.client import DEFAULT_ENDPOINT
from la_archive.kql import DEFAULT_TIME_COLUMN
from la_archive.planner import TimeRange
from la_archive.retry import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_SECONDS

DEFAULT_INITIAL_SLICE = "1d"
DEFAULT_MIN_SLICE = "1m"
DEFAULT_MAX_RECORDS_PER_BIN = 500000  # Log Analytics caps a query result at 500000 rows
DEFAULT_MANIFEST_NAME = "manifest.csv"

DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}
DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$")


class ConfigError(Exception):
    pass


def parse_duration(value):
    """'15m', '1d', '90s', '250ms' or plain seconds -> timedelta."""
    if isinstance(value, timedelta):
        return value
    match = DURATION_RE.match(str(value))
    if not match:
        raise ConfigError(f"Invalid duration: {value!r} (expected e.g. 1d, 6h, 15m, 30s)")
    amount, unit = match.groups()
    return float(amount) * DURATION_UNITS[unit or "s"]


def parse_timestamp(value):
    """ISO-8601 -> timezone-aware UTC datetime. Naive values are taken as UTC."""
    try:
        dt = dtparser.isoparse(value) if isinstance(value, str) else value
    except ValueError as e:
        raise ConfigError(f"Invalid timestamp {value!r}: {e}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class ExportConfig:
    table: str
    workspace_id: str
    start: object
    end: object
    output_dir: str = "."
    where: str = None
    initial_slice: timedelta = parse_duration(DEFAULT_INITIAL_SLICE)
    min_slice: timedelta = parse_duration(DEFAULT_MIN_SLICE)
    max_records_per_bin: int = DEFAULT_MAX_RECORDS_PER_BIN
    max_retries: int = DEFAULT_MAX_RETRIES
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    time_column: str = DEFAULT_TIME_COLUMN
    endpoint: str = DEFAULT_ENDPOINT
    access_token: str = None
    manifest_path: str = None

    def __post_init__(self):
        if self.manifest_path is None:
            self.manifest_path = os.path.join(self.output_dir, DEFAULT_MANIFEST_NAME)

    @property
    def time_range(self):
        return TimeRange(self.start, self.end)

    def validate(self, check_output=True):
        """Raises ConfigError on the first problem found. Makes no remote calls."""
        if not self.table:
            raise ConfigError("A table name is required (--table or LA_TABLE).")
        if not self.workspace_id:
            raise ConfigError("A workspace id is required (--workspace-id or LA_WORKSPACE_ID).")
        self.start = parse_timestamp(self.start)
        self.end = parse_timestamp(self.end)
        if self.start >= self.end:
            raise ConfigError(f"Start {self.start.isoformat()} must be before end {self.end.isoformat()}.")
        self.initial_slice = parse_duration(self.initial_slice)
        self.min_slice = parse_duration(self.min_slice)
        if self.initial_slice <= timedelta(0) or self.min_slice <= timedelta(0):
            raise ConfigError("Slice widths must be positive.")
        if self.min_slice > self.initial_slice:
            raise ConfigError(f"Minimum slice {self.min_slice} is larger than initial slice {self.initial_slice}.")
        if self.max_records_per_bin < 1:
            raise ConfigError("max_records_per_bin must be at least 1.")
        if self.max_retries < 1:
            raise ConfigError("max_retries must be at least 1.")
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive.")
        if check_output:
            try:
                os.makedirs(self.output_dir, exist_ok=True)
            except OSError as e:
                raise ConfigError(f"Cannot create output directory {self.output_dir}: {e}") from e
            if not os.access(self.output_dir, os.W_OK):
                raise ConfigError(f"Output directory {self.output_dir} is not writable.")
        return self
