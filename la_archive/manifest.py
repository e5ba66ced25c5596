import csv
import logging
import os
from dataclasses import dataclass
from datetime import datetime

from dateutil import parser as dtparser

from la_archive.kql import format_timestamp
from la_archive.planner import TimeRange

logger = logging.getLogger(__name__)

MANIFEST_HEADER = ["FileName", "TableName", "StartTime", "EndTime", "RecordCount"]


@dataclass(frozen=True)
class ManifestEntry:
    file_name: str
    table_name: str
    start_time: datetime
    end_time: datetime
    record_count: int

    def to_row(self):
        return [self.file_name, self.table_name, format_timestamp(self.start_time),
                format_timestamp(self.end_time), self.record_count]

    @classmethod
    def from_row(cls, row):
        return cls(
            file_name=row["FileName"],
            table_name=row["TableName"],
            start_time=dtparser.isoparse(row["StartTime"]),
            end_time=dtparser.isoparse(row["EndTime"]),
            record_count=int(row["RecordCount"]),
        )


class Manifest:
    """Append-only CSV ledger of exported bins. Never rewritten or truncated."""

    def __init__(self, path):
        self.path = path

    def append(self, entry: ManifestEntry):
        new_file = not os.path.exists(self.path) or os.path.getsize(self.path) == 0
        with open(self.path, "a", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            if new_file:
                writer.writerow(MANIFEST_HEADER)
            writer.writerow(entry.to_row())

    def read(self):
        if not os.path.exists(self.path):
            return []
        with open(self.path, newline="", encoding="utf-8") as f:
            return [ManifestEntry.from_row(row) for row in csv.DictReader(f)]


def find_gaps(entries, time_range, table_name=None):
    """Sub-ranges of ``time_range`` not covered by any manifest entry."""
    covered = sorted(
        (e.start_time, e.end_time) for e in entries
        if table_name is None or e.table_name == table_name
    )
    gaps = []
    cursor = time_range.start
    for start, end in covered:
        if end <= cursor:
            continue
        if start >= time_range.end:
            break
        if start > cursor:
            gaps.append(TimeRange(cursor, start))
        cursor = max(cursor, end)
    if cursor < time_range.end:
        gaps.append(TimeRange(cursor, time_range.end))
    return gaps
