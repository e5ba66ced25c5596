import gzip
import json
import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from la_archive.consolidate import ConsolidatedBin
from la_archive.kql import DEFAULT_TIME_COLUMN, build_fetch_query, format_timestamp
from la_archive.manifest import Manifest, ManifestEntry
from la_archive.retry import Exhausted

logger = logging.getLogger(__name__)

UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")
FILENAME_SUBSTITUTE = "_"


def sanitize(s):
    return UNSAFE_FILENAME_CHARS.sub(FILENAME_SUBSTITUTE, str(s))


def bin_file_name(table, start, end):
    return (f"{sanitize(table)}_{sanitize(format_timestamp(start))}_"
            f"{sanitize(format_timestamp(end))}.ndjson.gz")


class Outcome(Enum):
    EXPORTED = "exported"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class BinOutcome:
    bin: ConsolidatedBin
    outcome: Outcome
    file_name: Optional[str] = None
    record_count: int = 0
    error: Optional[str] = None


@dataclass
class ExportSummary:
    total: int = 0
    exported: int = 0
    skipped: int = 0
    failed: int = 0
    records: int = 0
    failures: list = field(default_factory=list)
    unmeasured: list = field(default_factory=list)

    def record(self, result: BinOutcome):
        self.total += 1
        if result.outcome is Outcome.EXPORTED:
            self.exported += 1
            self.records += result.record_count
        elif result.outcome is Outcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
            self.failures.append((result.bin, result.error))

    def log(self):
        logger.info(f"📊 Bins processed: {self.total}, exported: {self.exported}, "
                    f"skipped (empty): {self.skipped}, failed: {self.failed}, records: {self.records}")
        for b, error in self.failures:
            logger.warning(f"- failed {b.time_range}: {error}")
        if self.unmeasured:
            logger.warning(f"⚠️ {len(self.unmeasured)} range(s) could not be counted and were planned as empty:")
            for r in self.unmeasured:
                logger.warning(f"- unmeasured {r}")


class ExportWriter:
    """Fetches each bin, writes it as gzipped NDJSON and records it in the manifest."""

    def __init__(self, client, executor, table, output_dir, manifest, where=None,
                 time_column=DEFAULT_TIME_COLUMN):
        self.client = client
        self.executor = executor
        self.table = table
        self.output_dir = output_dir
        self.manifest = manifest if isinstance(manifest, Manifest) else Manifest(manifest)
        self.where = where
        self.time_column = time_column

    def _fetch(self, b):
        kql = build_fetch_query(self.table, b.time_range, self.where, self.time_column)
        return self.executor.execute(self.client.query, kql, timeout=self.executor.timeout)

    @staticmethod
    def _write_ndjson(records, raw_path):
        with open(raw_path, "w", encoding="utf-8") as f:
            for record in records:
                f.write(json.dumps(record, default=str))
                f.write("\n")

    @staticmethod
    def _compress(raw_path, gz_path):
        with open(raw_path, "rb") as src, gzip.open(gz_path, "wb") as dst:
            shutil.copyfileobj(src, dst)

    @staticmethod
    def _remove_quietly(path):
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")

    def export_bin(self, b):
        file_name = bin_file_name(self.table, b.start, b.end)
        gz_path = os.path.join(self.output_dir, file_name)
        raw_path = gz_path[:-len(".gz")]

        try:
            records = self._fetch(b)
        except Exhausted as e:
            logger.error(f"❌ Fetch failed for {b.time_range}: {e}")
            return BinOutcome(b, Outcome.FAILED, error=str(e))

        if not records:
            logger.info(f"💨 No records in {b.time_range}, skipping")
            return BinOutcome(b, Outcome.SKIPPED)

        try:
            self._write_ndjson(records, raw_path)
            self._compress(raw_path, gz_path)
            if os.path.getsize(gz_path) == 0:
                raise IOError(f"compressed file {gz_path} is empty")
            self._remove_quietly(raw_path)
            self.manifest.append(ManifestEntry(file_name, self.table, b.start, b.end, len(records)))
        except Exception as e:
            logger.error(f"❌ Failed to write {file_name}: {e}")
            self._remove_quietly(raw_path)
            self._remove_quietly(gz_path)
            return BinOutcome(b, Outcome.FAILED, file_name=file_name, error=str(e))

        logger.info(f"✅ Saved {len(records)} records to {gz_path}")
        return BinOutcome(b, Outcome.EXPORTED, file_name=file_name, record_count=len(records))

    def export(self, bins, summary=None, progress=None):
        """Exports bins in order. A failed bin never stops the loop."""
        summary = summary or ExportSummary()
        for b in bins:
            summary.record(self.export_bin(b))
            if progress is not None:
                progress.update(1)
        return summary
