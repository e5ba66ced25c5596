import logging
import time

from la_archive.kql import DEFAULT_TIME_COLUMN, build_count_query, format_timestamp
from la_archive.retry import Exhausted

logger = logging.getLogger(__name__)

COUNT_PAUSE_SECONDS = 0.05


class RangeCounter:
    """Asks the query service how many records fall inside a time range.

    A range that cannot be measured (retries exhausted, malformed or empty
    response) is reported as 0 so the export keeps moving. Such ranges are
    logged and kept in `unmeasured` so they are never confused with ranges
    that are genuinely empty.
    """

    def __init__(self, client, executor, table, where=None, time_column=DEFAULT_TIME_COLUMN,
                 pause=COUNT_PAUSE_SECONDS, sleep=time.sleep):
        self.client = client
        self.executor = executor
        self.table = table
        self.where = where
        self.time_column = time_column
        self.pause = pause
        self._sleep = sleep
        self.unmeasured = []

    def count(self, time_range):
        kql = build_count_query(self.table, time_range, self.where, self.time_column)
        span = f"{format_timestamp(time_range.start)} → {format_timestamp(time_range.end)}"
        try:
            value = self.executor.execute(self.client.count, kql, timeout=self.executor.timeout)
        except Exhausted as e:
            logger.warning(f"⚠️ Could not count {span}, treating as 0 records: {e}")
            self.unmeasured.append(time_range)
            return 0
        finally:
            self._sleep(self.pause)

        if value is None or value < 0:
            logger.warning(f"⚠️ Malformed or empty count response for {span}, treating as 0 records")
            self.unmeasured.append(time_range)
            return 0
        logger.debug(f"Counted {value} records in {span}")
        return value
