import re
from datetime import datetime, timezone

from dateutil import parser as dtparser

from la_archive.planner import TimeRange

KQL_DATETIME = re.compile(r"datetime\(([^)]+)\)")

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def range_of(kql):
    start, end = KQL_DATETIME.findall(kql)[:2]
    return TimeRange(dtparser.isoparse(start), dtparser.isoparse(end))


class FakeClient:
    """Stands in for LogAnalyticsClient; answers from plain functions of the queried range."""

    def __init__(self, count_fn=None, records_fn=None):
        self.count_fn = count_fn or (lambda r: 0)
        self.records_fn = records_fn or (lambda r: [])
        self.count_calls = []
        self.query_calls = []

    def count(self, kql, timeout=None):
        r = range_of(kql)
        self.count_calls.append(r)
        return self.count_fn(r)

    def query(self, kql, timeout=None):
        r = range_of(kql)
        self.query_calls.append(r)
        return self.records_fn(r)


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)
