from dataclasses import dataclass
from datetime import datetime

from la_archive.planner import TimeRange


@dataclass(frozen=True)
class ConsolidatedBin:
    start: datetime
    end: datetime
    count: int

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(self.start, self.end)


def consolidate(bins, max_records_per_bin):
    """
    Greedily merge adjacent bins into as few windows as possible.

    A bin is absorbed into the running window only when it starts exactly
    where the window ends and the combined count stays within
    ``max_records_per_bin``. Order is preserved.
    """

    merged: list[ConsolidatedBin] = []
    current = None

    for b in bins:
        if (
            current is not None
            and b.start == current.end
            and current.count + b.count <= max_records_per_bin
        ):
            current = ConsolidatedBin(current.start, b.end, current.count + b.count)
            continue

        if current is not None:
            merged.append(current)
        current = ConsolidatedBin(b.start, b.end, b.count)

    if current is not None:
        merged.append(current)

    return merged
