"""Adaptive time-range partitioning.

The planner walks a requested range in steps of a slice width, counts each
window, and bisects any window holding more than ``max_records_per_bin``
records until it either fits or the slice reaches the floor (``min_slice``).
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from la_archive.kql import format_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeRange:
    """Half-open interval [start, end)."""

    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"range end {self.end} is before start {self.start}")

    @property
    def width(self) -> timedelta:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return self.start >= self.end

    def __str__(self):
        return f"{format_timestamp(self.start)} → {format_timestamp(self.end)}"


@dataclass(frozen=True)
class Bin:
    start: datetime
    end: datetime
    count: int
    slice: timedelta
    depth: int = 0

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(self.start, self.end)


def halve_slice(slice_: timedelta, min_slice: timedelta) -> timedelta:
    """Half of ``slice_``, rounded down to a whole multiple of ``min_slice``, never below it."""
    half = slice_ // 2
    half = (half // min_slice) * min_slice
    return max(half, min_slice)


class BinPlanner:
    def __init__(self, counter, max_records_per_bin: int, min_slice: timedelta):
        if min_slice <= timedelta(0):
            raise ValueError("min_slice must be positive")
        self.counter = counter
        self.max_records_per_bin = max_records_per_bin
        self.min_slice = min_slice

    def _accepts(self, count: int, slice_: timedelta, width: timedelta) -> bool:
        return (count <= self.max_records_per_bin
                or slice_ <= self.min_slice
                or width <= self.min_slice)

    def plan(self, time_range: TimeRange, initial_slice: timedelta) -> list[Bin]:
        """Splits ``time_range`` into ordered, contiguous bins.

        Every returned bin holds at most ``max_records_per_bin`` records unless
        its slice is already the floor. An empty range yields no bins.
        """
        if time_range is None or time_range.is_empty:
            logger.info("Requested range is empty, nothing to plan.")
            return []
        if initial_slice <= timedelta(0):
            raise ValueError("initial_slice must be positive")

        bins: list[Bin] = []
        # Each frame walks [start, end) in steps of slice. Frames are popped
        # LIFO, so a split window is resolved before the rest of its parent.
        stack = [(time_range.start, time_range.end, initial_slice, 0)]
        while stack:
            start, end, slice_, depth = stack.pop()
            window_end = min(start + slice_, end)
            if window_end < end:
                stack.append((window_end, end, slice_, depth))

            window = TimeRange(start, window_end)
            count = self.counter.count(window)
            if self._accepts(count, slice_, window.width):
                if count > self.max_records_per_bin:
                    logger.warning(f"⚠️ {window} holds {count} records but cannot be split below {self.min_slice}")
                logger.debug(f"{'  ' * depth}✅ {window}: {count} records (slice {slice_})")
                bins.append(Bin(start, window_end, count, slice_, depth))
                continue

            next_slice = halve_slice(min(slice_, window.width), self.min_slice)
            logger.debug(f"{'  ' * depth}↪ {window}: {count} records > {self.max_records_per_bin}, "
                         f"splitting at {next_slice}")
            stack.append((start, window_end, next_slice, depth + 1))

        logger.info(f"Planned {len(bins)} bins for {time_range}")
        return bins
