from la_archive.consolidate import ConsolidatedBin, consolidate
from la_archive.counter import RangeCounter
from la_archive.planner import Bin, BinPlanner, TimeRange
from la_archive.retry import Exhausted, RetryExecutor
from la_archive.writer import ExportSummary, ExportWriter

__version__ = "0.1.0"
