#!/usr/bin/env python3
import argparse
import logging
import sys
import time

from decouple import config
from tqdm import tqdm

from la_archive.client import DEFAULT_ENDPOINT, LogAnalyticsClient
from la_archive.config import (DEFAULT_INITIAL_SLICE, DEFAULT_MAX_RECORDS_PER_BIN, DEFAULT_MIN_SLICE,
                               ConfigError, ExportConfig, parse_timestamp)
from la_archive.consolidate import consolidate
from la_archive.counter import RangeCounter
from la_archive.kql import DEFAULT_TIME_COLUMN, format_timestamp
from la_archive.manifest import Manifest, find_gaps
from la_archive.planner import BinPlanner, TimeRange
from la_archive.retry import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_SECONDS, RetryExecutor
from la_archive.writer import ExportSummary, ExportWriter

logger = logging.getLogger("la_archive")


def configure_logging(logfile, log_level):
    loglevel = getattr(logging, log_level.upper(), logging.INFO)
    handlers = [logging.StreamHandler()]
    if logfile:
        handlers.insert(0, logging.FileHandler(logfile))
    logging.basicConfig(
        level=loglevel,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )
    quiet = logging.DEBUG if loglevel == logging.DEBUG else logging.WARNING
    logging.getLogger("azure").setLevel(quiet)
    logging.getLogger("urllib3").setLevel(quiet)
    logging.info("Logging initialized.")


def make_client(cfg):
    return LogAnalyticsClient(cfg.workspace_id, endpoint=cfg.endpoint, access_token=cfg.access_token)


def plan_bins(cfg, client, sleep=time.sleep):
    """Plans and consolidates bins. Returns (consolidated bins, counter)."""
    executor = RetryExecutor(max_retries=cfg.max_retries, timeout=cfg.timeout, sleep=sleep)
    counter = RangeCounter(client, executor, cfg.table, where=cfg.where,
                           time_column=cfg.time_column, sleep=sleep)
    planner = BinPlanner(counter, cfg.max_records_per_bin, cfg.min_slice)
    bins = planner.plan(cfg.time_range, cfg.initial_slice)
    merged = consolidate(bins, cfg.max_records_per_bin)
    logger.info(f"Consolidated {len(bins)} bins into {len(merged)} windows")
    return merged, counter


def run_export(cfg, client=None, sleep=time.sleep, progress=False):
    """Plan -> consolidate -> export, one stage after the other."""
    client = client or make_client(cfg)
    bins, counter = plan_bins(cfg, client, sleep=sleep)

    summary = ExportSummary(unmeasured=list(counter.unmeasured))
    if not bins:
        logger.info("Nothing to export.")
        return summary

    executor = RetryExecutor(max_retries=cfg.max_retries, timeout=cfg.timeout, sleep=sleep)
    writer = ExportWriter(client, executor, cfg.table, cfg.output_dir, Manifest(cfg.manifest_path),
                          where=cfg.where, time_column=cfg.time_column)
    with tqdm(total=len(bins), unit="bin", desc=cfg.table, disable=not progress) as bar:
        writer.export(bins, summary=summary, progress=bar)
    return summary


def config_from_args(args):
    return ExportConfig(
        table=args.table,
        workspace_id=args.workspace_id,
        start=args.start,
        end=args.end,
        output_dir=args.output_dir,
        where=args.where,
        initial_slice=args.initial_slice,
        min_slice=args.min_slice,
        max_records_per_bin=args.max_records_per_bin,
        max_retries=args.max_retries,
        timeout=args.timeout,
        time_column=args.time_column,
        endpoint=args.endpoint,
        access_token=config("LA_ACCESS_TOKEN", default=None),
        manifest_path=args.manifest,
    )


def cmd_export(args):
    cfg = config_from_args(args).validate()
    logger.info(f"🔍 Exporting {cfg.table} from {format_timestamp(cfg.start)} to {format_timestamp(cfg.end)} "
                f"into {cfg.output_dir}")
    summary = run_export(cfg, progress=args.progress)
    summary.log()
    if summary.failed:
        logger.warning("⚠️ Some bins failed. Re-run export on the reported ranges.")
        return 1
    logger.info("🎉 Export completed.")
    return 0


def cmd_plan(args):
    cfg = config_from_args(args).validate(check_output=False)
    bins, counter = plan_bins(cfg, make_client(cfg))
    total = 0
    for b in bins:
        total += b.count
        print(f"{format_timestamp(b.start)}  {format_timestamp(b.end)}  {b.count}")
    print(f"{len(bins)} windows, {total} records")
    for r in counter.unmeasured:
        logger.warning(f"⚠️ Unmeasured range (counted as 0): {r}")
    return 0


def cmd_gaps(args):
    start, end = parse_timestamp(args.start), parse_timestamp(args.end)
    if start >= end:
        raise ConfigError(f"Start {args.start} must be before end {args.end}.")
    time_range = TimeRange(start, end)
    entries = Manifest(args.manifest).read()
    gaps = find_gaps(entries, time_range, table_name=args.table)
    if not gaps:
        print(f"✅ {time_range} is fully covered by {args.manifest}")
        return 0
    for gap in gaps:
        print(f"{format_timestamp(gap.start)}  {format_timestamp(gap.end)}")
    print(f"{len(gaps)} gap(s)")
    return 0


def add_query_args(p):
    p.add_argument("--table", default=config("LA_TABLE", default=None),
                   help="Log Analytics table to export. Env: LA_TABLE")
    p.add_argument("--workspace-id", default=config("LA_WORKSPACE_ID", default=None),
                   help="Log Analytics workspace id. Env: LA_WORKSPACE_ID")
    p.add_argument("--start", required=True, help="Start time, ISO 8601 (inclusive). Naive times are UTC.")
    p.add_argument("--end", required=True, help="End time, ISO 8601 (exclusive). Naive times are UTC.")
    p.add_argument("--where", default=config("LA_WHERE", default=None),
                   help="Additional KQL filter, e.g. \"Level == 'Error'\". Env: LA_WHERE")
    p.add_argument("--initial-slice", default=config("LA_INITIAL_SLICE", default=DEFAULT_INITIAL_SLICE),
                   help="Width of the first windows, e.g. 1d, 6h (default: %(default)s). Env: LA_INITIAL_SLICE")
    p.add_argument("--min-slice", default=config("LA_MIN_SLICE", default=DEFAULT_MIN_SLICE),
                   help="Smallest window; never split below this (default: %(default)s). Env: LA_MIN_SLICE")
    p.add_argument("--max-records-per-bin", type=int,
                   default=config("LA_MAX_RECORDS_PER_BIN", default=DEFAULT_MAX_RECORDS_PER_BIN, cast=int),
                   help="Row ceiling per query (default: %(default)s). Env: LA_MAX_RECORDS_PER_BIN")
    p.add_argument("--max-retries", type=int,
                   default=config("LA_MAX_RETRIES", default=DEFAULT_MAX_RETRIES, cast=int),
                   help="Attempts per query (default: %(default)s). Env: LA_MAX_RETRIES")
    p.add_argument("--timeout", type=float,
                   default=config("LA_TIMEOUT", default=DEFAULT_TIMEOUT_SECONDS, cast=float),
                   help="Per-query timeout in seconds (default: %(default)s). Env: LA_TIMEOUT")
    p.add_argument("--time-column", default=config("LA_TIME_COLUMN", default=DEFAULT_TIME_COLUMN),
                   help="Timestamp column (default: %(default)s). Env: LA_TIME_COLUMN")
    p.add_argument("--endpoint", default=config("LA_ENDPOINT", default=DEFAULT_ENDPOINT),
                   help="Query API endpoint (default: %(default)s). Env: LA_ENDPOINT")
    p.add_argument("--output-dir", default=config("LA_OUTPUT_DIR", default="."),
                   help="Directory for .ndjson.gz files (default: %(default)s). Env: LA_OUTPUT_DIR")
    p.add_argument("--manifest", default=config("LA_MANIFEST", default=None),
                   help="Manifest CSV path (default: <output-dir>/manifest.csv). Env: LA_MANIFEST")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="la-archive",
        description="Export Log Analytics table data into gzip-compressed NDJSON files.")
    parser.add_argument("--logfile", default=config("LA_LOGFILE", default="la-archive.log"),
                        help="Path to the log file; empty to disable (default: %(default)s).")
    parser.add_argument("--log-level", default=config("LA_LOG_LEVEL", default="INFO"),
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser("export", help="Plan, consolidate and export a time range.")
    add_query_args(export_parser)
    export_parser.add_argument("--progress", action="store_true", help="Show a progress bar over bins.")
    export_parser.set_defaults(func=cmd_export)

    plan_parser = subparsers.add_parser("plan", help="Dry run: print the windows an export would use.")
    add_query_args(plan_parser)
    plan_parser.set_defaults(func=cmd_plan)

    gaps_parser = subparsers.add_parser(
        "gaps", help="List sub-ranges with no exported file in the manifest (empty windows show as gaps).")
    gaps_parser.add_argument("--manifest", required=True, help="Manifest CSV to inspect.")
    gaps_parser.add_argument("--table", help="Only consider rows for this table.")
    gaps_parser.add_argument("--start", required=True)
    gaps_parser.add_argument("--end", required=True)
    gaps_parser.set_defaults(func=cmd_gaps)

    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    configure_logging(args.logfile, args.log_level)
    try:
        return args.func(args)
    except ConfigError as e:
        logger.critical(f"🚨 Configuration error: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
