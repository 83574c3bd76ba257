"""Command-line runner for the collector jobs.

Usage::

    portfoliocollector daily                  # record today's snapshot
    portfoliocollector backfills              # drain queued backfill jobs
    portfoliocollector all                    # daily, then backfills
    portfoliocollector cleanup --days 365     # prune old time-series rows
    portfoliocollector stats                  # print run/job counters
    portfoliocollector request 42 --range 3Y  # queue a backfill for asset 42
    portfoliocollector retry 7                # re-queue failed job 7

Results are printed to stdout as JSON; logs go to stderr.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING, Any

import duckdb

from portfoliocollector import log_config
from portfoliocollector.collector.backfill import (
    DEFAULT_RANGE,
    RANGE_OFFSETS,
    drain_queued_backfills,
    request_backfill,
    retry_failed_backfill,
)
from portfoliocollector.collector.retention import (
    cleanup_old_data,
    get_collector_stats,
)
from portfoliocollector.collector.snapshots import record_daily_snapshot
from portfoliocollector.config import CollectorConfig
from portfoliocollector.context import CollectorContext

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all modes."""
    parser = argparse.ArgumentParser(
        prog="portfoliocollector",
        description="Portfolio snapshot and price backfill collector",
    )
    parser.add_argument("--user", type=int, default=1, help="Owner id (default: 1)")
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the collector database (default: from environment)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    modes = parser.add_subparsers(dest="mode", required=True)

    daily = modes.add_parser("daily", help="Record today's portfolio snapshot")
    daily.add_argument("--date", type=date.fromisoformat, default=None)
    modes.add_parser("backfills", help="Process queued backfill jobs")
    modes.add_parser("all", help="Run daily, then backfills")

    cleanup = modes.add_parser("cleanup", help="Delete old time-series rows")
    cleanup.add_argument("days", nargs="?", type=int, default=None)
    cleanup.add_argument("--days", dest="days_opt", type=int, default=None)
    cleanup.add_argument(
        "--audit-days",
        type=int,
        default=None,
        help="Also prune finished runs/jobs older than this many days",
    )

    modes.add_parser("stats", help="Print run and job counters")

    request = modes.add_parser("request", help="Queue a historical backfill")
    request.add_argument("asset_id", type=int)
    request.add_argument("--range", choices=list(RANGE_OFFSETS), default=DEFAULT_RANGE)

    retry = modes.add_parser("retry", help="Re-queue a failed backfill job")
    retry.add_argument("job_id", type=int)
    retry.add_argument(
        "--include-running",
        action="store_true",
        help="Also re-queue a job stuck in running after a crash",
    )
    return parser


def _emit(result: Any) -> None:
    if dataclasses.is_dataclass(result) and not isinstance(result, type):
        result = dataclasses.asdict(result)
    elif isinstance(result, list):
        result = [
            dataclasses.asdict(item) if dataclasses.is_dataclass(item) else item
            for item in result
        ]
    sys.stdout.write(json.dumps(result, indent=2, default=str) + "\n")


def run_mode(ctx: CollectorContext, args: argparse.Namespace) -> Any:
    """Execute one mode against an open context and return its result."""
    user_id: int = args.user
    cfg = ctx.config

    if args.mode == "daily":
        return record_daily_snapshot(
            ctx.conn, ctx.provider, user_id, cfg, today=args.date
        )
    if args.mode == "backfills":
        return drain_queued_backfills(ctx.conn, ctx.provider, user_id, cfg)
    if args.mode == "all":
        snapshot = record_daily_snapshot(ctx.conn, ctx.provider, user_id, cfg)
        jobs = drain_queued_backfills(ctx.conn, ctx.provider, user_id, cfg)
        return {
            "snapshot": dataclasses.asdict(snapshot),
            "jobs": [dataclasses.asdict(job) for job in jobs],
        }
    if args.mode == "cleanup":
        days = args.days_opt if args.days_opt is not None else args.days
        if days is None:
            days = cfg.retention_days
        audit_days = (
            args.audit_days if args.audit_days is not None else cfg.audit_retention_days
        )
        return cleanup_old_data(
            ctx.conn, user_id, days, audit_retention_days=audit_days
        )
    if args.mode == "stats":
        return get_collector_stats(
            ctx.conn, user_id, stuck_after_minutes=cfg.stuck_after_minutes
        )
    if args.mode == "request":
        return request_backfill(ctx.conn, user_id, args.asset_id, args.range)
    if args.mode == "retry":
        return retry_failed_backfill(
            ctx.conn, args.job_id, include_running=args.include_running
        )
    msg = f"Unknown mode: {args.mode}"
    raise ValueError(msg)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point.

    Returns:
        Process exit code: 0 on success, 1 on a database or unexpected
        failure, 2 on invalid input.

    """
    args = build_parser().parse_args(argv)
    log_config.setup(verbose=args.verbose)

    try:
        config = CollectorConfig.from_env()
        if args.db is not None:
            config = dataclasses.replace(config, db_path=args.db)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_USAGE

    logger.info("Starting %s (db: %s)", args.mode, config.db_path)
    ctx = CollectorContext.open(config)
    try:
        _emit(run_mode(ctx, args))
    except ValueError as exc:
        logger.error("%s", exc)
        return EXIT_USAGE
    except duckdb.Error:
        logger.exception("Fatal database error during %s", args.mode)
        return EXIT_FAILURE
    finally:
        ctx.close()
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
