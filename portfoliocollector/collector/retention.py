"""Retention cleanup and collector statistics.

Time-series rows (portfolio snapshots and price history) are pruned by
age. Run records and backfill jobs form the audit trail and are only
pruned when a separate audit window is configured, and then only once
they are terminal.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from portfoliocollector.clock import utc_today, utcnow
from portfoliocollector.db.connection import transaction
from portfoliocollector.db.schema import TERMINAL_JOB_STATUSES

if TYPE_CHECKING:
    import duckdb

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupResult:
    """Rows removed by :func:`cleanup_old_data`, per table."""

    cutoff_date: date
    deleted_snapshots: int = 0
    deleted_history: int = 0
    deleted_runs: int = 0
    deleted_jobs: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CollectorStats:
    """Run and job counters for one owner.

    ``total_runs`` equals ``successful_runs + failed_runs + running_runs``.
    ``pending_jobs + completed_jobs`` never exceeds ``total_jobs``; the
    difference is the jobs currently running.
    """

    pending_jobs: int = 0
    completed_jobs: int = 0
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    running_runs: int = 0
    stuck_runs: int = 0
    running_jobs: int = 0
    failed_jobs: int = 0
    stuck_jobs: int = 0
    total_jobs: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _delete_count(
    conn: duckdb.DuckDBPyConnection, query: str, params: list[Any]
) -> int:
    return len(conn.execute(f"{query} RETURNING 1", params).fetchall())


def cleanup_old_data(
    conn: duckdb.DuckDBPyConnection,
    user_id: int,
    retention_days: int,
    audit_retention_days: int | None = None,
    today: date | None = None,
) -> CleanupResult:
    """Delete time-series rows older than the retention window.

    Snapshots are pruned for ``user_id`` only. Price history is shared by
    every owner holding the asset, so it is pruned by date alone.

    Args:
        conn: Active DuckDB connection.
        user_id: Owner whose snapshots (and audit rows) are pruned.
        retention_days: Rows dated before ``today - retention_days`` go.
        audit_retention_days: If set, terminal run records and backfill
            jobs that ended before ``today - audit_retention_days`` go
            too. Must not be shorter than retention_days.
        today: Reference date (default: today, UTC).

    Returns:
        CleanupResult with per-table counts.

    Raises:
        ValueError: If a window is not positive, or the audit window is
            shorter than the time-series window.

    """
    if retention_days < 1:
        msg = f"retention_days must be >= 1, got {retention_days}"
        raise ValueError(msg)
    if audit_retention_days is not None and audit_retention_days < retention_days:
        msg = (
            f"audit_retention_days ({audit_retention_days}) must be >= "
            f"retention_days ({retention_days})"
        )
        raise ValueError(msg)

    reference = today or utc_today()
    cutoff = reference - timedelta(days=retention_days)

    with transaction(conn):
        deleted_snapshots = _delete_count(
            conn,
            "DELETE FROM portfolio_snapshots WHERE user_id = ? AND snapshot_date < ?",
            [user_id, cutoff],
        )
        deleted_history = _delete_count(
            conn, "DELETE FROM price_history WHERE date < ?", [cutoff]
        )

        deleted_runs = deleted_jobs = 0
        if audit_retention_days is not None:
            audit_cutoff = datetime.combine(
                reference - timedelta(days=audit_retention_days), datetime.min.time()
            )
            deleted_runs = _delete_count(
                conn,
                """
                DELETE FROM collector_runs
                WHERE user_id = ? AND status != 'running' AND finished_at < ?
                """,
                [user_id, audit_cutoff],
            )
            placeholders = ", ".join("?" for _ in TERMINAL_JOB_STATUSES)
            deleted_jobs = _delete_count(
                conn,
                f"""
                DELETE FROM backfill_jobs
                WHERE user_id = ? AND status IN ({placeholders})
                  AND completed_at < ?
                """,  # noqa: S608
                [user_id, *TERMINAL_JOB_STATUSES, audit_cutoff],
            )

    result = CleanupResult(
        cutoff_date=cutoff,
        deleted_snapshots=deleted_snapshots,
        deleted_history=deleted_history,
        deleted_runs=deleted_runs,
        deleted_jobs=deleted_jobs,
    )
    logger.info(
        "Cleanup before %s for user %d: %d snapshots, %d price points, "
        "%d runs, %d jobs",
        cutoff,
        user_id,
        deleted_snapshots,
        deleted_history,
        deleted_runs,
        deleted_jobs,
    )
    return result


def get_collector_stats(
    conn: duckdb.DuckDBPyConnection,
    user_id: int,
    now: datetime | None = None,
    stuck_after_minutes: int = 60,
) -> CollectorStats:
    """Aggregate run and job counters for an owner. Read-only.

    Args:
        conn: Active DuckDB connection.
        user_id: Owner identifier.
        now: Reference time for stuck detection (default: now, UTC).
        stuck_after_minutes: A ``running`` record started longer ago
            than this counts as stuck.

    Returns:
        CollectorStats.

    """
    stuck_before = (now or utcnow()) - timedelta(minutes=stuck_after_minutes)

    runs = conn.execute(
        """
        SELECT
            COUNT(*),
            COUNT(*) FILTER (WHERE status = 'success'),
            COUNT(*) FILTER (WHERE status = 'failed'),
            COUNT(*) FILTER (WHERE status = 'running'),
            COUNT(*) FILTER (WHERE status = 'running' AND started_at < ?)
        FROM collector_runs
        WHERE user_id = ?
        """,
        [stuck_before, user_id],
    ).fetchone()

    jobs = conn.execute(
        """
        SELECT
            COUNT(*),
            COUNT(*) FILTER (WHERE status = 'queued'),
            COUNT(*) FILTER (WHERE status IN ('completed', 'partial', 'failed')),
            COUNT(*) FILTER (WHERE status = 'running'),
            COUNT(*) FILTER (WHERE status = 'failed'),
            COUNT(*) FILTER (WHERE status = 'running' AND started_at < ?)
        FROM backfill_jobs
        WHERE user_id = ?
        """,
        [stuck_before, user_id],
    ).fetchone()

    total_runs, successful, failed, running_runs, stuck_runs = (
        int(v) for v in (runs or (0, 0, 0, 0, 0))
    )
    total_jobs, pending, completed, running_jobs, failed_jobs, stuck_jobs = (
        int(v) for v in (jobs or (0, 0, 0, 0, 0, 0))
    )

    return CollectorStats(
        pending_jobs=pending,
        completed_jobs=completed,
        total_runs=total_runs,
        successful_runs=successful,
        failed_runs=failed,
        running_runs=running_runs,
        stuck_runs=stuck_runs,
        running_jobs=running_jobs,
        failed_jobs=failed_jobs,
        stuck_jobs=stuck_jobs,
        total_jobs=total_jobs,
    )
