"""Backfill job queue: durable per-asset historical price requests.

A job asks for the daily price history of one asset over one lookback
range. Jobs are keyed by (user_id, asset_id, range_code): requesting the
same backfill twice returns the existing job.

State machine::

    queued ──claim──> running ──> completed | partial | failed
      ^                                            │
      └────────── retry_failed_backfill ───────────┘

Terminal status rule, applied once the provider has answered:
  - the provider raised, or returned no points  -> failed
  - every returned point has a finite price > 0 -> completed
  - at least one point is invalid               -> partial

The drain is sequential and never re-queues a failed job by itself.
Claim and finalize are separate statements because the provider call
between them can take seconds; a crash in that window leaves the job
``running`` until an operator re-queues it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

import duckdb
import pandas as pd

from portfoliocollector.clock import utcnow
from portfoliocollector.config import CollectorConfig
from portfoliocollector.db.connection import fetch_dicts
from portfoliocollector.db.market_store import insert_price_points
from portfoliocollector.db.portfolio_store import get_asset
from portfoliocollector.market.retry import call_with_retry
from portfoliocollector.market.validation import partition_price_points

if TYPE_CHECKING:
    from collections.abc import Iterable

    from portfoliocollector.market.provider import MarketDataProvider, PricePoint

logger = logging.getLogger(__name__)

# Lookback per range code, as a pandas DateOffset.
RANGE_OFFSETS: dict[str, pd.DateOffset] = {
    "1M": pd.DateOffset(months=1),
    "3M": pd.DateOffset(months=3),
    "6M": pd.DateOffset(months=6),
    "1Y": pd.DateOffset(years=1),
    "3Y": pd.DateOffset(years=3),
    "5Y": pd.DateOffset(years=5),
    "ALL": pd.DateOffset(years=10),
}

DEFAULT_RANGE = "1Y"


def normalize_range(range_code: str) -> str:
    """Return the canonical range code.

    Raises:
        ValueError: If the code is not one of RANGE_OFFSETS.

    """
    code = (range_code or "").strip().upper()
    if code not in RANGE_OFFSETS:
        msg = f"Invalid range: {range_code!r}. Use one of {', '.join(RANGE_OFFSETS)}."
        raise ValueError(msg)
    return code


def resolve_range(range_code: str, end_date: date) -> tuple[date, date]:
    """Turn a range code into an inclusive ``(start, end)`` date pair.

    Args:
        range_code: One of RANGE_OFFSETS.
        end_date: Last day of the range (usually today, UTC).

    Returns:
        Tuple of (start_date, end_date).

    """
    offset = RANGE_OFFSETS[normalize_range(range_code)]
    start = (pd.Timestamp(end_date) - offset).date()
    return start, end_date


@dataclass(frozen=True)
class BackfillJob:
    """A backfill_jobs row."""

    id: int
    user_id: int
    asset_id: int
    range_code: str
    status: str
    requested_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> BackfillJob:
        return cls(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            asset_id=int(row["asset_id"]),
            range_code=row["range_code"],
            status=row["status"],
            requested_at=row["requested_at"],
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            error_message=row.get("error_message"),
        )


@dataclass(frozen=True)
class BackfillRequest:
    """Outcome of :func:`request_backfill`.

    ``created`` is False when an identical job already existed; ``job``
    is then that existing job, unchanged.
    """

    job: BackfillJob
    created: bool


@dataclass(frozen=True)
class BackfillOutcome:
    """Terminal result of one job processed by the drain."""

    job_id: int
    asset_id: int
    range_code: str
    status: str
    error_message: str | None = None
    stored_points: int = 0
    dropped_points: int = 0


def get_job(conn: duckdb.DuckDBPyConnection, job_id: int) -> BackfillJob | None:
    """Look up a backfill job by id."""
    conn.execute("SELECT * FROM backfill_jobs WHERE id = ?", [job_id])
    rows = fetch_dicts(conn)
    return BackfillJob.from_row(rows[0]) if rows else None


def list_jobs(
    conn: duckdb.DuckDBPyConnection,
    user_id: int,
    statuses: Iterable[str] | None = None,
) -> list[BackfillJob]:
    """List an owner's backfill jobs, oldest request first.

    Args:
        conn: Active DuckDB connection.
        user_id: Owner identifier.
        statuses: Optional status filter.

    Returns:
        List of BackfillJob.

    """
    query = "SELECT * FROM backfill_jobs WHERE user_id = ?"
    params: list[Any] = [user_id]
    status_list = list(statuses or [])
    if status_list:
        query += f" AND status IN ({', '.join('?' for _ in status_list)})"
        params.extend(status_list)
    query += " ORDER BY requested_at ASC, id ASC"

    conn.execute(query, params)
    return [BackfillJob.from_row(row) for row in fetch_dicts(conn)]


def request_backfill(
    conn: duckdb.DuckDBPyConnection,
    user_id: int,
    asset_id: int,
    range_code: str = DEFAULT_RANGE,
    now: datetime | None = None,
) -> BackfillRequest:
    """Queue a historical backfill, or return the identical existing job.

    Args:
        conn: Active DuckDB connection.
        user_id: Owner identifier.
        asset_id: Asset to backfill.
        range_code: Lookback range (default: "1Y").
        now: Request timestamp (default: now, UTC).

    Returns:
        BackfillRequest with the job and whether it was newly created.

    Raises:
        ValueError: If the range code or asset id is unknown.

    """
    code = normalize_range(range_code)
    if get_asset(conn, asset_id) is None:
        msg = f"Unknown asset id {asset_id}"
        raise ValueError(msg)

    try:
        conn.execute(
            """
            INSERT INTO backfill_jobs
                (user_id, asset_id, range_code, status, requested_at)
            VALUES (?, ?, ?, 'queued', ?)
            ON CONFLICT (user_id, asset_id, range_code) DO NOTHING
            RETURNING *
            """,
            [user_id, asset_id, code, now or utcnow()],
        )
        rows = fetch_dicts(conn)
    except (duckdb.ConstraintException, duckdb.TransactionException):
        # A concurrent request for the same key committed first.
        rows = []

    if rows:
        job = BackfillJob.from_row(rows[0])
        logger.info(
            "Queued backfill job %d (asset %d, range %s) for user %d",
            job.id,
            asset_id,
            code,
            user_id,
        )
        return BackfillRequest(job=job, created=True)

    conn.execute(
        """
        SELECT * FROM backfill_jobs
        WHERE user_id = ? AND asset_id = ? AND range_code = ?
        """,
        [user_id, asset_id, code],
    )
    existing = BackfillJob.from_row(fetch_dicts(conn)[0])
    logger.info(
        "Backfill for asset %d (%s) already requested as job %d (%s)",
        asset_id,
        code,
        existing.id,
        existing.status,
    )
    return BackfillRequest(job=existing, created=False)


def claim_job(
    conn: duckdb.DuckDBPyConnection,
    job_id: int,
    now: datetime | None = None,
) -> bool:
    """Move a job from queued to running.

    Returns:
        True if this caller claimed it, False if it was no longer queued.

    """
    try:
        rows = conn.execute(
            """
            UPDATE backfill_jobs
            SET status = 'running', started_at = ?
            WHERE id = ? AND status = 'queued'
            RETURNING id
            """,
            [now or utcnow(), job_id],
        ).fetchall()
    except duckdb.TransactionException:
        # Another writer updated the row first.
        logger.info("Job %d claimed concurrently, skipping", job_id)
        return False
    return bool(rows)


def _finalize(
    conn: duckdb.DuckDBPyConnection,
    job: BackfillJob,
    status: str,
    error_message: str | None = None,
    stored: int = 0,
    dropped: int = 0,
) -> BackfillOutcome:
    rows = conn.execute(
        """
        UPDATE backfill_jobs
        SET status = ?, completed_at = ?, error_message = ?
        WHERE id = ? AND status = 'running'
        RETURNING id
        """,
        [status, utcnow(), error_message, job.id],
    ).fetchall()
    if not rows:
        logger.warning("Job %d was not running; %s not recorded", job.id, status)
    log = logger.info if status == "completed" else logger.warning
    log(
        "Job %d (asset %d, %s) finished %s: %d stored, %d dropped%s",
        job.id,
        job.asset_id,
        job.range_code,
        status,
        stored,
        dropped,
        f" ({error_message})" if error_message else "",
    )
    return BackfillOutcome(
        job_id=job.id,
        asset_id=job.asset_id,
        range_code=job.range_code,
        status=status,
        error_message=error_message,
        stored_points=stored,
        dropped_points=dropped,
    )


def run_backfill_job(
    conn: duckdb.DuckDBPyConnection,
    provider: MarketDataProvider,
    job: BackfillJob,
    config: CollectorConfig,
    today: date,
) -> BackfillOutcome:
    """Fetch, filter, store and finalize one claimed job.

    Provider failures end the job as ``failed``. Database failures are
    recorded on the job when possible and then propagate.

    Raises:
        duckdb.Error: If storing the points or finalizing fails.

    """
    asset = get_asset(conn, job.asset_id)
    if asset is None:
        return _finalize(conn, job, "failed", "Asset not found")

    start, end = resolve_range(job.range_code, today)
    symbol, asset_class = str(asset["symbol"]), str(asset["asset_class"])

    def fetch() -> list[PricePoint]:
        return provider.get_historical_daily_prices(symbol, asset_class, start, end)

    try:
        points = call_with_retry(
            fetch,
            retries=config.provider_retries,
            base_delay=config.retry_base_delay_seconds,
        )
    except Exception as exc:  # noqa: BLE001
        return _finalize(conn, job, "failed", str(exc) or type(exc).__name__)

    if not points:
        return _finalize(conn, job, "failed", "No historical data returned")

    parts = partition_price_points(points)
    try:
        stored = insert_price_points(conn, job.asset_id, parts.valid)
    except Exception as exc:
        try:
            _finalize(conn, job, "failed", f"Storing prices failed: {exc}")
        except duckdb.Error:
            logger.exception("Could not mark job %d as failed", job.id)
        raise

    if parts.invalid:
        message = f"{len(parts.invalid)} of {parts.total} prices were invalid"
        return _finalize(
            conn, job, "partial", message, stored=stored, dropped=len(parts.invalid)
        )
    return _finalize(conn, job, "completed", stored=stored)


def drain_queued_backfills(
    conn: duckdb.DuckDBPyConnection,
    provider: MarketDataProvider,
    user_id: int,
    config: CollectorConfig | None = None,
    now: datetime | None = None,
) -> list[BackfillOutcome]:
    """Process every queued job for an owner, one at a time.

    Jobs are taken oldest request first. A job another process claimed
    in the meantime is skipped.

    Args:
        conn: Active DuckDB connection.
        provider: Market data provider for historical series.
        user_id: Owner identifier.
        config: Collector settings (default: ``CollectorConfig()``).
        now: Clock for claim timestamps and range end (default: now, UTC).

    Returns:
        One BackfillOutcome per job this call finalized.

    Raises:
        duckdb.Error: On database failure; remaining jobs stay queued.

    """
    cfg = config or CollectorConfig()
    queued = list_jobs(conn, user_id, statuses=["queued"])
    if cfg.max_jobs_per_drain is not None:
        queued = queued[: cfg.max_jobs_per_drain]

    logger.info("Processing %d backfill job(s) for user %d", len(queued), user_id)

    outcomes: list[BackfillOutcome] = []
    for job in queued:
        claimed_at = now or utcnow()
        if not claim_job(conn, job.id, claimed_at):
            logger.info("Job %d already claimed by another process", job.id)
            continue
        logger.info(
            "Claimed job %d (asset %d, range %s)", job.id, job.asset_id, job.range_code
        )
        outcomes.append(
            run_backfill_job(conn, provider, job, cfg, claimed_at.date())
        )
    return outcomes


def retry_failed_backfill(
    conn: duckdb.DuckDBPyConnection,
    job_id: int,
    include_running: bool = False,
) -> BackfillJob:
    """Put a failed job back on the queue.

    Args:
        conn: Active DuckDB connection.
        job_id: Job to re-queue.
        include_running: Also re-queue a job stuck in ``running`` after
            a crash. Only safe when no drain is processing it.

    Returns:
        The job after the call. Its status is ``queued`` if it was
        re-queued; otherwise it is returned unchanged.

    Raises:
        ValueError: If no job has that id.

    """
    allowed = ["failed", "running"] if include_running else ["failed"]
    conn.execute(
        f"""
        UPDATE backfill_jobs
        SET status = 'queued', started_at = NULL, completed_at = NULL,
            error_message = NULL
        WHERE id = ? AND status IN ({', '.join('?' for _ in allowed)})
        RETURNING *
        """,  # noqa: S608
        [job_id, *allowed],
    )
    rows = fetch_dicts(conn)
    if rows:
        logger.info("Re-queued backfill job %d", job_id)
        return BackfillJob.from_row(rows[0])

    job = get_job(conn, job_id)
    if job is None:
        msg = f"Backfill job {job_id} not found"
        raise ValueError(msg)
    logger.warning("Backfill job %d is %s; retry ignored", job_id, job.status)
    return job
