"""Run ledger: at-most-once bookkeeping for periodic jobs.

Every trigger of a periodic job first tries to insert a ``running``
record for its (user_id, run_type, run_key). The UNIQUE constraint on
that triple decides who wins: an insert that conflicts means the
period was already claimed, and the caller must skip its work. The
check is done by the database, so it holds across processes sharing
the same store.

A record moves once from ``running`` to ``success`` or ``failed``.
Records left ``running`` by a crash are not resolved automatically;
they show up in the collector stats as stuck.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import duckdb

from portfoliocollector.clock import utcnow
from portfoliocollector.db.connection import fetch_dicts

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

RUN_TYPE_DAILY_SNAPSHOT = "daily-snapshot"

ALREADY_RUN = "already_run"

TERMINAL_RUN_STATUSES = frozenset({"success", "failed"})


@dataclass(frozen=True)
class RunStart:
    """Outcome of :func:`try_start_run`.

    Attributes:
        started: True if this caller owns the run and must execute it.
        run_id: Id of the new record when started, else None.
        reason: ``"already_run"`` when not started, else None.

    """

    started: bool
    run_id: int | None = None
    reason: str | None = None


def try_start_run(
    conn: duckdb.DuckDBPyConnection,
    user_id: int,
    run_type: str,
    run_key: str,
    started_at: datetime | None = None,
) -> RunStart:
    """Claim a logical period for a periodic job.

    Args:
        conn: Active DuckDB connection.
        user_id: Owner identifier.
        run_type: Job name, e.g. "daily-snapshot".
        run_key: Identifier of the logical period, e.g. "2024-06-01".
        started_at: Start timestamp (default: now, UTC).

    Returns:
        ``RunStart(started=True, run_id=...)`` if a new record was
        created, ``RunStart(started=False, reason="already_run")`` if
        any record for the key already exists.

    Raises:
        ValueError: If run_type or run_key is empty.
        duckdb.Error: If the database fails; no run is recorded.

    """
    if not run_type or not run_key:
        msg = "run_type and run_key must be non-empty"
        raise ValueError(msg)

    try:
        rows = conn.execute(
            """
            INSERT INTO collector_runs
                (user_id, run_type, run_key, status, started_at)
            VALUES (?, ?, ?, 'running', ?)
            ON CONFLICT (user_id, run_type, run_key) DO NOTHING
            RETURNING id
            """,
            [user_id, run_type, run_key, started_at or utcnow()],
        ).fetchall()
    except (duckdb.ConstraintException, duckdb.TransactionException):
        # A concurrent writer committed the same key first.
        rows = []

    if not rows:
        logger.info(
            "Run %s/%s for user %d already recorded, skipping",
            run_type,
            run_key,
            user_id,
        )
        return RunStart(started=False, reason=ALREADY_RUN)

    run_id = int(rows[0][0])
    logger.info(
        "Started run %d (%s/%s) for user %d", run_id, run_type, run_key, user_id
    )
    return RunStart(started=True, run_id=run_id)


def finish_run(
    conn: duckdb.DuckDBPyConnection,
    run_id: int,
    status: str,
    error_message: str | None = None,
    finished_at: datetime | None = None,
) -> bool:
    """Move a running record to a terminal status.

    Calling this on a record that is already terminal (or missing)
    changes nothing and logs a warning.

    Args:
        conn: Active DuckDB connection.
        run_id: Record id returned by :func:`try_start_run`.
        status: "success" or "failed".
        error_message: Failure description, stored as-is.
        finished_at: Finish timestamp (default: now, UTC).

    Returns:
        True if the record transitioned, False otherwise.

    Raises:
        ValueError: If status is not terminal.

    """
    if status not in TERMINAL_RUN_STATUSES:
        msg = f"status must be one of {sorted(TERMINAL_RUN_STATUSES)}, got '{status}'"
        raise ValueError(msg)

    rows = conn.execute(
        """
        UPDATE collector_runs
        SET status = ?, finished_at = ?, error_message = ?
        WHERE id = ? AND status = 'running'
        RETURNING id
        """,
        [status, finished_at or utcnow(), error_message, run_id],
    ).fetchall()

    if not rows:
        logger.warning("Run %d is not running; finish(%s) ignored", run_id, status)
        return False

    logger.info("Run %d finished with status %s", run_id, status)
    return True


def get_run(
    conn: duckdb.DuckDBPyConnection,
    run_id: int,
) -> dict[str, Any] | None:
    """Look up a run record by id."""
    conn.execute("SELECT * FROM collector_runs WHERE id = ?", [run_id])
    rows = fetch_dicts(conn)
    return rows[0] if rows else None


def list_runs(
    conn: duckdb.DuckDBPyConnection,
    user_id: int,
    run_type: str | None = None,
    statuses: Iterable[str] | None = None,
) -> list[dict[str, Any]]:
    """List an owner's run records, newest first.

    Args:
        conn: Active DuckDB connection.
        user_id: Owner identifier.
        run_type: Optional job-name filter.
        statuses: Optional status filter.

    Returns:
        List of run record dicts.

    """
    query = "SELECT * FROM collector_runs WHERE user_id = ?"
    params: list[Any] = [user_id]

    if run_type:
        query += " AND run_type = ?"
        params.append(run_type)
    status_list = list(statuses or [])
    if status_list:
        query += f" AND status IN ({', '.join('?' for _ in status_list)})"
        params.extend(status_list)

    query += " ORDER BY started_at DESC, id DESC"

    conn.execute(query, params)
    return fetch_dicts(conn)
