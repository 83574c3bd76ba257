"""UTC clock helpers.

DuckDB TIMESTAMP columns are timezone-naive, so every timestamp the
collector writes is naive UTC. Calendar days (run keys, snapshot dates,
retention cut-offs) are UTC days for determinism across hosts.
"""

from __future__ import annotations

from datetime import UTC, date, datetime


def utcnow() -> datetime:
    """Return the current UTC time without tzinfo."""
    return datetime.now(tz=UTC).replace(tzinfo=None)


def utc_today() -> date:
    """Return today's UTC calendar date."""
    return datetime.now(tz=UTC).date()
