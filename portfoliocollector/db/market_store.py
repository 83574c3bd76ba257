"""Market data store: DuckDB writes and reads for price history.

price_history is an append-only log keyed by (asset_id, date). Writers
only ever insert; a second observation for a day that already has one
is ignored (ON CONFLICT DO NOTHING), so re-running a backfill never
rewrites a past day's value.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date
from typing import TYPE_CHECKING, Any

from portfoliocollector.db.connection import fetch_dicts, transaction
from portfoliocollector.market.validation import is_valid_price

if TYPE_CHECKING:
    import duckdb

    from portfoliocollector.market.provider import PricePoint

logger = logging.getLogger(__name__)

_INSERT_POINT = """
    INSERT INTO price_history (asset_id, date, price, source)
    VALUES (?, ?, ?, ?)
    ON CONFLICT (asset_id, date) DO NOTHING
"""


def _count_points(conn: duckdb.DuckDBPyConnection, asset_id: int) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM price_history WHERE asset_id = ?",
        [asset_id],
    ).fetchone()
    return int(row[0]) if row else 0


def insert_price_points(
    conn: duckdb.DuckDBPyConnection,
    asset_id: int,
    points: Sequence[PricePoint],
    source: str = "backfill",
) -> int:
    """Insert a batch of daily prices in a single transaction.

    Either every new point is written or none is. Days that already
    have a stored price are left untouched.

    Args:
        conn: Active DuckDB connection (not inside a transaction).
        asset_id: Asset the prices belong to.
        points: Validated price points.
        source: Data source identifier (default: "backfill").

    Returns:
        Number of rows actually inserted.

    Raises:
        ValueError: If any point carries an invalid price.

    """
    if not points:
        return 0

    bad = [p for p in points if not is_valid_price(p.price)]
    if bad:
        msg = f"Refusing to persist {len(bad)} invalid price point(s) for asset {asset_id}"
        raise ValueError(msg)

    # First observation per day wins, matching the on-conflict rule.
    by_day: dict[date, float] = {}
    for p in points:
        by_day.setdefault(p.date, float(p.price))  # type: ignore[arg-type]

    with transaction(conn):
        before = _count_points(conn, asset_id)
        conn.executemany(
            _INSERT_POINT,
            [[asset_id, day, price, source] for day, price in by_day.items()],
        )
        inserted = _count_points(conn, asset_id) - before

    logger.info(
        "Inserted %d of %d price points for asset %d",
        inserted,
        len(points),
        asset_id,
    )
    return inserted


def record_live_price(
    conn: duckdb.DuckDBPyConnection,
    asset_id: int,
    price: float,
    observed_on: date,
    source: str = "live",
) -> bool:
    """Record one live price observation as that day's history point.

    Args:
        conn: Active DuckDB connection.
        asset_id: Asset the price belongs to.
        price: Observed price.
        observed_on: Calendar day of the observation.
        source: Data source identifier (default: "live").

    Returns:
        True if a row was inserted, False if the day already had one.

    Raises:
        ValueError: If price is not a finite positive number.

    """
    if not is_valid_price(price):
        msg = f"price must be a finite positive number, got {price!r}"
        raise ValueError(msg)

    rows = conn.execute(
        _INSERT_POINT + " RETURNING asset_id",
        [asset_id, observed_on, float(price), source],
    ).fetchall()
    return bool(rows)


def query_price_history(
    conn: duckdb.DuckDBPyConnection,
    asset_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[dict[str, Any]]:
    """Query price history for an asset.

    Args:
        conn: Active DuckDB connection.
        asset_id: Asset identifier.
        start_date: Optional inclusive start date.
        end_date: Optional inclusive end date.

    Returns:
        List of price record dicts ordered by date ascending.

    """
    query = "SELECT * FROM price_history WHERE asset_id = ?"
    params: list[Any] = [asset_id]

    if start_date:
        query += " AND date >= ?"
        params.append(start_date)
    if end_date:
        query += " AND date <= ?"
        params.append(end_date)

    query += " ORDER BY date ASC"

    conn.execute(query, params)
    return fetch_dicts(conn)


def get_latest_date(
    conn: duckdb.DuckDBPyConnection,
    asset_id: int,
) -> date | None:
    """Get the most recent history date stored for an asset.

    Args:
        conn: Active DuckDB connection.
        asset_id: Asset identifier.

    Returns:
        Most recent date, or None if the asset has no history.

    """
    result = conn.execute(
        "SELECT MAX(date) FROM price_history WHERE asset_id = ?",
        [asset_id],
    ).fetchone()

    if result and result[0]:
        return result[0]  # type: ignore[no-any-return]
    return None
