"""Portfolio data store: DuckDB access for assets, holdings and snapshots.

Assets and holdings are owned by the CRUD layer; the collector only
reads them (the write helpers here exist for seeding and tests).
Portfolio snapshots are write-once per (user_id, snapshot_date).
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from portfoliocollector.clock import utcnow
from portfoliocollector.db.connection import fetch_dicts

if TYPE_CHECKING:
    import duckdb

logger = logging.getLogger(__name__)

ASSET_CLASSES = {"crypto", "stock_us", "stock_cn", "gold", "etf", "bond", "cash"}


def add_asset(
    conn: duckdb.DuckDBPyConnection,
    symbol: str,
    asset_class: str,
    currency: str = "USD",
    name: str = "",
) -> int:
    """Register a new asset.

    Args:
        conn: Active DuckDB connection.
        symbol: Ticker symbol, stored upper-cased.
        asset_class: Asset class: "crypto", "stock_us", "stock_cn",
            "gold", "etf", "bond" or "cash".
        currency: Quote currency of the asset's price.
        name: Display name.

    Returns:
        The new asset ID.

    Raises:
        ValueError: If symbol is empty or asset_class is not valid.

    """
    if not symbol or not symbol.strip():
        msg = "symbol must be a non-empty string"
        raise ValueError(msg)
    if asset_class not in ASSET_CLASSES:
        msg = f"asset_class must be one of {sorted(ASSET_CLASSES)}, got '{asset_class}'"
        raise ValueError(msg)

    row = conn.execute(
        """
        INSERT INTO assets (symbol, name, asset_class, currency)
        VALUES (?, ?, ?, ?)
        RETURNING id
        """,
        [symbol.strip().upper(), name, asset_class, currency.upper()],
    ).fetchone()
    asset_id = int(row[0])  # type: ignore[index]
    logger.info("Added asset %s (%s) as id %d", symbol, asset_class, asset_id)
    return asset_id


def get_asset(
    conn: duckdb.DuckDBPyConnection,
    asset_id: int,
) -> dict[str, Any] | None:
    """Look up an asset by id.

    Returns:
        Asset dict, or None if no asset has that id.

    """
    conn.execute("SELECT * FROM assets WHERE id = ?", [asset_id])
    rows = fetch_dicts(conn)
    return rows[0] if rows else None


def upsert_holding(
    conn: duckdb.DuckDBPyConnection,
    user_id: int,
    asset_id: int,
    quantity: float,
    avg_cost: float,
) -> None:
    """Insert or update an owner's position in an asset.

    Args:
        conn: Active DuckDB connection.
        user_id: Owner identifier.
        asset_id: Asset identifier.
        quantity: Units held.
        avg_cost: Average cost per unit, in the asset's currency.

    """
    conn.execute(
        """
        INSERT INTO holdings (user_id, asset_id, quantity, avg_cost)
        VALUES (?, ?, ?, ?)
        ON CONFLICT (user_id, asset_id) DO UPDATE SET
            quantity = excluded.quantity,
            avg_cost = excluded.avg_cost,
            updated_at = now()
        """,
        [user_id, asset_id, quantity, avg_cost],
    )


def get_holdings_with_prices(
    conn: duckdb.DuckDBPyConnection,
    user_id: int,
) -> list[dict[str, Any]]:
    """Get an owner's holdings joined with asset details and cached price.

    Args:
        conn: Active DuckDB connection.
        user_id: Owner identifier.

    Returns:
        List of dicts with keys: asset_id, symbol, asset_class, currency,
        quantity, avg_cost, cached_price, price_updated_at. The last two
        are None when the asset has no cached price.

    """
    conn.execute(
        """
        SELECT h.asset_id, a.symbol, a.asset_class, a.currency,
               h.quantity, h.avg_cost,
               p.price AS cached_price, p.updated_at AS price_updated_at
        FROM holdings h
        JOIN assets a ON a.id = h.asset_id
        LEFT JOIN asset_prices p ON p.asset_id = h.asset_id
        WHERE h.user_id = ?
        ORDER BY a.symbol
        """,
        [user_id],
    )
    return fetch_dicts(conn)


def save_portfolio_snapshot(
    conn: duckdb.DuckDBPyConnection,
    user_id: int,
    snapshot_date: date,
    total_value_usd: float,
    total_cost_usd: float,
    fx_rate: float,
    created_at: datetime | None = None,
) -> int:
    """Insert the daily portfolio snapshot for an owner.

    Snapshots are never overwritten: a second insert for the same day
    violates the (user_id, snapshot_date) constraint and raises.

    Args:
        conn: Active DuckDB connection.
        user_id: Owner identifier.
        snapshot_date: Valuation date.
        total_value_usd: Total market value in USD.
        total_cost_usd: Total cost basis in USD.
        fx_rate: FX rate used for local-currency conversion.
        created_at: Write timestamp (default: now, UTC).

    Returns:
        The snapshot ID.

    """
    created = created_at or utcnow()
    total_pnl_usd = total_value_usd - total_cost_usd
    row = conn.execute(
        """
        INSERT INTO portfolio_snapshots
            (user_id, snapshot_date, total_value_usd, total_cost_usd,
             total_pnl_usd, fx_rate, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        RETURNING id
        """,
        [
            user_id,
            snapshot_date,
            total_value_usd,
            total_cost_usd,
            total_pnl_usd,
            fx_rate,
            created,
        ],
    ).fetchone()
    return int(row[0])  # type: ignore[index]


def get_portfolio_snapshots(
    conn: duckdb.DuckDBPyConnection,
    user_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[dict[str, Any]]:
    """Query portfolio snapshots for an owner.

    Args:
        conn: Active DuckDB connection.
        user_id: Owner identifier.
        start_date: Optional inclusive start date.
        end_date: Optional inclusive end date.

    Returns:
        List of snapshot dicts ordered by date ascending.

    """
    query = "SELECT * FROM portfolio_snapshots WHERE user_id = ?"
    params: list[Any] = [user_id]

    if start_date:
        query += " AND snapshot_date >= ?"
        params.append(start_date)
    if end_date:
        query += " AND snapshot_date <= ?"
        params.append(end_date)

    query += " ORDER BY snapshot_date ASC"

    conn.execute(query, params)
    return fetch_dicts(conn)


def get_latest_fx_rate(
    conn: duckdb.DuckDBPyConnection,
    user_id: int,
) -> float | None:
    """Return the FX rate recorded on the owner's most recent snapshot."""
    row = conn.execute(
        """
        SELECT fx_rate FROM portfolio_snapshots
        WHERE user_id = ?
        ORDER BY snapshot_date DESC
        LIMIT 1
        """,
        [user_id],
    ).fetchone()
    return float(row[0]) if row else None
