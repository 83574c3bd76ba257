"""Daily portfolio snapshot recorder.

Writes one PortfolioSnapshot per owner per UTC day. The run ledger is
consulted before any provider call, so a repeated trigger on the same
day stops at the ledger insert.

Degradation rules:
  - FX fetch fails: use the rate from the owner's latest snapshot,
    else the configured fallback.
  - A holding has no fresh cached price and the live fetch fails:
    fall back to the stale cached price if there is one, otherwise
    leave the holding out of the totals.
  - The snapshot write fails: the run is marked ``failed`` and the
    database error propagates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

import duckdb

from portfoliocollector.clock import utcnow
from portfoliocollector.collector.run_ledger import (
    RUN_TYPE_DAILY_SNAPSHOT,
    finish_run,
    try_start_run,
)
from portfoliocollector.config import CollectorConfig
from portfoliocollector.db.connection import transaction
from portfoliocollector.db.portfolio_store import (
    get_holdings_with_prices,
    get_latest_fx_rate,
    save_portfolio_snapshot,
)
from portfoliocollector.market.price_cache import CachedPrice, PriceCache
from portfoliocollector.market.provider import ProviderUnavailableError
from portfoliocollector.market.retry import call_with_retry
from portfoliocollector.market.validation import is_valid_price
from portfoliocollector.portfolio.valuation import value_holdings

if TYPE_CHECKING:
    from portfoliocollector.market.provider import MarketDataProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotResult:
    """Outcome of :func:`record_daily_snapshot`.

    ``recorded`` is False only for the already-run short-circuit; every
    other failure raises.
    """

    recorded: bool
    snapshot_date: date
    run_id: int | None = None
    snapshot_id: int | None = None
    total_value_usd: float = 0.0
    total_cost_usd: float = 0.0
    total_pnl_usd: float = 0.0
    fx_rate: float | None = None
    fx_fallback: bool = False
    excluded: list[str] = field(default_factory=list)
    reason: str | None = None


def resolve_fx_rate(
    conn: duckdb.DuckDBPyConnection,
    provider: MarketDataProvider,
    user_id: int,
    config: CollectorConfig,
) -> tuple[float, bool]:
    """Fetch the FX rate, falling back to the last known or configured rate.

    Returns:
        Tuple of (rate, used_fallback).

    """

    def fetch() -> float:
        rate = provider.get_fx_rate()
        if not is_valid_price(rate):
            msg = f"FX provider returned {rate!r}"
            raise ProviderUnavailableError(msg)
        return float(rate)  # type: ignore[arg-type]

    try:
        return (
            call_with_retry(
                fetch,
                retries=config.provider_retries,
                base_delay=config.retry_base_delay_seconds,
            ),
            False,
        )
    except Exception as exc:  # noqa: BLE001
        last_known = get_latest_fx_rate(conn, user_id)
        rate = last_known if last_known is not None else config.fallback_fx_rate
        logger.warning(
            "FX rate unavailable (%s); using %s rate %.4f",
            exc,
            "last known" if last_known is not None else "fallback",
            rate,
        )
        return rate, True


def _collect_prices(
    conn: duckdb.DuckDBPyConnection,
    provider: MarketDataProvider,
    holdings: list[dict[str, Any]],
    config: CollectorConfig,
    now: datetime,
) -> dict[int, float]:
    """Resolve one price per held asset: fresh cache, live fetch, stale cache."""
    cache = PriceCache(conn, max_age=timedelta(hours=config.price_cache_max_age_hours))
    prices: dict[int, float] = {}
    for holding in holdings:
        asset_id = int(holding["asset_id"])
        symbol = str(holding["symbol"])
        if asset_id in prices:
            continue

        cached = None
        if holding["cached_price"] is not None:
            cached = CachedPrice(
                asset_id=asset_id,
                price=float(holding["cached_price"]),
                updated_at=holding["price_updated_at"],
            )

        entry = cache.fresh(cached, now=now)
        if entry is None:
            entry = cache.refresh(
                asset_id, symbol, str(holding["asset_class"]), provider, now=now
            )
        if entry is None and cached is not None:
            entry = cached
            logger.warning(
                "Using stale cached price for %s from %s",
                symbol,
                entry.updated_at,
            )
        if entry is None:
            logger.warning("No price for %s; excluded from snapshot", symbol)
            continue
        prices[asset_id] = entry.price

    logger.debug("Price cache stats: %s", cache.stats())
    return prices


def record_daily_snapshot(
    conn: duckdb.DuckDBPyConnection,
    provider: MarketDataProvider,
    user_id: int,
    config: CollectorConfig | None = None,
    today: date | None = None,
    now: datetime | None = None,
) -> SnapshotResult:
    """Record today's portfolio valuation for an owner, at most once.

    Args:
        conn: Active DuckDB connection.
        provider: Market data provider for FX and missing prices.
        user_id: Owner identifier.
        config: Collector settings (default: ``CollectorConfig()``).
        today: Snapshot date (default: today, UTC).
        now: Current timestamp for cache staleness (default: now, UTC).

    Returns:
        SnapshotResult. ``recorded=False`` means the day was already run.

    Raises:
        duckdb.Error: If the database fails. When the run had started it
            is marked ``failed`` first.

    """
    cfg = config or CollectorConfig()
    now = now or utcnow()
    snapshot_date = today or now.date()
    run_key = snapshot_date.isoformat()

    start = try_start_run(conn, user_id, RUN_TYPE_DAILY_SNAPSHOT, run_key, now)
    if not start.started or start.run_id is None:
        return SnapshotResult(
            recorded=False, snapshot_date=snapshot_date, reason=start.reason
        )
    run_id = start.run_id

    try:
        holdings = get_holdings_with_prices(conn, user_id)
        fx_rate, fx_fallback = resolve_fx_rate(conn, provider, user_id, cfg)
        prices = _collect_prices(conn, provider, holdings, cfg, now)
        valuation = value_holdings(holdings, prices, fx_rate, cfg.local_currency)

        with transaction(conn):
            snapshot_id = save_portfolio_snapshot(
                conn,
                user_id,
                snapshot_date,
                valuation.total_value_usd,
                valuation.total_cost_usd,
                fx_rate,
                created_at=now,
            )
            finish_run(conn, run_id, "success")
    except Exception as exc:
        error_message = str(exc) or type(exc).__name__
        try:
            finish_run(conn, run_id, "failed", error_message=error_message)
        except duckdb.Error:
            logger.exception("Could not mark run %d as failed", run_id)
        logger.error("Daily snapshot for user %d failed: %s", user_id, exc)
        raise

    logger.info(
        "Recorded snapshot for user %d on %s: value=%.2f cost=%.2f fx=%.4f",
        user_id,
        snapshot_date,
        valuation.total_value_usd,
        valuation.total_cost_usd,
        fx_rate,
    )
    return SnapshotResult(
        recorded=True,
        snapshot_date=snapshot_date,
        run_id=run_id,
        snapshot_id=snapshot_id,
        total_value_usd=valuation.total_value_usd,
        total_cost_usd=valuation.total_cost_usd,
        total_pnl_usd=valuation.total_pnl_usd,
        fx_rate=fx_rate,
        fx_fallback=fx_fallback,
        excluded=list(valuation.excluded),
    )
