"""Shared pytest fixtures for collector tests."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date, datetime

import duckdb
import pytest
from portfoliocollector.config import CollectorConfig
from portfoliocollector.db.connection import init_memory_db
from portfoliocollector.db.portfolio_store import add_asset
from portfoliocollector.market.provider import (
    MarketDataProvider,
    PricePoint,
    ProviderUnavailableError,
)


class FakeProvider(MarketDataProvider):
    """In-memory provider that records every call.

    Set ``fx_rate``, ``prices`` (symbol -> price) and ``history``
    (symbol -> list of PricePoint) to script responses. Method names in
    ``unavailable`` ("fx", "price", "history") raise
    ProviderUnavailableError instead.
    """

    def __init__(self) -> None:
        self.fx_rate: float | None = 7.2
        self.prices: dict[str, float | None] = {}
        self.history: dict[str, list[PricePoint]] = {}
        self.unavailable: set[str] = set()
        self.calls: list[tuple[object, ...]] = []

    def _check(self, name: str) -> None:
        if name in self.unavailable:
            msg = f"{name} endpoint down"
            raise ProviderUnavailableError(msg)

    def get_fx_rate(self) -> float | None:
        self.calls.append(("fx",))
        self._check("fx")
        return self.fx_rate

    def get_current_price(self, symbol: str, asset_class: str) -> float | None:
        self.calls.append(("price", symbol))
        self._check("price")
        return self.prices.get(symbol)

    def get_historical_daily_prices(
        self,
        symbol: str,
        asset_class: str,
        start_date: date,
        end_date: date,
    ) -> list[PricePoint]:
        self.calls.append(("history", symbol, start_date, end_date))
        self._check("history")
        return list(self.history.get(symbol, []))


@pytest.fixture
def db() -> Iterator[duckdb.DuckDBPyConnection]:
    """Provide an in-memory database with the full collector schema."""
    conn = init_memory_db()
    yield conn
    conn.close()


@pytest.fixture
def provider() -> FakeProvider:
    """Provide a scripted market data provider (FX 7.2, no prices)."""
    return FakeProvider()


@pytest.fixture
def config() -> CollectorConfig:
    """Provide default settings with retry backoff disabled."""
    return CollectorConfig(retry_base_delay_seconds=0.0)


@pytest.fixture
def now() -> datetime:
    """Provide a fixed UTC clock reading."""
    return datetime(2024, 6, 1, 12, 0, 0)


@pytest.fixture
def btc(db: duckdb.DuckDBPyConnection) -> int:
    """Register BTC and return its asset id."""
    return add_asset(db, "BTC", "crypto", name="Bitcoin")
