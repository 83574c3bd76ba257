"""Shared wiring for the CLI and the sidecar.

Both entry points need the same three things: settings, an initialized
database connection and a market data provider.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from portfoliocollector.config import CollectorConfig
from portfoliocollector.db.connection import init_collector_db
from portfoliocollector.market.yahoo import YahooMarketDataProvider

if TYPE_CHECKING:
    import duckdb

    from portfoliocollector.market.provider import MarketDataProvider

logger = logging.getLogger(__name__)


@dataclass
class CollectorContext:
    """Open resources for one collector process."""

    config: CollectorConfig
    conn: duckdb.DuckDBPyConnection
    provider: MarketDataProvider

    @classmethod
    def open(
        cls,
        config: CollectorConfig | None = None,
        provider: MarketDataProvider | None = None,
    ) -> CollectorContext:
        """Initialize the database and provider from settings.

        Args:
            config: Collector settings (default: read from the environment).
            provider: Market data provider (default: Yahoo Finance).

        Returns:
            A ready CollectorContext. Call :meth:`close` when done.

        """
        cfg = config or CollectorConfig.from_env()
        conn = init_collector_db(cfg.db_path)
        market = provider or YahooMarketDataProvider(
            fx_symbol=cfg.fx_symbol, timeout=cfg.provider_timeout_seconds
        )
        return cls(config=cfg, conn=conn, provider=market)

    def close(self) -> None:
        self.conn.close()
        logger.debug("Closed collector database %s", self.config.db_path)
