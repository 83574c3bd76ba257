"""Current-price cache keyed by asset.

Replaces ad-hoc reads of a mutable "current price" column with one
component that owns the value, its timestamp and the staleness rule.
Entries live in the ``asset_prices`` table so every process sharing the
database sees the same cache; an entry older than ``max_age`` is stale
and :meth:`PriceCache.get` treats it as a miss.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from portfoliocollector.clock import utcnow
from portfoliocollector.db.market_store import record_live_price
from portfoliocollector.market.validation import is_valid_price

if TYPE_CHECKING:
    import duckdb

    from portfoliocollector.market.provider import MarketDataProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedPrice:
    """A cached price and the moment it was observed."""

    asset_id: int
    price: float
    updated_at: datetime

    def age(self, now: datetime) -> timedelta:
        return now - self.updated_at


class PriceCache:
    """Read-through cache of current asset prices.

    Args:
        conn: Active DuckDB connection.
        max_age: Entries older than this are stale.

    """

    def __init__(
        self,
        conn: duckdb.DuckDBPyConnection,
        max_age: timedelta = timedelta(hours=24),
    ) -> None:
        self.conn = conn
        self.max_age = max_age
        self._hits = 0
        self._misses = 0
        self._stale = 0

    def peek(self, asset_id: int) -> CachedPrice | None:
        """Return the stored entry regardless of age, without touching stats."""
        row = self.conn.execute(
            "SELECT price, updated_at FROM asset_prices WHERE asset_id = ?",
            [asset_id],
        ).fetchone()
        if row is None:
            return None
        return CachedPrice(asset_id=asset_id, price=float(row[0]), updated_at=row[1])

    def get(self, asset_id: int, now: datetime | None = None) -> CachedPrice | None:
        """Return the entry if present and fresh, else None."""
        return self.fresh(self.peek(asset_id), now=now)

    def fresh(
        self, entry: CachedPrice | None, now: datetime | None = None
    ) -> CachedPrice | None:
        """Apply the staleness rule to an entry already read, counting stats.

        Lets callers that joined ``asset_prices`` into their own query skip
        the per-asset lookup in :meth:`get`.
        """
        if entry is None:
            self._misses += 1
            return None
        if entry.age(now or utcnow()) > self.max_age:
            self._stale += 1
            return None
        self._hits += 1
        return entry

    def put(
        self,
        asset_id: int,
        price: float,
        at: datetime | None = None,
    ) -> CachedPrice:
        """Store a freshly observed price.

        The observation is also appended to price_history as that day's
        point (a day that already has one keeps it).

        Raises:
            ValueError: If price is not a finite positive number.

        """
        if not is_valid_price(price):
            msg = f"price must be a finite positive number, got {price!r}"
            raise ValueError(msg)
        observed_at = at or utcnow()
        self.conn.execute(
            "INSERT OR REPLACE INTO asset_prices (asset_id, price, updated_at) "
            "VALUES (?, ?, ?)",
            [asset_id, float(price), observed_at],
        )
        record_live_price(self.conn, asset_id, float(price), observed_at.date())
        return CachedPrice(asset_id=asset_id, price=float(price), updated_at=observed_at)

    def refresh(
        self,
        asset_id: int,
        symbol: str,
        asset_class: str,
        provider: MarketDataProvider,
        now: datetime | None = None,
    ) -> CachedPrice | None:
        """Fetch a live price from the provider and cache it.

        Provider failures are not errors here: the cache is left as it
        was and None is returned.

        Returns:
            The new entry, or None if no usable price was obtained.

        """
        try:
            price = provider.get_current_price(symbol, asset_class)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Live price fetch for %s failed: %s", symbol, exc)
            return None
        if not is_valid_price(price):
            logger.warning("Live price fetch for %s returned %r", symbol, price)
            return None
        return self.put(asset_id, float(price), at=now)  # type: ignore[arg-type]

    def stats(self) -> dict[str, int]:
        """Return hit, miss and stale counters since construction."""
        return {"hits": self._hits, "misses": self._misses, "stale": self._stale}
