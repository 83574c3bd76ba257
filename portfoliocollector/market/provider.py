"""Market data provider contract.

The collector never talks to a data vendor directly. It depends on the
three capabilities below, so a vendor adapter (see ``market.yahoo``) or
a test double can be swapped in without touching the jobs.

Unavailable values are reported in one of two ways:
  - ``get_fx_rate`` and ``get_current_price`` may return None.
  - Any method may raise :class:`ProviderUnavailableError`.

Adapters must translate their own transport errors into
``ProviderUnavailableError`` so callers can tell an upstream outage
from a bug or a persistence failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date


class ProviderUnavailableError(Exception):
    """The market data provider could not answer a request."""


@dataclass(frozen=True)
class PricePoint:
    """One daily observation returned by a historical price fetch.

    ``price`` is whatever the vendor returned. It may be None, NaN or
    non-positive; the backfill job decides what is persistable.
    """

    date: date
    price: float | None


class MarketDataProvider(ABC):
    """Source of current prices, FX rates and daily price history."""

    @abstractmethod
    def get_fx_rate(self) -> float | None:
        """Return the current USD -> local currency rate, or None."""

    @abstractmethod
    def get_current_price(self, symbol: str, asset_class: str) -> float | None:
        """Return the latest price for an asset, or None."""

    @abstractmethod
    def get_historical_daily_prices(
        self,
        symbol: str,
        asset_class: str,
        start_date: date,
        end_date: date,
    ) -> list[PricePoint]:
        """Return daily prices for ``[start_date, end_date]`` inclusive.

        Raises:
            ProviderUnavailableError: If the series cannot be fetched.

        """
