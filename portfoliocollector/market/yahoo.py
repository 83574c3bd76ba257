"""Yahoo Finance market data adapter.

Fetches latest prices, the USD/local FX rate and daily close history
via the yfinance library. This is the default provider for the collector.

Note:
    yfinance uses an unofficial Yahoo Finance API. Rate limiting
    and respectful request patterns are required; the backfill drain
    is sequential for that reason.

    yfinance is imported lazily. Functions raise ``ImportError`` at
    call time if the library is not installed.

"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any

from portfoliocollector.market.provider import (
    MarketDataProvider,
    PricePoint,
    ProviderUnavailableError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

# Yahoo suffixes for mainland China listings: 6xxxxx trade in Shanghai,
# everything else in Shenzhen.
_SHANGHAI_PREFIX = "6"


def _require_yfinance() -> tuple[Any, Any]:
    """Lazy-import yfinance and pandas.

    Returns:
        Tuple of (yfinance module, pandas module).

    Raises:
        ImportError: If yfinance is not installed.

    """
    try:
        import pandas as pd
        import yfinance as yf
    except ImportError as exc:
        msg = (
            "yfinance is required for Yahoo Finance data. "
            "Install with: pip install portfoliocollector"
        )
        raise ImportError(msg) from exc
    return yf, pd


def to_yahoo_symbol(symbol: str, asset_class: str) -> str:
    """Map an asset symbol and class to the ticker Yahoo understands.

    Args:
        symbol: Symbol as stored on the asset (e.g. "BTC", "600519").
        asset_class: One of "crypto", "stock_us", "stock_cn", "gold",
            or any other class, which is passed through unchanged.

    Returns:
        Yahoo ticker string.

    Raises:
        ValueError: If symbol is empty for a class that needs one.

    """
    cleaned = (symbol or "").strip().upper()
    if asset_class == "gold":
        return "GC=F"
    if not cleaned:
        msg = "symbol must be a non-empty string"
        raise ValueError(msg)
    if asset_class == "crypto":
        return cleaned if cleaned.endswith("-USD") else f"{cleaned}-USD"
    if asset_class == "stock_cn" and "." not in cleaned:
        suffix = ".SS" if cleaned.startswith(_SHANGHAI_PREFIX) else ".SZ"
        return cleaned + suffix
    return cleaned


def fetch_latest_close(
    ticker_symbol: str,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> float | None:
    """Fetch the most recent daily close for a Yahoo ticker.

    Args:
        ticker_symbol: Yahoo ticker (already mapped).
        timeout: Request timeout in seconds.

    Returns:
        Latest close as float, or None if Yahoo returned no rows.

    Raises:
        ProviderUnavailableError: If the request itself fails.
        ImportError: If yfinance is not installed.

    """
    yf, _pd = _require_yfinance()
    try:
        df = yf.Ticker(ticker_symbol).history(period="5d", timeout=timeout)
    except Exception as exc:
        msg = f"Yahoo request for {ticker_symbol} failed: {exc}"
        raise ProviderUnavailableError(msg) from exc

    if df.empty or "Close" not in df:
        logger.warning("No recent price data for %s", ticker_symbol)
        return None
    closes = df["Close"].dropna()
    if closes.empty:
        return None
    return float(closes.iloc[-1])


def fetch_daily_closes(
    ticker_symbol: str,
    start_date: date,
    end_date: date,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> list[PricePoint]:
    """Fetch daily closes for ``[start_date, end_date]`` inclusive.

    Missing closes are kept as NaN so the caller can count them.

    Args:
        ticker_symbol: Yahoo ticker (already mapped).
        start_date: First day of the range.
        end_date: Last day of the range.
        timeout: Request timeout in seconds.

    Returns:
        Price points ordered by date. Empty list if Yahoo has no rows.

    Raises:
        ValueError: If start_date is after end_date.
        ProviderUnavailableError: If the request itself fails.
        ImportError: If yfinance is not installed.

    """
    if start_date > end_date:
        msg = f"start_date ({start_date}) must be <= end_date ({end_date})"
        raise ValueError(msg)

    yf, pd = _require_yfinance()
    try:
        # yfinance treats ``end`` as exclusive.
        df = yf.Ticker(ticker_symbol).history(
            start=start_date.isoformat(),
            end=(end_date + timedelta(days=1)).isoformat(),
            auto_adjust=False,
            timeout=timeout,
        )
    except Exception as exc:
        msg = f"Yahoo history request for {ticker_symbol} failed: {exc}"
        raise ProviderUnavailableError(msg) from exc

    if df.empty:
        logger.warning(
            "No price data for %s (%s to %s)",
            ticker_symbol,
            start_date,
            end_date,
        )
        return []

    return [
        PricePoint(
            date=pd.Timestamp(date_idx).date(),
            price=float(close),
        )
        for date_idx, close in df["Close"].items()
    ]


class YahooMarketDataProvider(MarketDataProvider):
    """MarketDataProvider backed by yfinance."""

    def __init__(
        self,
        fx_symbol: str = "USDCNY=X",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.fx_symbol = fx_symbol
        self.timeout = timeout

    def get_fx_rate(self) -> float | None:
        return fetch_latest_close(self.fx_symbol, timeout=self.timeout)

    def get_current_price(self, symbol: str, asset_class: str) -> float | None:
        return fetch_latest_close(
            to_yahoo_symbol(symbol, asset_class),
            timeout=self.timeout,
        )

    def get_historical_daily_prices(
        self,
        symbol: str,
        asset_class: str,
        start_date: date,
        end_date: date,
    ) -> list[PricePoint]:
        return fetch_daily_closes(
            to_yahoo_symbol(symbol, asset_class),
            start_date,
            end_date,
            timeout=self.timeout,
        )
