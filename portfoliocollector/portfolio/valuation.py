"""Portfolio valuation in USD.

Turns an owner's holdings and a set of per-asset prices into USD totals
for the daily snapshot. Holdings quoted in the local currency are
converted by dividing by the USD/local FX rate; everything else is
taken to be quoted in USD already.

"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class PortfolioValuation:
    """Point-in-time valuation result.

    Attributes:
        total_value_usd: Sum of quantity * price over priced holdings.
        total_cost_usd: Sum of quantity * avg_cost over priced holdings.
        total_pnl_usd: total_value_usd - total_cost_usd.
        by_asset: Market value in USD per symbol.
        excluded: Symbols left out because no price was available.

    """

    total_value_usd: float = 0.0
    total_cost_usd: float = 0.0
    total_pnl_usd: float = 0.0
    by_asset: dict[str, float] = field(default_factory=dict)
    excluded: list[str] = field(default_factory=list)


def to_usd(amount: float, currency: str, fx_rate: float, local_currency: str) -> float:
    """Convert an amount to USD.

    Args:
        amount: Amount in ``currency``.
        currency: ISO code of the amount.
        fx_rate: Units of local currency per USD.
        local_currency: ISO code of the local currency.

    Returns:
        The amount in USD.

    Raises:
        ValueError: If a conversion is needed and fx_rate is not positive.

    """
    if currency.upper() != local_currency.upper():
        return amount
    if fx_rate <= 0:
        msg = f"fx_rate must be positive, got {fx_rate}"
        raise ValueError(msg)
    return amount / fx_rate


def value_holdings(
    holdings: list[dict[str, Any]],
    prices: dict[int, float],
    fx_rate: float,
    local_currency: str = "CNY",
) -> PortfolioValuation:
    """Value holdings at the given prices.

    Holdings without an entry in ``prices`` are excluded from both the
    value and the cost totals, so P&L stays comparable.

    Args:
        holdings: Holding dicts with keys: asset_id, symbol, currency,
            quantity, avg_cost.
        prices: Dict mapping asset_id to its current price.
        fx_rate: Units of local currency per USD.
        local_currency: ISO code of the local currency.

    Returns:
        PortfolioValuation with USD totals and per-asset breakdown.

    """
    valuation = PortfolioValuation()

    for holding in holdings:
        symbol = holding["symbol"]
        price = prices.get(holding["asset_id"])
        if price is None:
            valuation.excluded.append(symbol)
            continue

        quantity = float(holding["quantity"])
        currency = holding.get("currency") or "USD"
        value = to_usd(quantity * price, currency, fx_rate, local_currency)
        cost = to_usd(
            quantity * float(holding["avg_cost"]), currency, fx_rate, local_currency
        )

        valuation.total_value_usd += value
        valuation.total_cost_usd += cost
        valuation.by_asset[symbol] = valuation.by_asset.get(symbol, 0.0) + value

    valuation.total_pnl_usd = valuation.total_value_usd - valuation.total_cost_usd
    return valuation
