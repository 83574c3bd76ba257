"""Price validation for incoming market data.

A price is persistable only if it is a finite number strictly greater
than zero. Missing (None), NaN, infinite, zero and negative prices are
all counted as invalid and never reach the price_history table.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from numbers import Real

import numpy as np

from portfoliocollector.market.provider import PricePoint

logger = logging.getLogger(__name__)


def is_valid_price(value: object) -> bool:
    """Return True if ``value`` is a finite number greater than zero.

    Accepts Python and NumPy numeric scalars. Booleans are rejected.
    """
    if value is None or isinstance(value, bool | np.bool_):
        return False
    if not isinstance(value, Real | np.number):
        return False
    return bool(np.isfinite(value)) and float(value) > 0  # type: ignore[arg-type]


@dataclass
class PartitionedPoints:
    """Result of splitting a price series into persistable and rejected points."""

    valid: list[PricePoint] = field(default_factory=list)
    invalid: list[PricePoint] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.valid) + len(self.invalid)


def partition_price_points(points: Iterable[PricePoint]) -> PartitionedPoints:
    """Split a series into valid and invalid points, preserving order.

    Args:
        points: Price points as returned by a provider.

    Returns:
        PartitionedPoints with ``valid`` and ``invalid`` lists.

    """
    result = PartitionedPoints()
    for point in points:
        if is_valid_price(point.price):
            result.valid.append(point)
        else:
            result.invalid.append(point)
            logger.warning("Invalid price on %s: %r", point.date, point.price)
    return result
