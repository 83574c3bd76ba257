"""Retry with exponential backoff for provider calls."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from portfoliocollector.market.provider import ProviderUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retry(
    fn: Callable[[], T],
    retries: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or ``retries`` attempts are used up.

    Only :class:`ProviderUnavailableError` is retried. Anything else is a
    bug or an infrastructure failure and propagates immediately.

    Args:
        fn: Zero-argument callable to invoke.
        retries: Total number of attempts (>= 1).
        base_delay: Seconds to wait after the first failure; doubles
            after every further failure.
        sleep: Sleep function, injectable for tests.

    Returns:
        The first successful return value of ``fn``.

    Raises:
        ValueError: If retries is less than 1.
        ProviderUnavailableError: The last failure, once attempts run out.

    """
    if retries < 1:
        msg = f"retries must be >= 1, got {retries}"
        raise ValueError(msg)

    for attempt in range(retries):
        try:
            return fn()
        except ProviderUnavailableError as exc:
            if attempt == retries - 1:
                raise
            delay = base_delay * (2**attempt)
            logger.info(
                "Retry %d/%d after %.1fs: %s",
                attempt + 1,
                retries,
                delay,
                exc,
            )
            sleep(delay)

    # Unreachable: the loop either returns or raises.
    msg = "call_with_retry exhausted without a result"
    raise AssertionError(msg)
