"""Tests for provider call retries."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from portfoliocollector.market.provider import ProviderUnavailableError
from portfoliocollector.market.retry import call_with_retry


class TestCallWithRetry:
    """Tests for exponential backoff retries."""

    def test_returns_first_success(self):
        fn = MagicMock(return_value=42)
        sleep = MagicMock()
        assert call_with_retry(fn, sleep=sleep) == 42
        fn.assert_called_once()
        sleep.assert_not_called()

    def test_retries_then_succeeds(self):
        fn = MagicMock(side_effect=[ProviderUnavailableError("down"), 7])
        sleep = MagicMock()
        assert call_with_retry(fn, retries=3, base_delay=1.0, sleep=sleep) == 7
        assert fn.call_count == 2
        sleep.assert_called_once_with(1.0)

    def test_backoff_doubles(self):
        fn = MagicMock(side_effect=ProviderUnavailableError("down"))
        sleep = MagicMock()
        with pytest.raises(ProviderUnavailableError):
            call_with_retry(fn, retries=3, base_delay=1.0, sleep=sleep)
        assert fn.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_other_errors_not_retried(self):
        fn = MagicMock(side_effect=KeyError("bug"))
        sleep = MagicMock()
        with pytest.raises(KeyError):
            call_with_retry(fn, sleep=sleep)
        fn.assert_called_once()

    def test_single_attempt(self):
        fn = MagicMock(side_effect=ProviderUnavailableError("down"))
        with pytest.raises(ProviderUnavailableError):
            call_with_retry(fn, retries=1, sleep=MagicMock())
        fn.assert_called_once()

    def test_invalid_retries(self):
        with pytest.raises(ValueError, match="retries"):
            call_with_retry(lambda: 1, retries=0)
