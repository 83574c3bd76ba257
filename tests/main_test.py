"""Tests for the sidecar entry point (dispatch and message loop)."""

from __future__ import annotations

import json
from datetime import date, datetime, timedelta
from io import StringIO
from unittest.mock import patch

import numpy as np
import pytest
from portfoliocollector.clock import utc_today
from portfoliocollector.context import CollectorContext
from portfoliocollector.db.portfolio_store import upsert_holding
from portfoliocollector.main import _NumpyEncoder, dispatch, serve
from portfoliocollector.market.price_cache import PriceCache
from portfoliocollector.market.provider import PricePoint


@pytest.fixture
def ctx(db, provider, config) -> CollectorContext:
    """Provide a context over the in-memory database and fake provider."""
    return CollectorContext(config=config, conn=db, provider=provider)


def _serve(ctx: CollectorContext, *requests: dict) -> list[dict]:
    stdin = StringIO("".join(json.dumps(r) + "\n" for r in requests))
    stdout = StringIO()
    with patch("sys.stdin", stdin), patch("sys.stdout", stdout):
        serve(ctx)
    return [json.loads(line) for line in stdout.getvalue().splitlines()]


class TestNumpyEncoder:
    """Tests for JSON serialization of non-JSON types."""

    def test_numpy_and_dates(self):
        payload = {
            "n": np.int64(3),
            "x": np.float64(1.5),
            "d": date(2024, 6, 1),
            "t": datetime(2024, 6, 1, 12, 0),
        }
        assert json.loads(json.dumps(payload, cls=_NumpyEncoder)) == {
            "n": 3,
            "x": 1.5,
            "d": "2024-06-01",
            "t": "2024-06-01T12:00:00",
        }

    def test_unknown_type_raises(self):
        with pytest.raises(TypeError):
            json.dumps({"s": {1, 2}}, cls=_NumpyEncoder)


class TestDispatch:
    """Tests for the dispatch function."""

    def test_unknown_method_raises(self, ctx):
        with pytest.raises(ValueError, match="Unknown method"):
            dispatch(ctx, "nonexistent.method", {})

    def test_unknown_method_includes_name(self, ctx):
        with pytest.raises(ValueError, match=r"foo\.bar"):
            dispatch(ctx, "foo.bar", {})

    def test_daily_snapshot(self, ctx, btc, db):
        upsert_holding(db, 1, btc, 0.5, 30000.0)
        PriceCache(db).put(btc, 50000.0)

        result = dispatch(ctx, "collector.daily_snapshot", {"user_id": 1})

        assert result.recorded is True
        assert result.total_value_usd == pytest.approx(25000.0)

    def test_daily_snapshot_with_date(self, ctx):
        result = dispatch(ctx, "collector.daily_snapshot", {"date": "2024-05-30"})
        assert result.snapshot_date == date(2024, 5, 30)

    def test_backfill_round_trip(self, ctx, btc, provider):
        today = utc_today()
        provider.history["BTC"] = [PricePoint(today - timedelta(days=1), 100.0)]

        request = dispatch(
            ctx, "collector.request_backfill", {"asset_id": btc, "range": "1M"}
        )
        assert request.created is True

        drained = dispatch(ctx, "collector.run_backfills", {})
        assert drained["processed"] == 1
        assert drained["jobs"][0].status == "completed"

        history = dispatch(ctx, "collector.price_history", {"asset_id": btc})
        assert len(history["points"]) == 1
        assert history["latest_date"] == today - timedelta(days=1)

    def test_current_price(self, ctx, btc, db, provider):
        empty = dispatch(ctx, "collector.current_price", {"asset_id": btc})
        assert empty["price"] is None
        assert empty["fresh"] is False

        PriceCache(db).put(btc, 50000.0)
        result = dispatch(ctx, "collector.current_price", {"asset_id": btc})

        assert result["price"] == pytest.approx(50000.0)
        assert result["fresh"] is True
        assert provider.calls == []

    def test_retry_backfill(self, ctx, btc):
        job = dispatch(ctx, "collector.request_backfill", {"asset_id": btc}).job
        dispatch(ctx, "collector.run_backfills", {})  # no data -> failed
        retried = dispatch(ctx, "collector.retry_backfill", {"job_id": job.id})
        assert retried.status == "queued"

    def test_cleanup_uses_configured_window(self, ctx):
        result = dispatch(ctx, "collector.cleanup", {})
        expected = utc_today() - timedelta(days=ctx.config.retention_days)
        assert result.cutoff_date == expected

    def test_cleanup_rejects_explicit_zero_window(self, ctx):
        with pytest.raises(ValueError, match="retention_days"):
            dispatch(ctx, "collector.cleanup", {"retention_days": 0})

    def test_stats_and_snapshots(self, ctx):
        dispatch(ctx, "collector.daily_snapshot", {"date": "2024-06-01"})
        stats = dispatch(ctx, "collector.stats", {})
        assert stats.successful_runs == 1

        snapshots = dispatch(
            ctx, "collector.snapshots", {"start_date": "2024-06-01"}
        )
        assert [s["snapshot_date"] for s in snapshots] == [date(2024, 6, 1)]


class TestServe:
    """Tests for the stdin/stdout message loop."""

    def test_valid_request_returns_response(self, ctx):
        (response,) = _serve(
            ctx, {"id": "1", "method": "collector.stats", "params": {"user_id": 1}}
        )
        assert response["id"] == "1"
        assert response["result"]["total_runs"] == 0

    def test_dataclass_results_serialized(self, ctx):
        (response,) = _serve(
            ctx,
            {
                "id": "2",
                "method": "collector.daily_snapshot",
                "params": {"date": "2024-06-01"},
            },
        )
        assert response["result"]["recorded"] is True
        assert response["result"]["snapshot_date"] == "2024-06-01"

    def test_invalid_json_returns_error(self, ctx):
        stdin = StringIO("not valid json\n")
        stdout = StringIO()
        with patch("sys.stdin", stdin), patch("sys.stdout", stdout):
            serve(ctx)

        response = json.loads(stdout.getvalue().strip())
        assert response["id"] == "unknown"
        assert "error" in response

    def test_missing_method_returns_error(self, ctx):
        (response,) = _serve(ctx, {"id": "3"})
        assert response["id"] == "3"
        assert "error" in response

    def test_validation_error_returned(self, ctx):
        (response,) = _serve(
            ctx,
            {
                "id": "4",
                "method": "collector.request_backfill",
                "params": {"asset_id": 999},
            },
        )
        assert "Unknown asset" in response["error"]["message"]

    def test_empty_lines_are_skipped(self, ctx):
        request = json.dumps({"id": "5", "method": "collector.stats", "params": {}})
        stdin = StringIO("\n\n" + request + "\n\n")
        stdout = StringIO()
        with patch("sys.stdin", stdin), patch("sys.stdout", stdout):
            serve(ctx)
        assert len(stdout.getvalue().strip().splitlines()) == 1

    def test_loop_continues_after_error(self, ctx):
        responses = _serve(
            ctx,
            {"id": "a", "method": "nope"},
            {"id": "b", "method": "collector.stats", "params": {}},
        )
        assert "error" in responses[0]
        assert "result" in responses[1]
