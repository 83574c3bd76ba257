"""Tests for retention cleanup and collector stats."""

from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest
from portfoliocollector.collector.backfill import (
    claim_job,
    drain_queued_backfills,
    request_backfill,
)
from portfoliocollector.collector.retention import (
    cleanup_old_data,
    get_collector_stats,
)
from portfoliocollector.collector.run_ledger import finish_run, list_runs, try_start_run
from portfoliocollector.db.market_store import insert_price_points, query_price_history
from portfoliocollector.db.portfolio_store import (
    add_asset,
    get_portfolio_snapshots,
    save_portfolio_snapshot,
)
from portfoliocollector.market.provider import PricePoint

TODAY = date(2024, 6, 1)


def _finished_run(db, key, status, finished_at):
    start = try_start_run(db, 1, "daily-snapshot", key, finished_at)
    finish_run(db, start.run_id, status, finished_at=finished_at)
    return start.run_id


class TestCleanupOldData:
    """Tests for time-series pruning."""

    def test_prunes_snapshots_outside_window(self, db):
        for day in (date(2023, 6, 1), date(2023, 6, 2), date(2024, 5, 31)):
            save_portfolio_snapshot(db, 1, day, 1.0, 1.0, 7.2)

        result = cleanup_old_data(db, 1, 365, today=TODAY)

        assert result.cutoff_date == date(2023, 6, 2)
        assert result.deleted_snapshots == 1
        kept = [s["snapshot_date"] for s in get_portfolio_snapshots(db, 1)]
        assert kept == [date(2023, 6, 2), date(2024, 5, 31)]

    def test_other_owner_snapshots_untouched(self, db):
        save_portfolio_snapshot(db, 2, date(2020, 1, 1), 1.0, 1.0, 7.2)
        cleanup_old_data(db, 1, 365, today=TODAY)
        assert len(get_portfolio_snapshots(db, 2)) == 1

    def test_prunes_price_history(self, db, btc):
        insert_price_points(
            db,
            btc,
            [PricePoint(date(2020, 1, 1), 10.0), PricePoint(date(2024, 5, 1), 20.0)],
        )
        result = cleanup_old_data(db, 1, 365, today=TODAY)
        assert result.deleted_history == 1
        assert [r["date"] for r in query_price_history(db, btc)] == [date(2024, 5, 1)]

    def test_audit_trail_kept_by_default(self, db, btc, provider, config):
        _finished_run(db, "2020-01-01", "success", datetime(2020, 1, 1, 0, 5))
        request_backfill(db, 1, btc, now=datetime(2020, 1, 1))
        drain_queued_backfills(db, provider, 1, config, now=datetime(2020, 1, 1))

        result = cleanup_old_data(db, 1, 365, today=TODAY)

        assert result.deleted_runs == 0
        assert result.deleted_jobs == 0
        assert len(list_runs(db, 1)) == 1

    def test_audit_window_prunes_terminal_records_only(self, db, btc, now):
        old = datetime(2020, 1, 1, 0, 5)
        _finished_run(db, "2020-01-01", "failed", old)
        _finished_run(db, "2024-05-31", "success", datetime(2024, 5, 31, 0, 5))
        try_start_run(db, 1, "daily-snapshot", "2019-12-31", old)  # stuck
        db.execute(
            """
            INSERT INTO backfill_jobs
                (user_id, asset_id, range_code, status, requested_at, completed_at)
            VALUES (1, ?, '1Y', 'completed', ?, ?), (1, ?, '3Y', 'queued', ?, NULL)
            """,
            [btc, old, old, btc, old],
        )

        result = cleanup_old_data(
            db, 1, 365, audit_retention_days=1000, today=TODAY
        )

        assert result.deleted_runs == 1
        assert result.deleted_jobs == 1
        remaining = {r["run_key"]: r["status"] for r in list_runs(db, 1)}
        assert remaining == {"2024-05-31": "success", "2019-12-31": "running"}
        jobs = db.execute("SELECT status FROM backfill_jobs").fetchall()
        assert jobs == [("queued",)]

    @pytest.mark.parametrize("days", [0, -1])
    def test_invalid_window_raises(self, db, days):
        with pytest.raises(ValueError, match="retention_days"):
            cleanup_old_data(db, 1, days, today=TODAY)

    def test_audit_window_shorter_than_retention_raises(self, db):
        with pytest.raises(ValueError, match="audit_retention_days"):
            cleanup_old_data(db, 1, 365, audit_retention_days=30, today=TODAY)

    def test_nothing_to_delete(self, db):
        result = cleanup_old_data(db, 1, 730, today=TODAY)
        assert result.to_dict() == {
            "cutoff_date": date(2022, 6, 2),
            "deleted_snapshots": 0,
            "deleted_history": 0,
            "deleted_runs": 0,
            "deleted_jobs": 0,
        }


class TestGetCollectorStats:
    """Tests for run and job counters."""

    def test_empty(self, db, now):
        stats = get_collector_stats(db, 1, now=now)
        assert stats.total_runs == 0
        assert stats.pending_jobs == 0
        assert stats.total_jobs == 0

    def test_counts(self, db, provider, config, now):
        _finished_run(db, "2024-05-30", "success", now - timedelta(days=2))
        _finished_run(db, "2024-05-31", "failed", now - timedelta(days=1))
        try_start_run(db, 1, "daily-snapshot", "2024-06-01", now)

        assets = [add_asset(db, s, "stock_us") for s in ("AAA", "BBB", "CCC", "DDD")]
        provider.history["AAA"] = [PricePoint(date(2024, 5, 1), 1.0)]
        provider.history["BBB"] = [
            PricePoint(date(2024, 5, 1), 1.0),
            PricePoint(date(2024, 5, 2), -1.0),
        ]
        for asset_id in assets[:3]:
            request_backfill(db, 1, asset_id, now=now - timedelta(hours=1))
        drain_queued_backfills(db, provider, 1, config, now=now)  # completed, partial, failed
        queued = request_backfill(db, 1, assets[3], now=now).job

        stats = get_collector_stats(db, 1, now=now)

        assert stats.total_runs == 3
        assert stats.successful_runs == 1
        assert stats.failed_runs == 1
        assert stats.running_runs == 1
        assert stats.completed_jobs == 3
        assert stats.failed_jobs == 1
        assert stats.pending_jobs == 1
        assert stats.total_jobs == 4

        claim_job(db, queued.id, now)
        stats = get_collector_stats(db, 1, now=now)
        assert stats.pending_jobs == 0
        assert stats.running_jobs == 1

    def test_counters_are_consistent(self, db, btc, now):
        _finished_run(db, "a", "success", now)
        _finished_run(db, "b", "failed", now)
        try_start_run(db, 1, "daily-snapshot", "c", now)
        job = request_backfill(db, 1, btc).job
        claim_job(db, job.id, now)
        request_backfill(db, 1, btc, "3Y")

        stats = get_collector_stats(db, 1, now=now)

        assert stats.total_runs == (
            stats.successful_runs + stats.failed_runs + stats.running_runs
        )
        assert stats.pending_jobs + stats.completed_jobs <= stats.total_jobs
        assert (
            stats.pending_jobs + stats.completed_jobs + stats.running_jobs
            == stats.total_jobs
        )

    def test_stuck_detection(self, db, btc, now):
        try_start_run(db, 1, "daily-snapshot", "old", now - timedelta(hours=2))
        try_start_run(db, 1, "daily-snapshot", "new", now - timedelta(minutes=5))
        job = request_backfill(db, 1, btc).job
        claim_job(db, job.id, now - timedelta(hours=3))

        stats = get_collector_stats(db, 1, now=now, stuck_after_minutes=60)

        assert stats.running_runs == 2
        assert stats.stuck_runs == 1
        assert stats.stuck_jobs == 1

    def test_scoped_to_owner(self, db, now):
        try_start_run(db, 2, "daily-snapshot", "2024-06-01", now)
        assert get_collector_stats(db, 1, now=now).total_runs == 0

    def test_to_dict_has_base_counters(self, db, now):
        data = get_collector_stats(db, 1, now=now).to_dict()
        for key in (
            "pending_jobs",
            "completed_jobs",
            "total_runs",
            "successful_runs",
            "failed_runs",
        ):
            assert data[key] == 0
