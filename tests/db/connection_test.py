"""Tests for DuckDB connection management."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest
from portfoliocollector.db.connection import (
    fetch_dicts,
    get_connection,
    init_collector_db,
    init_memory_db,
    transaction,
)

TABLE_NAMES = (
    "assets",
    "holdings",
    "asset_prices",
    "price_history",
    "portfolio_snapshots",
    "collector_runs",
    "backfill_jobs",
)


class TestGetConnection:
    """Tests for database connection factory."""

    def test_in_memory_connection(self):
        conn = get_connection(None)
        assert conn.execute("SELECT 1").fetchone() == (1,)
        conn.close()

    def test_creates_parent_directories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "nested" / "deep" / "test.duckdb"
            conn = get_connection(db_path)
            conn.execute("SELECT 1").fetchone()
            conn.close()
            assert db_path.parent.exists()


class TestInitDb:
    """Tests for schema initialization."""

    def test_creates_all_tables(self):
        conn = init_memory_db()
        tables = {t[0] for t in conn.execute("SHOW TABLES").fetchall()}
        assert set(TABLE_NAMES).issubset(tables)
        conn.close()

    def test_tables_are_empty(self):
        conn = init_memory_db()
        for table in TABLE_NAMES:
            count = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
            assert count == (0,), f"{table} should be empty"
        conn.close()

    def test_file_db_is_reopenable(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "collector.duckdb"
            conn = init_collector_db(db_path)
            conn.execute(
                "INSERT INTO assets (symbol, asset_class) VALUES ('BTC', 'crypto')"
            )
            conn.close()

            # Schema creation is idempotent and data survives.
            conn = init_collector_db(db_path)
            assert conn.execute("SELECT COUNT(*) FROM assets").fetchone() == (1,)
            conn.close()


class TestTransaction:
    """Tests for the all-or-nothing transaction scope."""

    def test_commits_on_success(self, db):
        with transaction(db):
            db.execute("INSERT INTO assets (symbol, asset_class) VALUES ('A', 'etf')")
            db.execute("INSERT INTO assets (symbol, asset_class) VALUES ('B', 'etf')")
        assert db.execute("SELECT COUNT(*) FROM assets").fetchone() == (2,)

    def test_rolls_back_on_error(self, db):
        with pytest.raises(RuntimeError), transaction(db):
            db.execute("INSERT INTO assets (symbol, asset_class) VALUES ('A', 'etf')")
            raise RuntimeError("boom")
        assert db.execute("SELECT COUNT(*) FROM assets").fetchone() == (0,)

    def test_connection_usable_after_rollback(self, db):
        with pytest.raises(RuntimeError), transaction(db):
            raise RuntimeError("boom")
        db.execute("INSERT INTO assets (symbol, asset_class) VALUES ('A', 'etf')")
        assert db.execute("SELECT COUNT(*) FROM assets").fetchone() == (1,)


class TestFetchDicts:
    """Tests for row-to-dict conversion."""

    def test_maps_columns(self, db):
        db.execute("SELECT 1 AS a, 'x' AS b")
        assert fetch_dicts(db) == [{"a": 1, "b": "x"}]

    def test_empty_result(self, db):
        db.execute("SELECT * FROM assets")
        assert fetch_dicts(db) == []
