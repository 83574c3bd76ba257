"""DuckDB connection management for the collector.

Handles database initialization, schema creation, transaction scoping
and connection lifecycle. All collector tables live in one file::

    ~/.portfoliocollector/
      data/
        collector.duckdb

"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import duckdb

from portfoliocollector.db.schema import ALL_TABLES

logger = logging.getLogger(__name__)

# Default data directory (can be overridden for testing)
_DEFAULT_DATA_DIR = Path.home() / ".portfoliocollector" / "data"


def get_connection(
    db_path: str | Path | None = None,
    read_only: bool = False,
) -> duckdb.DuckDBPyConnection:
    """Open a DuckDB connection.

    Args:
        db_path: Path to the .duckdb file. If None, uses in-memory database.
        read_only: Open in read-only mode.

    Returns:
        Active DuckDB connection.

    """
    if db_path is None:
        return duckdb.connect(":memory:")

    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(path), read_only=read_only)


def _create_schema(conn: duckdb.DuckDBPyConnection) -> None:
    for ddl in ALL_TABLES:
        conn.execute(ddl)


def init_collector_db(
    db_path: str | Path | None = None,
) -> duckdb.DuckDBPyConnection:
    """Initialize the collector database with schema.

    Args:
        db_path: Path to the collector.duckdb file.
            Defaults to ~/.portfoliocollector/data/collector.duckdb.

    Returns:
        Initialized DuckDB connection.

    """
    if db_path is None:
        db_path = _DEFAULT_DATA_DIR / "collector.duckdb"

    conn = get_connection(db_path)
    _create_schema(conn)
    logger.info("Collector database initialized at %s", db_path)
    return conn


def init_memory_db() -> duckdb.DuckDBPyConnection:
    """Create an in-memory database with full schema.

    Useful for testing and ephemeral operations.

    Returns:
        In-memory DuckDB connection with all tables created.

    """
    conn = get_connection(None)
    _create_schema(conn)
    return conn


@contextmanager
def transaction(conn: duckdb.DuckDBPyConnection) -> Iterator[duckdb.DuckDBPyConnection]:
    """Run the enclosed statements as one all-or-nothing unit.

    Commits when the block exits normally; rolls back and re-raises on
    any exception. DuckDB does not nest transactions, so callers must
    not open one inside another.

    Args:
        conn: Active DuckDB connection.

    Yields:
        The same connection, inside an open transaction.

    """
    conn.begin()
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.commit()


def fetch_dicts(
    conn: duckdb.DuckDBPyConnection,
) -> list[dict[str, Any]]:
    """Fetch the remaining rows of the last statement as column dicts."""
    rows = conn.fetchall()
    columns = [desc[0] for desc in conn.description or []]
    return [dict(zip(columns, row, strict=True)) for row in rows]
