"""DuckDB schema definitions for the collector.

Contains DDL statements for all collector tables:
- assets / holdings: what an owner holds (written by the CRUD layer)
- asset_prices: current-price cache, one row per asset
- price_history: daily price observations per asset
- portfolio_snapshots: one valuation per owner per day
- collector_runs: run ledger for periodic jobs
- backfill_jobs: durable per-asset historical backfill requests

The UNIQUE constraints on portfolio_snapshots, collector_runs and
backfill_jobs are the idempotency keys. They are enforced here, not in
application code, so duplicate triggers lose at insert time.

"""

from __future__ import annotations

RUN_STATUSES = ("running", "success", "failed")
JOB_STATUSES = ("queued", "running", "completed", "partial", "failed")
TERMINAL_JOB_STATUSES = ("completed", "partial", "failed")


def _in_list(values: tuple[str, ...]) -> str:
    return ", ".join(f"'{v}'" for v in values)


# ── Sequences ──

CREATE_SEQUENCES: list[str] = [
    f"CREATE SEQUENCE IF NOT EXISTS {name}_id_seq START 1;"
    for name in (
        "assets",
        "holdings",
        "portfolio_snapshots",
        "collector_runs",
        "backfill_jobs",
    )
]

# ── Assets ──

CREATE_ASSETS = """
CREATE TABLE IF NOT EXISTS assets (
    id           BIGINT PRIMARY KEY DEFAULT nextval('assets_id_seq'),
    symbol       VARCHAR NOT NULL UNIQUE,
    name         VARCHAR NOT NULL DEFAULT '',
    asset_class  VARCHAR NOT NULL,
    currency     VARCHAR NOT NULL DEFAULT 'USD'
);
"""

# ── Holdings ──

CREATE_HOLDINGS = """
CREATE TABLE IF NOT EXISTS holdings (
    id           BIGINT PRIMARY KEY DEFAULT nextval('holdings_id_seq'),
    user_id      BIGINT NOT NULL,
    asset_id     BIGINT NOT NULL,
    quantity     DOUBLE NOT NULL,
    avg_cost     DOUBLE NOT NULL,
    updated_at   TIMESTAMP DEFAULT current_timestamp,
    UNIQUE       (user_id, asset_id)
);
"""

# ── Current-price cache ──

CREATE_ASSET_PRICES = """
CREATE TABLE IF NOT EXISTS asset_prices (
    asset_id     BIGINT PRIMARY KEY,
    price        DOUBLE NOT NULL,
    updated_at   TIMESTAMP NOT NULL
);
"""

# ── Price History ──

CREATE_PRICE_HISTORY = """
CREATE TABLE IF NOT EXISTS price_history (
    asset_id     BIGINT NOT NULL,
    date         DATE NOT NULL,
    price        DOUBLE NOT NULL CHECK (price > 0),
    source       VARCHAR DEFAULT 'backfill',
    fetched_at   TIMESTAMP DEFAULT current_timestamp,
    PRIMARY KEY  (asset_id, date)
);
"""

# ── Portfolio Snapshots ──

CREATE_PORTFOLIO_SNAPSHOTS = """
CREATE TABLE IF NOT EXISTS portfolio_snapshots (
    id               BIGINT PRIMARY KEY DEFAULT nextval('portfolio_snapshots_id_seq'),
    user_id          BIGINT NOT NULL,
    snapshot_date    DATE NOT NULL,
    total_value_usd  DOUBLE NOT NULL,
    total_cost_usd   DOUBLE NOT NULL,
    total_pnl_usd    DOUBLE NOT NULL,
    fx_rate          DOUBLE NOT NULL,
    created_at       TIMESTAMP NOT NULL,
    UNIQUE           (user_id, snapshot_date)
);
"""

# ── Run Ledger ──

CREATE_COLLECTOR_RUNS = f"""
CREATE TABLE IF NOT EXISTS collector_runs (
    id             BIGINT PRIMARY KEY DEFAULT nextval('collector_runs_id_seq'),
    user_id        BIGINT NOT NULL,
    run_type       VARCHAR NOT NULL,
    run_key        VARCHAR NOT NULL,
    status         VARCHAR NOT NULL CHECK (status IN ({_in_list(RUN_STATUSES)})),
    started_at     TIMESTAMP NOT NULL,
    finished_at    TIMESTAMP,
    error_message  VARCHAR,
    UNIQUE         (user_id, run_type, run_key)
);
"""

# ── Backfill Jobs ──

CREATE_BACKFILL_JOBS = f"""
CREATE TABLE IF NOT EXISTS backfill_jobs (
    id             BIGINT PRIMARY KEY DEFAULT nextval('backfill_jobs_id_seq'),
    user_id        BIGINT NOT NULL,
    asset_id       BIGINT NOT NULL,
    range_code     VARCHAR NOT NULL,
    status         VARCHAR NOT NULL CHECK (status IN ({_in_list(JOB_STATUSES)})),
    requested_at   TIMESTAMP NOT NULL,
    started_at     TIMESTAMP,
    completed_at   TIMESTAMP,
    error_message  VARCHAR,
    UNIQUE         (user_id, asset_id, range_code)
);
"""

# All DDL statements in creation order
ALL_TABLES: list[str] = [
    *CREATE_SEQUENCES,
    CREATE_ASSETS,
    CREATE_HOLDINGS,
    CREATE_ASSET_PRICES,
    CREATE_PRICE_HISTORY,
    CREATE_PORTFOLIO_SNAPSHOTS,
    CREATE_COLLECTOR_RUNS,
    CREATE_BACKFILL_JOBS,
]
