"""Collector database layer.

DuckDB storage for the run ledger, backfill jobs, portfolio snapshots,
price history and the current-price cache, plus the read-only asset
and holding tables the collector values against.
"""
