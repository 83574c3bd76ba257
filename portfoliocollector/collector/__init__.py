"""Collector jobs: run ledger, daily snapshot, backfill queue, retention."""
