"""PortfolioOS data collector.

Records one portfolio valuation per owner per day and drains a durable
queue of per-asset historical price backfills. Both jobs sit on an
idempotent run ledger so that repeated or concurrent triggers are safe.
"""

__version__ = "0.1.0"
