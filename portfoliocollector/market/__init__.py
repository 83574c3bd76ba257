"""Market data access: provider contract, Yahoo adapter, price cache."""
