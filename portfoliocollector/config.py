"""Collector configuration.

Defaults live on :class:`CollectorConfig`; every field can be overridden
with a ``PORTFOLIOCOLLECTOR_<FIELD>`` environment variable, e.g.
``PORTFOLIOCOLLECTOR_FALLBACK_FX_RATE=7.1``.
"""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

ENV_PREFIX = "PORTFOLIOCOLLECTOR_"

_DEFAULT_DATA_DIR = Path.home() / ".portfoliocollector" / "data"


@dataclass(frozen=True)
class CollectorConfig:
    """Runtime settings for the collector jobs.

    Attributes:
        db_path: DuckDB file holding all collector tables.
        local_currency: Holdings in this currency are converted to USD
            by dividing by the FX rate.
        fx_symbol: Provider symbol for the USD/local exchange rate.
        fallback_fx_rate: Rate used when the FX fetch fails and no
            earlier snapshot recorded one.
        provider_timeout_seconds: Upper bound for a single provider call.
        provider_retries: Attempts per provider call before giving up.
        retry_base_delay_seconds: Backoff base; attempt n waits base * 2**n.
        price_cache_max_age_hours: Cached prices older than this are stale.
        retention_days: Default age limit for snapshots and price history.
        audit_retention_days: Age limit for terminal runs and jobs.
            None keeps the audit trail forever.
        max_jobs_per_drain: Cap on jobs handled by one drain. None drains
            everything that is queued.
        stuck_after_minutes: Running runs/jobs older than this are
            reported as stuck.

    """

    db_path: Path = _DEFAULT_DATA_DIR / "collector.duckdb"
    local_currency: str = "CNY"
    fx_symbol: str = "USDCNY=X"
    fallback_fx_rate: float = 7.2
    provider_timeout_seconds: float = 30.0
    provider_retries: int = 3
    retry_base_delay_seconds: float = 1.0
    price_cache_max_age_hours: float = 24.0
    retention_days: int = 730
    audit_retention_days: int | None = None
    max_jobs_per_drain: int | None = None
    stuck_after_minutes: int = 60

    def __post_init__(self) -> None:
        if self.fallback_fx_rate <= 0:
            msg = f"fallback_fx_rate must be positive, got {self.fallback_fx_rate}"
            raise ValueError(msg)
        if self.provider_retries < 1:
            msg = f"provider_retries must be >= 1, got {self.provider_retries}"
            raise ValueError(msg)
        if self.retention_days < 1:
            msg = f"retention_days must be >= 1, got {self.retention_days}"
            raise ValueError(msg)
        if (
            self.audit_retention_days is not None
            and self.audit_retention_days < self.retention_days
        ):
            msg = (
                "audit_retention_days must not be shorter than retention_days "
                f"({self.audit_retention_days} < {self.retention_days})"
            )
            raise ValueError(msg)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> CollectorConfig:
        """Build a config from defaults overlaid with environment variables.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.

        Returns:
            A validated CollectorConfig.

        Raises:
            ValueError: If a variable cannot be parsed for its field.

        """
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for field in dataclasses.fields(cls):
            key = ENV_PREFIX + field.name.upper()
            raw = env.get(key)
            if raw is None or raw.strip() == "":
                continue
            overrides[field.name] = _parse_field(key, str(field.type), raw.strip())
        return cls(**overrides)


def _parse_field(key: str, type_name: str, raw: str) -> Any:
    """Convert a raw environment string to the field's declared type."""
    optional = "None" in type_name
    if optional and raw.lower() in ("none", "off"):
        return None
    try:
        if type_name.startswith("Path"):
            return Path(raw).expanduser()
        if type_name.startswith("int"):
            return int(raw)
        if type_name.startswith("float"):
            return float(raw)
    except ValueError as exc:
        msg = f"Invalid value for {key}: {raw!r} ({type_name})"
        raise ValueError(msg) from exc
    return raw
