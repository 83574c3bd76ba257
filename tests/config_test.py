"""Tests for collector configuration."""

from __future__ import annotations

from pathlib import Path

import pytest
from portfoliocollector.config import CollectorConfig


class TestDefaults:
    """Tests for default settings and validation."""

    def test_defaults(self):
        cfg = CollectorConfig()
        assert cfg.retention_days == 730
        assert cfg.fallback_fx_rate == pytest.approx(7.2)
        assert cfg.provider_retries == 3
        assert cfg.audit_retention_days is None
        assert cfg.max_jobs_per_drain is None

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("fallback_fx_rate", 0.0),
            ("provider_retries", 0),
            ("retention_days", 0),
        ],
    )
    def test_rejects_invalid(self, field, value):
        with pytest.raises(ValueError, match=field):
            CollectorConfig(**{field: value})

    def test_audit_window_shorter_than_retention_rejected(self):
        with pytest.raises(ValueError, match="audit_retention_days"):
            CollectorConfig(retention_days=365, audit_retention_days=30)


class TestFromEnv:
    """Tests for environment overrides."""

    def test_empty_env_gives_defaults(self):
        assert CollectorConfig.from_env({}) == CollectorConfig()

    def test_parses_typed_values(self):
        cfg = CollectorConfig.from_env(
            {
                "PORTFOLIOCOLLECTOR_DB_PATH": "/tmp/x.duckdb",
                "PORTFOLIOCOLLECTOR_FALLBACK_FX_RATE": "7.1",
                "PORTFOLIOCOLLECTOR_RETENTION_DAYS": "365",
                "PORTFOLIOCOLLECTOR_AUDIT_RETENTION_DAYS": "1000",
                "PORTFOLIOCOLLECTOR_LOCAL_CURRENCY": "EUR",
            }
        )
        assert cfg.db_path == Path("/tmp/x.duckdb")
        assert cfg.fallback_fx_rate == pytest.approx(7.1)
        assert cfg.retention_days == 365
        assert cfg.audit_retention_days == 1000
        assert cfg.local_currency == "EUR"

    def test_optional_can_be_turned_off(self):
        cfg = CollectorConfig.from_env({"PORTFOLIOCOLLECTOR_MAX_JOBS_PER_DRAIN": "off"})
        assert cfg.max_jobs_per_drain is None

    def test_blank_value_ignored(self):
        cfg = CollectorConfig.from_env({"PORTFOLIOCOLLECTOR_RETENTION_DAYS": "  "})
        assert cfg.retention_days == 730

    def test_bad_value_raises(self):
        with pytest.raises(ValueError, match="PORTFOLIOCOLLECTOR_PROVIDER_RETRIES"):
            CollectorConfig.from_env({"PORTFOLIOCOLLECTOR_PROVIDER_RETRIES": "many"})
