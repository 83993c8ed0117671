"""Tests for process config — env-driven settings and the production guard."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from deployforge.config import ProdConfig
from deployforge.core.pipeline import readiness_policy
from deployforge.core.production_guard import ProductionConfigError, enforce_production_constraints


class TestProdConfig:
    def test_defaults(self):
        config = ProdConfig()
        assert config.environment == "development"
        assert config.log_level == "INFO"
        assert config.registry_backend == "local"
        assert config.runtime_backend == "local"
        assert config.default_region == "us-central1"

    def test_is_production_false_by_default(self):
        assert ProdConfig().is_production is False

    def test_is_production_when_set(self):
        assert ProdConfig(environment="production").is_production is True

    def test_default_paths(self):
        config = ProdConfig()
        assert config.ledger_path == Path(".deployforge/ledger.db")
        assert config.state_db_path == Path(".deployforge/services.db")
        assert config.runtime_path == Path(".deployforge/runtime")

    def test_publish_policy_defaults(self):
        config = ProdConfig()
        assert config.publish_max_attempts == 4
        assert config.publish_base_delay == 1.0
        assert config.publish_backoff_multiplier == 2.0

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("DEPLOYFORGE_RUNTIME_BACKEND", "cloud-run")
        monkeypatch.setenv("DEPLOYFORGE_PUBLISH_MAX_ATTEMPTS", "7")
        monkeypatch.setenv("DEPLOYFORGE_READINESS_PATH", "/healthz")
        config = ProdConfig()
        assert config.runtime_backend == "cloud-run"
        assert config.publish_max_attempts == 7
        assert config.readiness_path == "/healthz"

    def test_readiness_settings_reach_policy(self, monkeypatch):
        monkeypatch.setenv("DEPLOYFORGE_READINESS_INITIAL_DELAY_SECONDS", "4.5")
        monkeypatch.setenv("DEPLOYFORGE_READINESS_MAX_CHECKS", "12")
        policy = readiness_policy(ProdConfig())
        assert policy.initial_delay_seconds == 4.5
        assert policy.max_checks == 12
        assert policy.interval_seconds == 2.0

    def test_unknown_backend_rejected(self, monkeypatch):
        monkeypatch.setenv("DEPLOYFORGE_REGISTRY_BACKEND", "s3")
        with pytest.raises(ValueError):
            ProdConfig()


class TestProductionGuard:
    def test_development_is_unchecked(self):
        enforce_production_constraints(ProdConfig(debug=True))

    def test_production_with_real_backends(self, caplog):
        config = ProdConfig(
            environment="production", registry_backend="docker", runtime_backend="cloud-run"
        )
        with caplog.at_level(logging.INFO, logger="deployforge"):
            enforce_production_constraints(config)
        assert "Production configuration validated." in caplog.text

    def test_production_rejects_local_backends(self):
        with pytest.raises(ProductionConfigError) as info:
            enforce_production_constraints(ProdConfig(environment="production"))
        assert "registry_backend=local" in str(info.value)
        assert "runtime_backend=local" in str(info.value)

    def test_production_rejects_debug(self, caplog):
        config = ProdConfig(
            environment="production",
            debug=True,
            registry_backend="docker",
            runtime_backend="cloud-run",
        )
        with pytest.raises(ProductionConfigError, match="debug=True"):
            enforce_production_constraints(config)
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)
