"""Process configuration — env-driven.

Centralized config using pydantic-settings. Reads from a .env file and
DEPLOYFORGE_* environment variables.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class ProdConfig(BaseSettings):
    """Process-wide settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export DEPLOYFORGE_ENVIRONMENT=staging
        export DEPLOYFORGE_LOG_LEVEL=DEBUG
        export DEPLOYFORGE_RUNTIME_BACKEND=cloud-run

    Or via .env file::

        DEPLOYFORGE_REGISTRY_BACKEND=docker
        DEPLOYFORGE_PUBLISH_MAX_ATTEMPTS=5
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DEPLOYFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Storage paths
    data_dir: Path = Path(".deployforge")
    ledger_path: Path = Path(".deployforge/ledger.db")
    artifact_store_path: Path = Path(".deployforge/artifacts")
    registry_path: Path = Path(".deployforge/registry")
    runtime_path: Path = Path(".deployforge/runtime")
    state_db_path: Path = Path(".deployforge/services.db")

    # Backends
    registry_backend: Literal["local", "docker"] = "local"
    runtime_backend: Literal["local", "cloud-run"] = "local"
    gcp_project: str = ""
    default_region: str = "us-central1"

    # Publish retry policy (transient registry errors only)
    publish_max_attempts: int = 4
    publish_base_delay: float = 1.0
    publish_max_delay: float = 30.0
    publish_backoff_multiplier: float = 2.0

    # Readiness policy
    readiness_path: str = ""  # empty: ask the runtime instead of HTTP
    readiness_initial_delay_seconds: float = 0.0
    readiness_interval_seconds: float = 2.0
    readiness_timeout_seconds: float = 5.0
    readiness_success_threshold: int = 1
    readiness_failure_threshold: int = 3
    readiness_max_checks: int = 30

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment.strip().lower() == "production"

