"""Deployment target and service-state models.

Environment values are carried as ``SecretStr`` from the moment they are
parsed until the runtime boundary. Persisted records keep only the keys.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


class Platform(str, Enum):
    """Where the serving runtime is operated."""

    MANAGED = "managed"
    SELF_HOSTED = "self-hosted"


class AccessPolicy(str, Enum):
    """Who may invoke the deployed service."""

    PUBLIC = "public"
    AUTHENTICATED = "authenticated"


class DeploymentTarget(BaseModel):
    """A serving target plus the full environment mapping for one deploy.

    Each deploy replaces the environment wholesale; nothing is merged with
    the mapping of the previously serving revision.
    """

    model_config = ConfigDict(frozen=True)

    service_name: str
    region: str = "us-central1"
    platform: Platform = Platform.MANAGED
    access_policy: AccessPolicy = AccessPolicy.PUBLIC
    env: dict[str, SecretStr] = {}

    @field_validator("service_name")
    @classmethod
    def _check_service_name(cls, value: str) -> str:
        # Cloud Run service names: lowercase letters, digits and hyphens.
        if not value or len(value) > 63:
            raise ValueError("service name must be 1-63 characters")
        if not all(c.islower() or c.isdigit() or c == "-" for c in value):
            raise ValueError(
                "service name may only contain lowercase letters, digits and '-'"
            )
        if not value[0].isalpha() or value.endswith("-"):
            raise ValueError("service name must start with a letter and not end with '-'")
        return value

    @field_validator("env")
    @classmethod
    def _check_env_keys(cls, value: dict[str, SecretStr]) -> dict[str, SecretStr]:
        for key in value:
            if not key or not (key[0].isalpha() or key[0] == "_"):
                raise ValueError(f"invalid environment variable name: {key!r}")
            if not all(c.isalnum() or c == "_" for c in key):
                raise ValueError(f"invalid environment variable name: {key!r}")
        return value

    @property
    def env_keys(self) -> list[str]:
        return sorted(self.env)

    def reveal_env(self) -> dict[str, str]:
        """Plain-text mapping. Only runtimes should call this."""
        return {k: v.get_secret_value() for k, v in self.env.items()}


class RevisionHandle(BaseModel):
    """A revision created in the runtime, not necessarily serving yet."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    revision_name: str
    image_ref: str
    url: str = ""


class ServiceRecord(BaseModel):
    """The versioned "current revision" record of one service.

    ``version`` increases by one on every successful rollout and is the
    compare-and-swap token for the next one.
    """

    model_config = ConfigDict(frozen=True)

    service_name: str
    version: int
    revision_name: str
    image_ref: str
    digest: str = ""
    commit_sha: str = ""
    region: str
    platform: Platform
    access_policy: AccessPolicy
    env_keys: list[str] = []
    url: str = ""
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class DeployResult(BaseModel):
    """Outcome of a successful rollout."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    revision_name: str
    url: str
    record_version: int
    previous_revision: str | None = None
