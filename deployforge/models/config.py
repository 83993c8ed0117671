"""Pipeline and run configuration models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from deployforge.models.artifacts import BuildSpec
from deployforge.models.deployment import AccessPolicy, Platform


class BuildSettings(BaseModel):
    """The ``[build]`` table of a pipeline file."""

    model_config = ConfigDict(frozen=True)

    source_dir: Path = Path(".")
    descriptor: str = "Dockerfile"
    registry: str = "gcr.io"
    image_name: str = ""
    tag_template: str = "$COMMIT_SHA"
    ignore_file: str = ".dockerignore"

    def to_spec(self, project_id: str) -> BuildSpec:
        return BuildSpec(project_id=project_id, **self.model_dump())


class DeploySettings(BaseModel):
    """The ``[deploy]`` table of a pipeline file.

    ``env`` values are substitution templates such as ``${_SUPABASE_KEY}``;
    they are expanded and wrapped as secrets just before a deploy.
    """

    model_config = ConfigDict(frozen=True)

    service_name: str = ""
    region: str = "us-central1"
    platform: Platform = Platform.MANAGED
    access_policy: AccessPolicy = AccessPolicy.PUBLIC
    env: dict[str, str] = {}


class PipelineConfig(BaseModel):
    """Project-level configuration for a deployforge pipeline.

    Loaded from ``deployforge.toml`` (see ``core.substitutions``) or built
    from CLI options.
    """

    model_config = ConfigDict(frozen=True)

    project_id: str = ""
    build: BuildSettings = BuildSettings()
    deploy: DeploySettings = DeploySettings()
    substitutions: dict[str, str] = {}

    artifact_store_path: Path = Path(".deployforge/artifacts")
    ledger_db_path: Path = Path(".deployforge/ledger.db")
    registry_path: Path = Path(".deployforge/registry")
    runtime_path: Path = Path(".deployforge/runtime")
    state_db_path: Path = Path(".deployforge/services.db")


class RunConfig(BaseModel):
    """Per-run identity, created when a pipeline run starts."""

    model_config = ConfigDict(frozen=True)

    run_id: str = Field(default_factory=lambda: f"df-{uuid.uuid4().hex[:12]}")
    project_id: str
    commit_sha: str
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
