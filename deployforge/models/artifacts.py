"""Build artifact models: specs, revisions and published images."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ArtifactRef(BaseModel):
    """A reference to a content-addressed artifact.

    The content_address is the SHA-256 hex digest of the artifact bytes.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    content_address: str  # "sha256:<hex>"
    artifact_type: str = "generic"
    size_bytes: int = 0

    @property
    def digest(self) -> str:
        """Hex digest without the ``sha256:`` prefix."""
        return self.content_address.removeprefix("sha256:")


class ContentAddressedArtifact(BaseModel):
    """Metadata for a stored artifact; the bytes themselves live in the store."""

    model_config = ConfigDict(frozen=True)

    content_address: str  # "sha256:<hex>"
    artifact_type: str
    name: str
    size_bytes: int
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    metadata: dict[str, Any] = {}

    def to_ref(self) -> ArtifactRef:
        return ArtifactRef(
            name=self.name,
            content_address=self.content_address,
            artifact_type=self.artifact_type,
            size_bytes=self.size_bytes,
        )


class BuildSpec(BaseModel):
    """Everything the builder needs to turn a source tree into an artifact.

    ``image_reference()`` renders ``{registry}/{project}/{name}:{tag}``, or
    ``{registry}/{project}:{tag}`` when no image name is configured.
    """

    model_config = ConfigDict(frozen=True)

    source_dir: Path = Path(".")
    descriptor: str = "Dockerfile"
    registry: str = "gcr.io"
    project_id: str
    image_name: str = ""
    tag_template: str = "$COMMIT_SHA"
    ignore_file: str = ".dockerignore"

    def repository(self) -> str:
        base = f"{self.registry.rstrip('/')}/{self.project_id}"
        return f"{base}/{self.image_name}" if self.image_name else base

    def image_reference(self, tag: str) -> str:
        return f"{self.repository()}:{tag}"


class Revision(BaseModel):
    """One build output, tied to exactly one commit. Never mutated."""

    model_config = ConfigDict(frozen=True)

    commit_sha: str
    image_ref: str
    artifact: ArtifactRef
    built_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class PublishedImage(BaseModel):
    """An image reference that is known to exist in the registry."""

    model_config = ConfigDict(frozen=True)

    image_ref: str
    digest: str  # "sha256:<hex>"
    created: bool = True  # False when the tag already held this digest
    attempts: int = 1
