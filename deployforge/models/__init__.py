"""deployforge data models — all Pydantic v2, all frozen (immutable)."""

from deployforge.models.artifacts import (
    ArtifactRef,
    BuildSpec,
    ContentAddressedArtifact,
    PublishedImage,
    Revision,
)
from deployforge.models.config import (
    BuildSettings,
    DeploySettings,
    PipelineConfig,
    RunConfig,
)
from deployforge.models.deployment import (
    AccessPolicy,
    DeploymentTarget,
    DeployResult,
    Platform,
    RevisionHandle,
    ServiceRecord,
)
from deployforge.models.ledger import LedgerEntry
from deployforge.models.stages import (
    BUILD_STAGE,
    DEFAULT_STAGE_DEFINITIONS,
    DEPLOY_STAGE,
    PUBLISH_STAGE,
    VALID_TRANSITIONS,
    StageDefinition,
    StageState,
)

__all__ = [
    # artifacts
    "ArtifactRef",
    "BuildSpec",
    "ContentAddressedArtifact",
    "PublishedImage",
    "Revision",
    # deployment
    "AccessPolicy",
    "DeploymentTarget",
    "DeployResult",
    "Platform",
    "RevisionHandle",
    "ServiceRecord",
    # stages
    "BUILD_STAGE",
    "PUBLISH_STAGE",
    "DEPLOY_STAGE",
    "StageState",
    "StageDefinition",
    "VALID_TRANSITIONS",
    "DEFAULT_STAGE_DEFINITIONS",
    # ledger
    "LedgerEntry",
    # config
    "BuildSettings",
    "DeploySettings",
    "PipelineConfig",
    "RunConfig",
]
