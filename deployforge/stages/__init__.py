"""Pipeline stages: artifact build, registry publish and rollout.

Each stage is a plain class driven by ``deployforge.core.pipeline.PipelineRunner``::

    from deployforge.stages import ArtifactBuilder, RegistryPublisher, DeploymentOrchestrator
"""

from __future__ import annotations

from deployforge.stages.build import ArtifactBuilder
from deployforge.stages.deploy import DeploymentOrchestrator, TargetLocks
from deployforge.stages.publish import RegistryPublisher

__all__ = [
    "ArtifactBuilder",
    "DeploymentOrchestrator",
    "RegistryPublisher",
    "TargetLocks",
]
