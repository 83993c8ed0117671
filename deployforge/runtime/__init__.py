"""Serving runtimes.

A runtime hosts revisions of a service. Rollouts use it in three steps:
create a revision that receives no traffic, probe it, then route all traffic
to it. Runtimes are the only place where environment values are revealed.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from deployforge.models.deployment import DeploymentTarget, RevisionHandle


class RuntimeBackendError(RuntimeError):
    """A runtime call failed."""


@runtime_checkable
class ServingRuntime(Protocol):
    """Interface every runtime backend implements."""

    def create_revision(self, target: DeploymentTarget, image_ref: str) -> RevisionHandle:
        """Create a revision running ``image_ref`` with exactly ``target.env``.

        The revision must not receive traffic yet.
        """
        ...

    def route_traffic(self, target: DeploymentTarget, revision_name: str) -> None:
        """Send 100% of the service's traffic to ``revision_name``."""
        ...

    def delete_revision(self, target: DeploymentTarget, revision_name: str) -> None:
        """Remove a revision that is not serving."""
        ...

    def serving_revision(self, target: DeploymentTarget) -> str | None:
        """Name of the revision currently receiving traffic, if any."""
        ...

    def is_ready(self, target: DeploymentTarget, handle: RevisionHandle) -> bool:
        """Whether the runtime considers the revision ready."""
        ...


__all__ = ["RuntimeBackendError", "ServingRuntime"]
