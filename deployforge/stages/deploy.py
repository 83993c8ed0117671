"""Deployment Orchestrator.

Replaces the serving revision of a service without a partial cutover:

1. take the per-service lock,
2. read the current service record (the compare-and-swap token),
3. create a revision with no traffic and exactly the supplied environment,
4. wait for it to pass readiness,
5. route all traffic to it and swap the service record.

Until step 5 the previous revision keeps serving. Any failure or
interruption before the swap deletes the new revision.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from deployforge.core.failures import ConcurrentRolloutError, RolloutFailure
from deployforge.core.state_store import DeploymentStateStore, VersionConflictError
from deployforge.models.artifacts import PublishedImage
from deployforge.models.deployment import (
    DeploymentTarget,
    DeployResult,
    RevisionHandle,
    ServiceRecord,
)
from deployforge.runtime import RuntimeBackendError, ServingRuntime
from deployforge.runtime.readiness import (
    ReadinessPolicy,
    ReadinessProbe,
    RuntimeReadinessProbe,
    wait_until_ready,
)

logger = logging.getLogger(__name__)


class TargetLocks:
    """One lock per service name, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, service_name: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(service_name, threading.Lock())
        with lock:
            yield


class DeploymentOrchestrator:
    """Rolls published images out to a serving runtime.

    Parameters
    ----------
    runtime:
        The serving runtime.
    state_store:
        Versioned service records.
    probe:
        Readiness probe; defaults to asking the runtime.
    readiness_policy:
        Thresholds for the readiness wait.
    locks:
        Per-service locks; share one instance between orchestrators that
        deploy to the same runtime.
    """

    def __init__(
        self,
        runtime: ServingRuntime,
        state_store: DeploymentStateStore,
        *,
        probe: ReadinessProbe | None = None,
        readiness_policy: ReadinessPolicy | None = None,
        locks: TargetLocks | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._runtime = runtime
        self._state = state_store
        self._probe = probe or RuntimeReadinessProbe(runtime)
        self._policy = readiness_policy or ReadinessPolicy()
        self._locks = locks or TargetLocks()
        self._sleep = sleep

    def deploy(
        self,
        image: PublishedImage,
        target: DeploymentTarget,
        *,
        commit_sha: str = "",
    ) -> DeployResult:
        """Make ``image`` the serving revision of ``target``.

        Raises ``RolloutFailure`` when the new revision cannot be created or
        is not ready; the previous revision keeps serving in that case.
        """
        with self._locks.hold(target.service_name):
            current = self._state.get(target.service_name)
            expected_version = current.version if current else 0
            previous = self._runtime_serving(target)

            logger.info(
                "Rolling out %s to %s in %s (env keys: %s)",
                image.image_ref,
                target.service_name,
                target.region,
                ", ".join(target.env_keys) or "-",
            )
            try:
                handle = self._runtime.create_revision(target, image.image_ref)
            except RuntimeBackendError as exc:
                raise RolloutFailure(
                    f"could not create revision of {target.service_name}: {exc}",
                    service_name=target.service_name,
                    serving_revision=previous,
                ) from exc

            try:
                return self._cut_over(image, target, handle, current, expected_version, previous, commit_sha)
            except BaseException:
                self._discard(target, handle, previous)
                raise

    def _runtime_serving(self, target: DeploymentTarget) -> str | None:
        try:
            return self._runtime.serving_revision(target)
        except RuntimeBackendError as exc:
            raise RolloutFailure(
                f"could not read serving revision of {target.service_name}: {exc}",
                service_name=target.service_name,
            ) from exc

    def _cut_over(
        self,
        image: PublishedImage,
        target: DeploymentTarget,
        handle: RevisionHandle,
        current: ServiceRecord | None,
        expected_version: int,
        previous: str | None,
        commit_sha: str,
    ) -> DeployResult:
        outcome = wait_until_ready(self._probe, target, handle, self._policy, sleep=self._sleep)
        if not outcome.ready:
            raise RolloutFailure(
                f"revision {handle.revision_name} failed readiness: {outcome.detail}",
                service_name=target.service_name,
                serving_revision=previous,
            )

        if self._state.current_version(target.service_name) != expected_version:
            raise ConcurrentRolloutError(
                f"{target.service_name} changed during rollout",
                service_name=target.service_name,
                serving_revision=previous,
            )

        try:
            self._runtime.route_traffic(target, handle.revision_name)
        except RuntimeBackendError as exc:
            raise RolloutFailure(
                f"could not route traffic to {handle.revision_name}: {exc}",
                service_name=target.service_name,
                serving_revision=previous,
            ) from exc

        record = ServiceRecord(
            service_name=target.service_name,
            version=expected_version + 1,
            revision_name=handle.revision_name,
            image_ref=image.image_ref,
            digest=image.digest,
            commit_sha=commit_sha,
            region=target.region,
            platform=target.platform,
            access_policy=target.access_policy,
            env_keys=target.env_keys,
            url=handle.url,
        )
        try:
            stored = self._state.compare_and_swap(target.service_name, expected_version, record)
        except VersionConflictError as exc:
            raise ConcurrentRolloutError(
                str(exc), service_name=target.service_name, serving_revision=previous
            ) from exc

        logger.info(
            "%s now serves %s (record v%d)",
            target.service_name,
            handle.revision_name,
            stored.version,
        )
        return DeployResult(
            service_name=target.service_name,
            revision_name=handle.revision_name,
            url=handle.url,
            record_version=stored.version,
            previous_revision=current.revision_name if current else previous,
        )

    def _discard(self, target: DeploymentTarget, handle: RevisionHandle, previous: str | None) -> None:
        """Delete a revision that never became the recorded serving revision.

        If traffic already moved to it, traffic goes back to whatever the
        state store records now, which may be newer than ``previous``.
        """
        try:
            if self._runtime.serving_revision(target) == handle.revision_name:
                current = self._state.get(target.service_name)
                fallback = current.revision_name if current else previous
                if fallback:
                    self._runtime.route_traffic(target, fallback)
            self._runtime.delete_revision(target, handle.revision_name)
        except RuntimeBackendError as exc:
            logger.error(
                "Could not clean up revision %s of %s: %s",
                handle.revision_name,
                target.service_name,
                exc,
            )
