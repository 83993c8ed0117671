"""Readiness checks for freshly created revisions.

A probe answers one question once ("is it ready right now?").
``wait_until_ready`` applies a ``ReadinessPolicy`` on top: the revision is
ready after ``success_threshold`` consecutive successes and has failed after
``failure_threshold`` consecutive failures or ``max_checks`` probes in total.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field

from deployforge.models.deployment import DeploymentTarget, RevisionHandle
from deployforge.runtime import ServingRuntime

logger = logging.getLogger(__name__)


class ReadinessPolicy(BaseModel):
    """Thresholds for declaring a revision ready or failed."""

    model_config = ConfigDict(frozen=True)

    initial_delay_seconds: float = Field(default=0.0, ge=0)
    interval_seconds: float = Field(default=2.0, ge=0)
    timeout_seconds: float = Field(default=5.0, gt=0)
    success_threshold: int = Field(default=1, ge=1)
    failure_threshold: int = Field(default=3, ge=1)
    max_checks: int = Field(default=30, ge=1)


class ReadinessOutcome(BaseModel):
    """Result of waiting on a revision."""

    model_config = ConfigDict(frozen=True)

    ready: bool
    checks: int
    detail: str = ""


class ReadinessProbe(Protocol):
    def probe(self, target: DeploymentTarget, handle: RevisionHandle) -> bool:
        ...


class RuntimeReadinessProbe:
    """Asks the runtime whether the revision is ready."""

    def __init__(self, runtime: ServingRuntime) -> None:
        self._runtime = runtime

    def probe(self, target: DeploymentTarget, handle: RevisionHandle) -> bool:
        return self._runtime.is_ready(target, handle)


class HttpReadinessProbe:
    """HTTP GET against the revision URL; any 2xx response means ready.

    Parameters
    ----------
    path:
        Path appended to the revision URL.
    client:
        Optional ``httpx.Client``; one is created per probe when omitted.
    timeout:
        Request timeout in seconds.
    """

    def __init__(
        self,
        path: str = "/",
        *,
        client: httpx.Client | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._path = path if path.startswith("/") else f"/{path}"
        self._client = client
        self._timeout = timeout

    def probe(self, target: DeploymentTarget, handle: RevisionHandle) -> bool:
        if not handle.url:
            logger.warning("Revision %s has no URL to probe", handle.revision_name)
            return False
        url = handle.url.rstrip("/") + self._path
        try:
            if self._client is not None:
                response = self._client.get(url, timeout=self._timeout)
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    response = client.get(url)
        except httpx.HTTPError as exc:
            logger.info("Readiness probe %s failed: %s", url, exc)
            return False
        logger.debug("Readiness probe %s -> %d", url, response.status_code)
        return response.is_success


def wait_until_ready(
    probe: ReadinessProbe,
    target: DeploymentTarget,
    handle: RevisionHandle,
    policy: ReadinessPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> ReadinessOutcome:
    """Probe ``handle`` until the policy declares it ready or failed."""
    if policy.initial_delay_seconds:
        sleep(policy.initial_delay_seconds)

    successes = failures = 0
    for check in range(1, policy.max_checks + 1):
        if probe.probe(target, handle):
            successes, failures = successes + 1, 0
            if successes >= policy.success_threshold:
                return ReadinessOutcome(ready=True, checks=check)
        else:
            successes, failures = 0, failures + 1
            if failures >= policy.failure_threshold:
                return ReadinessOutcome(
                    ready=False,
                    checks=check,
                    detail=f"{failures} consecutive failed readiness checks",
                )
        if check < policy.max_checks:
            sleep(policy.interval_seconds)

    return ReadinessOutcome(
        ready=False,
        checks=policy.max_checks,
        detail=f"not ready after {policy.max_checks} checks",
    )
