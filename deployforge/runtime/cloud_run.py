"""Cloud Run runtime driven through the ``gcloud`` CLI.

Rollout mapping:

- ``create_revision`` -> ``gcloud run deploy SERVICE --image ... --no-traffic``
  (``--no-traffic`` is omitted when the service does not exist yet, since
  Cloud Run rejects it on creation)
- ``route_traffic``   -> ``gcloud run services update-traffic --to-revisions REV=100``
- ``delete_revision`` -> ``gcloud run revisions delete REV``

``--set-env-vars`` replaces the whole environment of the new revision; an
empty mapping uses ``--clear-env-vars``. Command lines and CLI output are
logged with environment values masked.
"""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any

from deployforge.core.commands import CommandRunner, redact, redact_argv, run_command
from deployforge.models.deployment import (
    AccessPolicy,
    DeploymentTarget,
    Platform,
    RevisionHandle,
)
from deployforge.runtime import RuntimeBackendError

logger = logging.getLogger(__name__)

_PLATFORM_FLAGS = {
    Platform.MANAGED: "managed",
    Platform.SELF_HOSTED: "gke",
}

# Candidate delimiters for gcloud's ``^DELIM^`` list syntax.
_DELIMITERS = ("@", "#", "|", "~", ";")


def format_env_vars(env: dict[str, str]) -> str:
    """Render an env mapping for ``--set-env-vars``.

    Uses gcloud's alternate delimiter syntax (``^@^A=1@B=2``) when a value
    contains a comma.
    """
    pairs = [f"{key}={env[key]}" for key in sorted(env)]
    if not any("," in value for value in env.values()):
        return ",".join(pairs)
    for delim in _DELIMITERS:
        if not any(delim in pair for pair in pairs):
            return f"^{delim}^" + delim.join(pairs)
    raise RuntimeBackendError("environment values contain every supported delimiter")


class CloudRunRuntime:
    """``gcloud run`` backend.

    Parameters
    ----------
    project:
        Optional GCP project passed as ``--project``.
    runner:
        Command runner, defaults to ``run_command``.
    gcloud:
        Path or name of the gcloud binary.
    """

    def __init__(
        self,
        project: str | None = None,
        runner: CommandRunner | None = None,
        *,
        gcloud: str = "gcloud",
    ) -> None:
        self._project = project
        self._run = runner or run_command
        self._gcloud = gcloud

    def _common(self, target: DeploymentTarget) -> list[str]:
        args = [
            "--region", target.region,
            "--platform", _PLATFORM_FLAGS[target.platform],
            "--quiet",
        ]
        if self._project:
            args += ["--project", self._project]
        return args

    def _call(self, argv: list[str], target: DeploymentTarget) -> subprocess.CompletedProcess:
        secrets = list(target.reveal_env().values())
        logger.debug("Running %s", redact_argv(argv, secrets))
        result = self._run(argv)
        if result.returncode != 0:
            raise RuntimeBackendError(
                f"{' '.join(argv[:4])} failed: {redact(result.stderr or '', secrets).strip()[-500:]}"
            )
        return result

    def _describe_service(self, target: DeploymentTarget) -> dict[str, Any] | None:
        argv = [
            self._gcloud, "run", "services", "describe", target.service_name,
            *self._common(target), "--format=json",
        ]
        result = self._run(argv)
        if result.returncode != 0:
            if "could not be found" in (result.stderr or "").lower():
                return None
            raise RuntimeBackendError(
                f"describe {target.service_name} failed: {(result.stderr or '').strip()[-500:]}"
            )
        return json.loads(result.stdout or "{}")

    # ------------------------------------------------------------------
    # ServingRuntime
    # ------------------------------------------------------------------

    def deploy_argv(self, target: DeploymentTarget, image_ref: str, *, no_traffic: bool) -> list[str]:
        env = target.reveal_env()
        argv = [
            self._gcloud, "run", "deploy", target.service_name,
            "--image", image_ref,
            *self._common(target),
        ]
        if target.access_policy == AccessPolicy.PUBLIC:
            argv.append("--allow-unauthenticated")
        else:
            argv.append("--no-allow-unauthenticated")
        if env:
            argv += ["--set-env-vars", format_env_vars(env)]
        else:
            argv.append("--clear-env-vars")
        if no_traffic:
            argv.append("--no-traffic")
        argv.append("--format=json")
        return argv

    def create_revision(self, target: DeploymentTarget, image_ref: str) -> RevisionHandle:
        exists = self._describe_service(target) is not None
        result = self._call(self.deploy_argv(target, image_ref, no_traffic=exists), target)
        service = json.loads(result.stdout or "{}")
        status = service.get("status", {})
        revision_name = status.get("latestCreatedRevisionName")
        if not revision_name:
            raise RuntimeBackendError(
                f"gcloud did not report a revision for {target.service_name}"
            )
        logger.info("Created Cloud Run revision %s", revision_name)
        return RevisionHandle(
            service_name=target.service_name,
            revision_name=revision_name,
            image_ref=image_ref,
            url=status.get("url", ""),
        )

    def route_traffic(self, target: DeploymentTarget, revision_name: str) -> None:
        self._call(
            [
                self._gcloud, "run", "services", "update-traffic", target.service_name,
                "--to-revisions", f"{revision_name}=100",
                *self._common(target),
            ],
            target,
        )

    def delete_revision(self, target: DeploymentTarget, revision_name: str) -> None:
        self._call(
            [self._gcloud, "run", "revisions", "delete", revision_name, *self._common(target)],
            target,
        )

    def serving_revision(self, target: DeploymentTarget) -> str | None:
        service = self._describe_service(target)
        if service is None:
            return None
        for entry in service.get("status", {}).get("traffic", []):
            if entry.get("percent") == 100:
                return entry.get("revisionName")
        return None

    def is_ready(self, target: DeploymentTarget, handle: RevisionHandle) -> bool:
        result = self._call(
            [
                self._gcloud, "run", "revisions", "describe", handle.revision_name,
                *self._common(target), "--format=json",
            ],
            target,
        )
        conditions = json.loads(result.stdout or "{}").get("status", {}).get("conditions", [])
        return any(c.get("type") == "Ready" and c.get("status") == "True" for c in conditions)
