"""Docker CLI registry backend.

Mirrors the ``docker build`` / ``docker push`` steps of a Cloud Build
pipeline. The build bundle is a tar build context, so it is streamed to
``docker build -t REF -`` and the resulting image is pushed.
"""

from __future__ import annotations

import logging
import re
import subprocess

from deployforge.core.commands import CommandRunner, run_command
from deployforge.registry import (
    PushReceipt,
    RegistryAuthError,
    RegistryError,
    RegistryQuotaError,
    TagConflictError,
    TransientRegistryError,
)

logger = logging.getLogger(__name__)

BUNDLE_DIGEST_LABEL = "dev.deployforge.bundle-digest"

_AUTH_PATTERNS = re.compile(
    r"unauthorized|authentication required|denied|permission|forbidden|no basic auth",
    re.IGNORECASE,
)
_QUOTA_PATTERNS = re.compile(r"quota|storage limit|insufficient storage", re.IGNORECASE)
_TRANSIENT_PATTERNS = re.compile(
    r"timeout|timed out|connection reset|connection refused|tls handshake|"
    r"temporary failure|eof|toomanyrequests|too many requests|\b50[234]\b|"
    r"service unavailable|i/o timeout",
    re.IGNORECASE,
)


def classify_failure(action: str, image_ref: str, stderr: str) -> RegistryError:
    """Map docker CLI stderr to the registry error class."""
    message = f"docker {action} {image_ref} failed: {stderr.strip()[-500:]}"
    if _AUTH_PATTERNS.search(stderr):
        return RegistryAuthError(message)
    if _QUOTA_PATTERNS.search(stderr):
        return RegistryQuotaError(message)
    if _TRANSIENT_PATTERNS.search(stderr):
        return TransientRegistryError(message)
    return RegistryError(message)


class DockerRegistry:
    """Builds the bundle into an image and pushes it with the docker CLI.

    Tags are treated as immutable: if the remote tag already exists and
    carries this bundle's digest label, the push is a no-op; any other
    existing image under the tag is a conflict.

    Parameters
    ----------
    runner:
        Command runner, defaults to ``run_command``.
    docker:
        Path or name of the docker binary.
    """

    def __init__(self, runner: CommandRunner | None = None, *, docker: str = "docker") -> None:
        self._run = runner or run_command
        self._docker = docker

    def _check(self, action: str, image_ref: str, result: subprocess.CompletedProcess) -> None:
        if result.returncode != 0:
            raise classify_failure(action, image_ref, result.stderr or "")

    def resolve(self, image_ref: str) -> str | None:
        """Return the bundle digest label of a remote tag, if the tag exists."""
        result = self._run(
            [
                self._docker, "buildx", "imagetools", "inspect", image_ref,
                "--format", "{{json .Image.Config.Labels}}",
            ]
        )
        if result.returncode != 0:
            stderr = result.stderr or ""
            if "not found" in stderr.lower() or "manifest unknown" in stderr.lower():
                return None
            raise classify_failure("inspect", image_ref, stderr)
        labels = (result.stdout or "").strip()
        match = re.search(rf'"{re.escape(BUNDLE_DIGEST_LABEL)}"\s*:\s*"([^"]+)"', labels)
        return match.group(1) if match else ""

    def push(self, image_ref: str, data: bytes, digest: str) -> PushReceipt:
        digest = digest if digest.startswith("sha256:") else f"sha256:{digest}"
        existing = self.resolve(image_ref)
        if existing is not None:
            if existing != digest:
                raise TagConflictError(
                    f"{image_ref} already exists with bundle digest {existing or 'unknown'}"
                )
            logger.info("Tag %s already holds %s", image_ref, digest[:19])
            return PushReceipt(image_ref=image_ref, digest=digest, created=False)

        build = self._run(
            [
                self._docker, "build",
                "--label", f"{BUNDLE_DIGEST_LABEL}={digest}",
                "-t", image_ref,
                "-",
            ],
            input=data,
        )
        self._check("build", image_ref, build)

        push = self._run([self._docker, "push", image_ref])
        self._check("push", image_ref, push)

        logger.info("Pushed %s (%s)", image_ref, digest[:19])
        return PushReceipt(image_ref=image_ref, digest=digest, created=True)
