"""External command execution for CLI-backed registries and runtimes.

Backends receive a ``CommandRunner`` so tests can substitute a fake. The
default runner is a thin wrapper over ``subprocess.run``.
"""

from __future__ import annotations

import logging
import re
import subprocess
from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)

MASK = "********"
MIN_SUBSTRING_SECRET = 8

CommandRunner = Callable[..., subprocess.CompletedProcess]


def run_command(
    argv: list[str],
    *,
    input: bytes | None = None,
    timeout: float | None = 600,
) -> subprocess.CompletedProcess:
    """Run ``argv`` and capture output; never raises on a non-zero exit.

    ``stdout`` and ``stderr`` are returned as text.
    """
    result = subprocess.run(argv, input=input, capture_output=True, timeout=timeout)
    return subprocess.CompletedProcess(
        args=result.args,
        returncode=result.returncode,
        stdout=result.stdout.decode("utf-8", errors="replace"),
        stderr=result.stderr.decode("utf-8", errors="replace"),
    )


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace each non-empty secret in ``text`` with ``MASK``.

    Secrets of ``MIN_SUBSTRING_SECRET`` characters or more are masked
    wherever they occur. Shorter ones (``"1"``, ``"true"``) are masked only
    as whole tokens, so revision names and digests that happen to contain
    them stay readable.
    """
    # Longest first so a secret that contains another is masked whole.
    for secret in sorted((s for s in secrets if s), key=len, reverse=True):
        if len(secret) >= MIN_SUBSTRING_SECRET:
            text = text.replace(secret, MASK)
        else:
            text = re.sub(rf"(?<![A-Za-z0-9]){re.escape(secret)}(?![A-Za-z0-9])", MASK, text)
    return text


def redact_argv(argv: list[str], secrets: Iterable[str]) -> str:
    """Render a command line for logging with secret values masked."""
    secrets = list(secrets)
    return " ".join(redact(arg, secrets) for arg in argv)
