"""Logging setup for the deployforge CLI.

Library modules only call ``logging.getLogger(__name__)``. The CLI installs
a Rich handler on the ``deployforge`` logger together with a filter that
masks every registered secret value in the final message.
"""

from __future__ import annotations

import logging
import threading

from rich.console import Console
from rich.logging import RichHandler

from deployforge.core.commands import MASK, redact

ROOT_LOGGER = "deployforge"


class SecretMaskingFilter(logging.Filter):
    """Replaces registered secret values in log messages with ``********``."""

    def __init__(self) -> None:
        super().__init__()
        self._secrets: set[str] = set()
        self._lock = threading.Lock()

    def register(self, *values: str) -> None:
        with self._lock:
            self._secrets.update(v for v in values if v)

    def mask(self, text: str) -> str:
        """Return ``text`` with every registered secret masked."""
        with self._lock:
            secrets = list(self._secrets)
        return redact(text, secrets)

    def filter(self, record: logging.LogRecord) -> bool:
        with self._lock:
            secrets = list(self._secrets)
        if not secrets:
            return True
        message = record.getMessage()
        masked = redact(message, secrets)
        if masked != message:
            record.msg = masked
            record.args = None
        if record.exc_info and record.exc_info[1] is not None:
            # Rendered tracebacks would bypass the message rewrite.
            exc = record.exc_info[1]
            if redact(str(exc), secrets) != str(exc):
                record.exc_info = None
                record.msg = f"{record.msg} [traceback suppressed: contained {MASK}]"
        return True


secret_filter = SecretMaskingFilter()


def configure_logging(level: str = "INFO", *, console: Console | None = None) -> logging.Logger:
    """Attach a Rich handler and the secret filter to the ``deployforge`` logger.

    Safe to call more than once; only one handler is ever installed.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level.upper())
    logger.propagate = False

    for handler in logger.handlers:
        if getattr(handler, "_deployforge", False):
            handler.setLevel(level.upper())
            return logger

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
        markup=False,
    )
    handler.setLevel(level.upper())
    handler.addFilter(secret_filter)
    handler._deployforge = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger
