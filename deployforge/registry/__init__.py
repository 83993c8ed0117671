"""Artifact registries.

A registry stores artifacts under ``{registry}/{project}/{name}:{tag}``
references. Tags are immutable: a tag, once written, always resolves to the
same digest.

Error classes tell the publisher how to react:

- ``TransientRegistryError`` -- network trouble, worth retrying.
- ``RegistryAuthError`` / ``RegistryQuotaError`` / ``TagConflictError`` --
  fatal, never retried.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict


class RegistryError(RuntimeError):
    """Base class for registry failures."""


class TransientRegistryError(RegistryError):
    """Timeouts, connection resets, 5xx responses."""


class RegistryAuthError(RegistryError):
    """Credentials missing, expired or lacking push permission."""


class RegistryQuotaError(RegistryError):
    """Storage or push quota exhausted."""


class TagConflictError(RegistryError):
    """The tag already exists and points at a different digest."""


class PushReceipt(BaseModel):
    """What the registry reports after a push."""

    model_config = ConfigDict(frozen=True)

    image_ref: str
    digest: str
    created: bool


@runtime_checkable
class Registry(Protocol):
    """Push/resolve interface implemented by every registry backend."""

    def push(self, image_ref: str, data: bytes, digest: str) -> PushReceipt:
        """Store ``data`` under ``image_ref``; idempotent for the same digest."""
        ...

    def resolve(self, image_ref: str) -> str | None:
        """Return the digest a tag points at, or None if the tag is absent."""
        ...


def split_reference(image_ref: str) -> tuple[str, str]:
    """Split ``repo/path:tag`` into ``("repo/path", "tag")``."""
    repository, sep, tag = image_ref.rpartition(":")
    if not sep or not repository or "/" in tag or not tag:
        raise ValueError(f"image reference {image_ref!r} has no tag")
    return repository, tag


__all__ = [
    "PushReceipt",
    "Registry",
    "RegistryAuthError",
    "RegistryError",
    "RegistryQuotaError",
    "TagConflictError",
    "TransientRegistryError",
    "split_reference",
]
