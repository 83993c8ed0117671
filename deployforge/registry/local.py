"""Filesystem registry.

Layout::

    {root}/blobs/sha256/{digest}
    {root}/repositories/{repository}/tags/{tag}.json

Blobs are written through a temp file and renamed into place. Tag files are
created with ``os.link`` from a temp file, which fails if the tag already
exists, so a tag is either absent or complete and is never overwritten.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path

from deployforge.core.hasher import sha256_hex
from deployforge.registry import (
    PushReceipt,
    RegistryQuotaError,
    TagConflictError,
    split_reference,
)

logger = logging.getLogger(__name__)


class LocalRegistry:
    """Append-only registry rooted at a local directory.

    Parameters
    ----------
    root:
        Registry root directory.
    max_bytes:
        Optional quota on the total size of stored blobs.
    """

    def __init__(self, root: Path, *, max_bytes: int | None = None) -> None:
        self._root = Path(root)
        self._blobs = self._root / "blobs" / "sha256"
        self._repos = self._root / "repositories"
        self._blobs.mkdir(parents=True, exist_ok=True)
        self._repos.mkdir(parents=True, exist_ok=True)
        self._max_bytes = max_bytes
        self._lock = threading.Lock()

    def _tag_path(self, image_ref: str) -> Path:
        repository, tag = split_reference(image_ref)
        parts = [p for p in repository.split("/") if p]
        if any(p in (".", "..") for p in parts):
            raise ValueError(f"invalid repository in {image_ref!r}")
        return self._repos.joinpath(*parts) / "tags" / f"{tag}.json"

    def _used_bytes(self) -> int:
        return sum(p.stat().st_size for p in self._blobs.iterdir() if p.is_file())

    def _write_blob(self, digest: str, data: bytes) -> None:
        path = self._blobs / digest
        if path.exists():
            return
        if self._max_bytes is not None and self._used_bytes() + len(data) > self._max_bytes:
            raise RegistryQuotaError(
                f"pushing {len(data)} bytes would exceed the {self._max_bytes}-byte quota"
            )
        fd, tmp_name = tempfile.mkstemp(dir=self._blobs, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def push(self, image_ref: str, data: bytes, digest: str) -> PushReceipt:
        digest = digest.removeprefix("sha256:")
        if sha256_hex(data) != digest:
            raise ValueError(f"data does not match digest sha256:{digest}")
        tag_path = self._tag_path(image_ref)

        with self._lock:
            existing = self.resolve(image_ref)
            if existing is not None:
                return self._existing_receipt(image_ref, existing, digest)

            self._write_blob(digest, data)

            tag_path.parent.mkdir(parents=True, exist_ok=True)
            manifest = {
                "image_ref": image_ref,
                "digest": f"sha256:{digest}",
                "size_bytes": len(data),
                "pushed_at": datetime.now(timezone.utc).isoformat(),
            }
            fd, tmp_name = tempfile.mkstemp(dir=tag_path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(manifest, fh, sort_keys=True)
                try:
                    os.link(tmp_name, tag_path)
                except FileExistsError:
                    # Lost a race with another process.
                    existing = self.resolve(image_ref)
                    return self._existing_receipt(image_ref, existing or "", digest)
            finally:
                Path(tmp_name).unlink(missing_ok=True)

        logger.info("Pushed %s (sha256:%s, %d bytes)", image_ref, digest[:12], len(data))
        return PushReceipt(image_ref=image_ref, digest=f"sha256:{digest}", created=True)

    @staticmethod
    def _existing_receipt(image_ref: str, existing: str, digest: str) -> PushReceipt:
        if existing.removeprefix("sha256:") != digest:
            raise TagConflictError(
                f"{image_ref} already points at {existing}; tags are immutable"
            )
        logger.info("Tag %s already holds sha256:%s", image_ref, digest[:12])
        return PushReceipt(image_ref=image_ref, digest=f"sha256:{digest}", created=False)

    def resolve(self, image_ref: str) -> str | None:
        tag_path = self._tag_path(image_ref)
        if not tag_path.exists():
            return None
        return json.loads(tag_path.read_text(encoding="utf-8"))["digest"]
