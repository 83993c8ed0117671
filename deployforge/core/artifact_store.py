"""Immutable store for build contexts, keyed by their SHA-256.

A build context lands at ``{root}/{hex[0:2]}/{hex[2:4]}/{hex}.dat``. The
publisher reads it back from here, so the bytes pushed to a registry are
exactly the bytes the builder hashed.

Writes go to a temp file in the target directory and are renamed into
place; there is no update or delete.
"""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Any

from deployforge.core.hasher import content_address, sha256_hex
from deployforge.models.artifacts import ContentAddressedArtifact

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")


class ArtifactIntegrityError(RuntimeError):
    """Raised when stored bytes no longer hash to their address."""


def _digest_of(address: str) -> str:
    """Accept ``sha256:<hex>`` or bare hex; reject anything else."""
    digest = address.removeprefix("sha256:")
    if not _HEX_DIGEST.match(digest):
        raise ValueError(f"not a sha256 content address: {address!r}")
    return digest


class ContentAddressedStore:
    """Build contexts addressed by content.

    Parameters
    ----------
    base_path:
        Root directory; created on first use.
    """

    def __init__(self, base_path: Path) -> None:
        self._root = Path(base_path)
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, digest: str) -> Path:
        return self._root / digest[:2] / digest[2:4] / f"{digest}.dat"

    def store(
        self,
        data: bytes,
        *,
        name: str = "",
        artifact_type: str = "generic",
        metadata: dict[str, Any] | None = None,
    ) -> ContentAddressedArtifact:
        """Store ``data`` unless identical bytes are already present.

        An existing file under the same address must still hash correctly;
        otherwise ``ArtifactIntegrityError`` is raised and nothing is written.
        """
        address = content_address(data)
        digest = _digest_of(address)
        path = self._path(digest)

        if path.exists():
            if not self.verify(digest):
                raise ArtifactIntegrityError(f"stored build context {address} is corrupt")
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

        return ContentAddressedArtifact(
            content_address=address,
            artifact_type=artifact_type,
            name=name or digest[:16],
            size_bytes=len(data),
            metadata=metadata or {},
        )

    def retrieve(self, address: str, *, verify: bool = False) -> bytes:
        """Return the bytes stored under ``address``.

        With ``verify=True`` the bytes are re-hashed first and a mismatch
        raises ``ArtifactIntegrityError``.
        """
        digest = _digest_of(address)
        path = self._path(digest)
        if not path.exists():
            raise FileNotFoundError(f"no build context stored under {address}")
        data = path.read_bytes()
        if verify and sha256_hex(data) != digest:
            raise ArtifactIntegrityError(f"build context {address} does not match its address")
        return data

    def exists(self, address: str) -> bool:
        return self._path(_digest_of(address)).exists()

    def verify(self, address: str) -> bool:
        """True when the stored bytes still hash to ``address``."""
        digest = _digest_of(address)
        path = self._path(digest)
        return path.exists() and sha256_hex(path.read_bytes()) == digest
