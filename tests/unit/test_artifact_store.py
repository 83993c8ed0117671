"""Tests for ContentAddressedStore — immutability, integrity, content addressing."""

from __future__ import annotations

import pytest

from deployforge.core.artifact_store import (
    ArtifactIntegrityError,
    ContentAddressedStore,
)
from deployforge.core.hasher import sha256_hex


class TestContentAddressedStore:
    def test_store_and_retrieve(self, artifact_store: ContentAddressedStore):
        data = b"hello deployforge"
        artifact = artifact_store.store(data, name="ctx.tar")
        assert artifact.content_address.startswith("sha256:")
        assert artifact.size_bytes == len(data)
        assert artifact_store.retrieve(artifact.content_address) == data

    def test_content_addressing(self, artifact_store: ContentAddressedStore):
        data = b"deterministic content"
        artifact = artifact_store.store(data)
        assert artifact.content_address == f"sha256:{sha256_hex(data)}"

    def test_idempotent_store(self, artifact_store: ContentAddressedStore):
        a1 = artifact_store.store(b"store me twice", name="first")
        a2 = artifact_store.store(b"store me twice", name="second")
        assert a1.content_address == a2.content_address

    def test_retrieve_accepts_bare_digest(self, artifact_store: ContentAddressedStore):
        artifact = artifact_store.store(b"bare")
        assert artifact_store.retrieve(artifact.content_address.removeprefix("sha256:")) == b"bare"

    def test_exists(self, artifact_store: ContentAddressedStore):
        artifact = artifact_store.store(b"check existence")
        assert artifact_store.exists(artifact.content_address) is True
        assert artifact_store.exists("sha256:" + "0" * 64) is False

    def test_retrieve_nonexistent(self, artifact_store: ContentAddressedStore):
        with pytest.raises(FileNotFoundError):
            artifact_store.retrieve("sha256:" + "0" * 64)

    def test_no_temp_files_left_behind(self, artifact_store: ContentAddressedStore, tmp_dir):
        artifact_store.store(b"atomic")
        assert not list((tmp_dir / "artifacts").rglob("*.tmp"))

    def test_rejects_malformed_address(self, artifact_store: ContentAddressedStore):
        with pytest.raises(ValueError):
            artifact_store.retrieve("sha256:../../etc/passwd")
        with pytest.raises(ValueError):
            artifact_store.exists("md5:abc")


class TestIntegrity:
    def _corrupt(self, tmp_dir, content_address: str) -> None:
        digest = content_address.removeprefix("sha256:")
        path = tmp_dir / "artifacts" / digest[:2] / digest[2:4] / f"{digest}.dat"
        path.write_bytes(b"tampered")

    def test_verify_detects_corruption(self, artifact_store: ContentAddressedStore, tmp_dir):
        artifact = artifact_store.store(b"original")
        self._corrupt(tmp_dir, artifact.content_address)
        assert artifact_store.verify(artifact.content_address) is False

    def test_verified_retrieve_raises_on_corruption(self, artifact_store: ContentAddressedStore, tmp_dir):
        artifact = artifact_store.store(b"original")
        self._corrupt(tmp_dir, artifact.content_address)
        with pytest.raises(ArtifactIntegrityError):
            artifact_store.retrieve(artifact.content_address, verify=True)

    def test_restore_over_corruption_raises(self, artifact_store: ContentAddressedStore, tmp_dir):
        artifact = artifact_store.store(b"original")
        self._corrupt(tmp_dir, artifact.content_address)
        with pytest.raises(ArtifactIntegrityError):
            artifact_store.store(b"original")
