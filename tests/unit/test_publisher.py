"""Tests for the RegistryPublisher — retry on transient errors, fail fast otherwise."""

from __future__ import annotations

import pytest

from deployforge.core.artifact_store import ContentAddressedStore
from deployforge.core.failures import EXIT_PUBLISH_FAILURE, PublishFailure
from deployforge.core.retry import RetryPolicy
from deployforge.models.artifacts import BuildSpec, Revision
from deployforge.registry import (
    PushReceipt,
    RegistryAuthError,
    RegistryQuotaError,
    TagConflictError,
    TransientRegistryError,
)
from deployforge.registry.local import LocalRegistry
from deployforge.stages.build import ArtifactBuilder
from deployforge.stages.publish import RegistryPublisher

POLICY = RetryPolicy.on(TransientRegistryError, max_attempts=3, base_delay=0.5)


class ScriptedRegistry:
    """Raises the scripted errors in order, then delegates to a real registry."""

    def __init__(self, inner: LocalRegistry, errors: list[Exception]) -> None:
        self.inner = inner
        self.errors = list(errors)
        self.push_calls = 0

    def push(self, image_ref: str, data: bytes, digest: str) -> PushReceipt:
        self.push_calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.inner.push(image_ref, data, digest)

    def resolve(self, image_ref: str) -> str | None:
        return self.inner.resolve(image_ref)


@pytest.fixture
def revision(build_spec: BuildSpec, artifact_store: ContentAddressedStore) -> Revision:
    return ArtifactBuilder(build_spec, artifact_store).build("abc123")


class TestRegistryPublisher:
    def test_publish(self, registry: LocalRegistry, artifact_store, revision: Revision):
        image = RegistryPublisher(registry, artifact_store, POLICY).publish(revision)
        assert image.image_ref == "registry/demo:abc123"
        assert image.digest == revision.artifact.content_address
        assert image.created is True
        assert image.attempts == 1

    def test_republish_same_commit_is_noop(self, registry: LocalRegistry, artifact_store, revision: Revision):
        publisher = RegistryPublisher(registry, artifact_store, POLICY)
        publisher.publish(revision)
        again = publisher.publish(revision)
        assert again.created is False
        assert again.digest == revision.artifact.content_address

    def test_transient_errors_are_retried(self, registry: LocalRegistry, artifact_store, revision: Revision):
        sleeps: list[float] = []
        scripted = ScriptedRegistry(registry, [TransientRegistryError("503"), TransientRegistryError("reset")])
        image = RegistryPublisher(scripted, artifact_store, POLICY, sleep=sleeps.append).publish(revision)
        assert image.attempts == 3
        assert scripted.push_calls == 3
        assert sleeps == [0.5, 1.0]

    def test_retry_exhaustion_is_retryable_failure(self, registry: LocalRegistry, artifact_store, revision: Revision):
        scripted = ScriptedRegistry(registry, [TransientRegistryError("503")] * 5)
        with pytest.raises(PublishFailure) as info:
            RegistryPublisher(scripted, artifact_store, POLICY, sleep=lambda _: None).publish(revision)
        assert info.value.retryable is True
        assert info.value.attempts == 3
        assert info.value.exit_code == EXIT_PUBLISH_FAILURE
        assert scripted.push_calls == 3
        assert registry.resolve(revision.image_ref) is None

    @pytest.mark.parametrize(
        "error",
        [RegistryAuthError("unauthorized"), RegistryQuotaError("quota"), TagConflictError("exists")],
    )
    def test_fatal_errors_fail_immediately(self, registry: LocalRegistry, artifact_store, revision: Revision, error):
        scripted = ScriptedRegistry(registry, [error])
        with pytest.raises(PublishFailure) as info:
            RegistryPublisher(scripted, artifact_store, POLICY, sleep=lambda _: None).publish(revision)
        assert info.value.retryable is False
        assert scripted.push_calls == 1
        assert type(error).__name__ in str(info.value)

    def test_missing_artifact(self, registry: LocalRegistry, tmp_path, revision: Revision):
        empty_store = ContentAddressedStore(tmp_path / "empty")
        with pytest.raises(PublishFailure, match="unavailable"):
            RegistryPublisher(registry, empty_store, POLICY).publish(revision)
