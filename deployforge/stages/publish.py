"""Registry Publisher.

Uploads a built artifact to the configured registry. The caller supplies the
retry policy; the publisher only classifies outcomes:

- transient registry errors are retried by the policy,
- authentication, quota and tag-conflict errors fail immediately,
- an exhausted retry budget fails with ``PublishFailure(retryable=True)``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from deployforge.core.artifact_store import ArtifactIntegrityError, ContentAddressedStore
from deployforge.core.failures import PublishFailure
from deployforge.core.retry import RetryExhaustedError, RetryPolicy
from deployforge.models.artifacts import PublishedImage, Revision
from deployforge.registry import (
    Registry,
    RegistryError,
    TransientRegistryError,
)

logger = logging.getLogger(__name__)

DEFAULT_PUBLISH_POLICY = RetryPolicy.on(TransientRegistryError, max_attempts=4, base_delay=1.0)


class RegistryPublisher:
    """Pushes revisions to a registry under their immutable tags.

    Parameters
    ----------
    registry:
        Registry backend.
    store:
        Artifact store holding the built artifacts.
    retry_policy:
        Policy applied to transient registry errors.
    sleep:
        Sleep function used between attempts.
    """

    def __init__(
        self,
        registry: Registry,
        store: ContentAddressedStore,
        retry_policy: RetryPolicy = DEFAULT_PUBLISH_POLICY,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._registry = registry
        self._store = store
        self._policy = retry_policy
        self._sleep = sleep

    def publish(self, revision: Revision) -> PublishedImage:
        """Upload ``revision``'s artifact and return the published image."""
        try:
            data = self._store.retrieve(revision.artifact.content_address, verify=True)
        except (FileNotFoundError, ArtifactIntegrityError) as exc:
            raise PublishFailure(f"artifact for {revision.image_ref} unavailable: {exc}") from exc

        def _push():
            return self._registry.push(
                revision.image_ref, data, revision.artifact.content_address
            )

        try:
            receipt, attempts = self._policy.run(
                _push, sleep=self._sleep, operation_name=f"push {revision.image_ref}"
            )
        except RetryExhaustedError as exc:
            raise PublishFailure(str(exc), retryable=True, attempts=exc.attempts) from exc
        except RegistryError as exc:
            logger.error("Publishing %s failed: %s", revision.image_ref, exc)
            raise PublishFailure(
                f"{type(exc).__name__}: {exc}", retryable=False
            ) from exc

        logger.info(
            "Published %s (%s)%s",
            receipt.image_ref,
            receipt.digest[:19],
            "" if receipt.created else ", tag already present",
        )
        return PublishedImage(
            image_ref=receipt.image_ref,
            digest=receipt.digest,
            created=receipt.created,
            attempts=attempts,
        )
