"""Pipeline runner — the central coordinator for deployforge runs.

The PipelineRunner wires together the RunLedger, StageMachine,
ContentAddressedStore, ArtifactBuilder, RegistryPublisher and
DeploymentOrchestrator into a single build → publish → deploy run.

Every stage goes through the same lifecycle (``_execute``): RUNNING with
an input hash, the stage action, then PASSED with an output hash or FAILED
with the error. The stage machine refuses to start a stage whose
prerequisite has not passed, so a failed build never reaches the registry
and a failed publish never reaches the runtime.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, SecretStr

from deployforge.config import ProdConfig
from deployforge.core.artifact_store import ContentAddressedStore
from deployforge.core.failures import (
    BuildFailure,
    PipelineCancelled,
    PipelineFailure,
    PublishFailure,
    RolloutFailure,
)
from deployforge.core.hasher import compute_input_hash, compute_output_hash
from deployforge.core.production_guard import enforce_production_constraints
from deployforge.core.retry import RetryPolicy
from deployforge.core.run_ledger import RunLedger
from deployforge.core.stage_machine import StageMachine
from deployforge.core.state_store import DeploymentStateStore
from deployforge.core.substitutions import (
    builtin_substitutions,
    expand,
    validate_user_keys,
)
from deployforge.log import secret_filter
from deployforge.models.artifacts import PublishedImage, Revision
from deployforge.models.config import DeploySettings, PipelineConfig, RunConfig
from deployforge.models.deployment import DeploymentTarget, DeployResult
from deployforge.models.ledger import LedgerEntry
from deployforge.models.stages import (
    BUILD_STAGE,
    DEFAULT_STAGE_DEFINITIONS,
    DEPLOY_STAGE,
    PUBLISH_STAGE,
    StageState,
)
from deployforge.registry import Registry, RegistryError, TransientRegistryError
from deployforge.registry.docker import DockerRegistry
from deployforge.registry.local import LocalRegistry
from deployforge.runtime import ServingRuntime
from deployforge.runtime.cloud_run import CloudRunRuntime
from deployforge.runtime.local import LocalRuntime
from deployforge.runtime.readiness import HttpReadinessProbe, ReadinessPolicy, ReadinessProbe
from deployforge.stages.build import ArtifactBuilder
from deployforge.stages.deploy import DeploymentOrchestrator, TargetLocks
from deployforge.stages.publish import RegistryPublisher

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STAGE_FAILURES: dict[str, type[PipelineFailure]] = {
    BUILD_STAGE: BuildFailure,
    PUBLISH_STAGE: PublishFailure,
    DEPLOY_STAGE: RolloutFailure,
}


class PipelineResult(BaseModel):
    """Outcome of a successful run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    revision: Revision
    image: PublishedImage
    deployment: DeployResult


# ----------------------------------------------------------------------
# Backend selection
# ----------------------------------------------------------------------


def make_registry(prod_config: ProdConfig, config: PipelineConfig) -> Registry:
    if prod_config.registry_backend == "docker":
        return DockerRegistry()
    return LocalRegistry(config.registry_path)


def make_runtime(prod_config: ProdConfig, config: PipelineConfig) -> ServingRuntime:
    if prod_config.runtime_backend == "cloud-run":
        return CloudRunRuntime(project=prod_config.gcp_project or None)
    return LocalRuntime(config.runtime_path)


def make_probe(prod_config: ProdConfig) -> ReadinessProbe | None:
    """HTTP probe when a readiness path is configured, else None (ask the runtime)."""
    if not prod_config.readiness_path:
        return None
    return HttpReadinessProbe(
        prod_config.readiness_path, timeout=prod_config.readiness_timeout_seconds
    )


def publish_policy(prod_config: ProdConfig) -> RetryPolicy:
    return RetryPolicy.on(
        TransientRegistryError,
        max_attempts=prod_config.publish_max_attempts,
        base_delay=prod_config.publish_base_delay,
        multiplier=prod_config.publish_backoff_multiplier,
        max_delay=prod_config.publish_max_delay,
    )


def readiness_policy(prod_config: ProdConfig) -> ReadinessPolicy:
    return ReadinessPolicy(
        initial_delay_seconds=prod_config.readiness_initial_delay_seconds,
        interval_seconds=prod_config.readiness_interval_seconds,
        timeout_seconds=prod_config.readiness_timeout_seconds,
        success_threshold=prod_config.readiness_success_threshold,
        failure_threshold=prod_config.readiness_failure_threshold,
        max_checks=prod_config.readiness_max_checks,
    )


# ----------------------------------------------------------------------
# Target resolution
# ----------------------------------------------------------------------


def build_target(
    settings: DeploySettings,
    substitutions: dict[str, str],
    *,
    project_id: str,
    commit_sha: str = "",
    env: dict[str, str] | None = None,
    **overrides: Any,
) -> DeploymentTarget:
    """Resolve deploy settings into a DeploymentTarget.

    Templated ``[deploy.env]`` values are expanded against the substitutions
    and the built-ins; ``env`` entries (already literal) replace same-named
    keys. Every resolved value is registered with the log masking filter
    before it is wrapped as a secret.
    """
    values = {**substitutions, **builtin_substitutions(project_id, commit_sha)}
    resolved = {key: expand(template, values) for key, template in settings.env.items()}
    resolved.update(env or {})
    secret_filter.register(*resolved.values())

    fields = settings.model_dump(exclude={"env"})
    fields.update({k: v for k, v in overrides.items() if v is not None})
    return DeploymentTarget(
        env={key: SecretStr(value) for key, value in resolved.items()},
        **fields,
    )


# ----------------------------------------------------------------------
# Runner
# ----------------------------------------------------------------------


class PipelineRunner:
    """Runs build → publish → deploy with ledger-recorded stage transitions.

    Parameters
    ----------
    config:
        Project configuration. Uses defaults if not provided.
    prod_config:
        Process configuration; selects backends and retry/readiness policy.
    registry, runtime, probe:
        Override the backends chosen from ``prod_config``.
    locks:
        Per-service rollout locks shared between runners in one process.
    sleep:
        Sleep function for retry backoff and readiness polling.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        prod_config: ProdConfig | None = None,
        registry: Registry | None = None,
        runtime: ServingRuntime | None = None,
        probe: ReadinessProbe | None = None,
        locks: TargetLocks | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or PipelineConfig()
        self._prod_config = prod_config or ProdConfig()

        # Fails hard if production constraints are violated
        enforce_production_constraints(self._prod_config)

        self.ledger = RunLedger(self.config.ledger_db_path)
        self.artifact_store = ContentAddressedStore(self.config.artifact_store_path)
        self.stage_machine = StageMachine(self.ledger, DEFAULT_STAGE_DEFINITIONS)
        self.state_store = DeploymentStateStore(self.config.state_db_path)

        self.registry = registry or make_registry(self._prod_config, self.config)
        self.runtime = runtime or make_runtime(self._prod_config, self.config)
        self.publisher = RegistryPublisher(
            self.registry,
            self.artifact_store,
            publish_policy(self._prod_config),
            sleep=sleep,
        )
        self.orchestrator = DeploymentOrchestrator(
            self.runtime,
            self.state_store,
            probe=probe or make_probe(self._prod_config),
            readiness_policy=readiness_policy(self._prod_config),
            locks=locks,
            sleep=sleep,
        )

    def builder(self, project_id: str) -> ArtifactBuilder:
        return ArtifactBuilder(self.config.build.to_spec(project_id), self.artifact_store)

    def substitutions(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        """Pipeline-file substitutions overlaid with ``extra`` (later wins)."""
        return validate_user_keys({**self.config.substitutions, **(extra or {})})

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def run(
        self,
        project_id: str,
        commit_sha: str,
        target: DeploymentTarget,
        substitutions: dict[str, str] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PipelineResult:
        """Build, publish and deploy ``commit_sha`` of ``project_id``.

        Raises the ``PipelineFailure`` subclass of the first stage that
        failed, or ``PipelineCancelled``.
        """
        run = RunConfig(project_id=project_id, commit_sha=commit_sha)
        subs = self.substitutions(substitutions)
        self.stage_machine.initialize_run(run.run_id)
        logger.info("Run %s: %s@%s -> %s", run.run_id, project_id, commit_sha, target.service_name)

        builder = self.builder(project_id)
        revision = self._execute(
            run.run_id,
            BUILD_STAGE,
            {
                "project_id": project_id,
                "commit_sha": commit_sha,
                "build": self.config.build.model_dump(mode="json"),
                "substitution_keys": sorted(subs),
            },
            lambda: builder.build(commit_sha, subs),
            lambda r: {
                "image_ref": r.image_ref,
                "content_address": r.artifact.content_address,
                "artifact_references": [r.artifact.content_address],
            },
            cancel_event,
        )

        image = self._execute(
            run.run_id,
            PUBLISH_STAGE,
            {"image_ref": revision.image_ref, "content_address": revision.artifact.content_address},
            lambda: self.publisher.publish(revision),
            lambda p: {"image_ref": p.image_ref, "digest": p.digest, "created": p.created},
            cancel_event,
        )

        deployment = self._execute(
            run.run_id,
            DEPLOY_STAGE,
            {
                "image_ref": image.image_ref,
                "digest": image.digest,
                "service_name": target.service_name,
                "region": target.region,
                "platform": target.platform.value,
                "access_policy": target.access_policy.value,
                # Keys only; values never reach the ledger.
                "env_keys": target.env_keys,
            },
            lambda: self.orchestrator.deploy(image, target, commit_sha=revision.commit_sha),
            lambda d: {
                "service_name": d.service_name,
                "revision_name": d.revision_name,
                "url": d.url,
                "record_version": d.record_version,
            },
            cancel_event,
        )

        logger.info("Run %s passed: %s serves %s", run.run_id, deployment.service_name, image.image_ref)
        return PipelineResult(
            run_id=run.run_id, revision=revision, image=image, deployment=deployment
        )

    def _execute(
        self,
        run_id: str,
        stage_id: str,
        payload: dict[str, Any],
        action: Callable[[], T],
        describe: Callable[[T], dict[str, Any]],
        cancel_event: threading.Event | None,
    ) -> T:
        """Run one stage through RUNNING → PASSED/FAILED.

        Non-pipeline exceptions are translated into the failure class of the
        stage they occur in, with the original chained.
        """
        if cancel_event is not None and cancel_event.is_set():
            self.stage_machine.cancel_remaining(run_id, f"cancelled before {stage_id}")
            cancelled = PipelineCancelled(f"run {run_id} cancelled before {stage_id}")
            cancelled.run_id = run_id
            raise cancelled

        input_hash = compute_input_hash(stage_id, payload)
        self.stage_machine.transition(
            run_id, stage_id, StageState.RUNNING, input_hash=input_hash
        )

        try:
            result = action()
        except KeyboardInterrupt:
            self.stage_machine.cancel_remaining(run_id, f"interrupted during {stage_id}")
            cancelled = PipelineCancelled(f"run {run_id} interrupted during {stage_id}")
            cancelled.run_id = run_id
            raise cancelled from None
        except Exception as exc:
            if isinstance(exc, PipelineFailure):
                failure = exc
            else:
                failure = _STAGE_FAILURES[stage_id](
                    secret_filter.mask(f"{type(exc).__name__}: {exc}")
                )
            detail = secret_filter.mask(str(failure))
            self.stage_machine.transition(
                run_id,
                stage_id,
                StageState.FAILED,
                input_hash=input_hash,
                output_hash=compute_output_hash(stage_id, {"error": detail}),
                detail=detail,
            )
            logger.error("Stage %s of run %s failed: %s", stage_id, run_id, failure)
            failure.run_id = run_id
            if failure is exc:
                raise
            raise failure from exc

        outputs = describe(result)
        self.stage_machine.transition(
            run_id,
            stage_id,
            StageState.PASSED,
            input_hash=input_hash,
            output_hash=compute_output_hash(stage_id, outputs),
            artifact_references=outputs.get("artifact_references", []),
        )
        return result

    # ------------------------------------------------------------------
    # Single-stage operations
    # ------------------------------------------------------------------

    def build(
        self, project_id: str, commit_sha: str, substitutions: dict[str, str] | None = None
    ) -> Revision:
        """Build only; nothing is published or recorded in the ledger."""
        try:
            return self.builder(project_id).build(commit_sha, self.substitutions(substitutions))
        except KeyboardInterrupt:
            raise PipelineCancelled(f"build of {commit_sha} interrupted") from None

    def deploy_image(self, image_ref: str, target: DeploymentTarget) -> DeployResult:
        """Deploy an already published image, e.g. to roll back to an older tag."""
        try:
            digest = self.registry.resolve(image_ref)
        except RegistryError as exc:
            raise RolloutFailure(
                f"cannot resolve {image_ref}: {exc}", service_name=target.service_name
            ) from exc
        if digest is None:
            raise RolloutFailure(
                f"image {image_ref} is not published", service_name=target.service_name
            )
        image = PublishedImage(image_ref=image_ref, digest=digest, created=False)
        try:
            return self.orchestrator.deploy(image, target)
        except KeyboardInterrupt:
            raise PipelineCancelled(f"rollout of {image_ref} to {target.service_name} interrupted") from None

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_states(self, run_id: str) -> dict[str, StageState]:
        return self.stage_machine.get_all_states(run_id)

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        return self.ledger.get_run_entries(run_id)

    def verify_chain(self, run_id: str) -> bool:
        return self.ledger.verify_chain(run_id)
