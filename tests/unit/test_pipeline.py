"""Tests for PipelineRunner — stage ordering, failure classes, ledger contents."""

from __future__ import annotations

import threading

import pytest

from deployforge.core.failures import (
    BuildFailure,
    PipelineCancelled,
    PublishFailure,
    RolloutFailure,
)
from deployforge.core.pipeline import build_target
from deployforge.models.config import DeploySettings
from deployforge.models.deployment import AccessPolicy
from deployforge.models.stages import StageState
from deployforge.registry import PushReceipt, RegistryAuthError
from deployforge.runtime.local import LocalRuntime

S = StageState


class ExplodingRegistry:
    """Registry whose push raises ``error``; records whether it was called."""

    def __init__(self, error: BaseException) -> None:
        self.error = error
        self.pushes = 0

    def push(self, image_ref: str, data: bytes, digest: str) -> PushReceipt:
        self.pushes += 1
        raise self.error

    def resolve(self, image_ref: str) -> str | None:
        return None


def _target(runner, **kwargs):
    return build_target(
        runner.config.deploy,
        runner.substitutions(),
        project_id="demo",
        commit_sha="abc123",
        **kwargs,
    )


class TestSuccessfulRun:
    def test_all_stages_pass(self, make_pipeline, runtime):
        runner = make_pipeline()
        result = runner.run("demo", "abc123", _target(runner))

        assert result.image.image_ref == "registry/demo:abc123"
        assert result.revision.commit_sha == "abc123"
        assert runner.get_states(result.run_id) == {
            "build": S.PASSED,
            "publish": S.PASSED,
            "deploy": S.PASSED,
        }
        assert runner.verify_chain(result.run_id)
        assert runtime.serving_revision_of("demo-svc") == result.deployment.revision_name
        assert runner.registry.resolve("registry/demo:abc123") == result.image.digest

    def test_ledger_order_and_artifacts(self, make_pipeline):
        runner = make_pipeline()
        result = runner.run("demo", "abc123", _target(runner))
        transitions = [(e.stage_id, e.state_transition) for e in runner.get_run_entries(result.run_id)]
        assert transitions == [
            ("build", "not_started->running"),
            ("build", "running->passed"),
            ("publish", "not_started->running"),
            ("publish", "running->passed"),
            ("deploy", "not_started->running"),
            ("deploy", "running->passed"),
        ]
        build_passed = runner.get_run_entries(result.run_id)[1]
        assert build_passed.artifact_references == [result.revision.artifact.content_address]

    def test_env_values_never_reach_ledger_or_state(self, make_pipeline, runtime):
        runner = make_pipeline()
        target = _target(runner, env={"TOKEN": "tok-0123456789"})
        result = runner.run("demo", "abc123", target)

        assert runtime.environment_of("demo-svc") == {"A": "1", "B": "2", "TOKEN": "tok-0123456789"}
        for entry in runner.get_run_entries(result.run_id):
            assert "tok-0123456789" not in entry.model_dump_json()
        assert "tok-0123456789" not in runner.state_store.export()
        assert runner.state_store.get("demo-svc").env_keys == ["A", "B", "TOKEN"]

    def test_second_run_of_same_commit_reuses_tag(self, make_pipeline):
        runner = make_pipeline()
        first = runner.run("demo", "abc123", _target(runner))
        second = runner.run("demo", "abc123", _target(runner))
        assert first.run_id != second.run_id
        assert second.image.created is False
        assert second.image.digest == first.image.digest
        assert second.deployment.record_version == 2


class TestFailures:
    def test_build_failure_never_publishes(self, make_pipeline, source_tree):
        (source_tree / "Dockerfile").unlink()
        registry = ExplodingRegistry(AssertionError("push must not be called"))
        runner = make_pipeline(registry=registry)

        with pytest.raises(BuildFailure) as info:
            runner.run("demo", "abc123", _target(runner))

        assert info.value.exit_code == 10
        assert registry.pushes == 0
        assert runner.get_states(info.value.run_id) == {
            "build": S.FAILED,
            "publish": S.BLOCKED,
            "deploy": S.BLOCKED,
        }

    def test_invalid_commit_is_build_failure(self, make_pipeline):
        runner = make_pipeline()
        with pytest.raises(BuildFailure, match="invalid commit"):
            runner.run("demo", "not-a-sha", _target(runner))

    def test_publish_failure_never_deploys(self, make_pipeline, runtime):
        registry = ExplodingRegistry(RegistryAuthError("denied"))
        runner = make_pipeline(registry=registry)

        with pytest.raises(PublishFailure) as info:
            runner.run("demo", "abc123", _target(runner))

        assert info.value.exit_code == 20
        assert info.value.retryable is False
        assert runtime.revisions("demo-svc") == []
        assert runner.get_states(info.value.run_id)["deploy"] == S.BLOCKED

    def test_unexpected_error_is_wrapped_in_stage_failure(self, make_pipeline):
        runner = make_pipeline(registry=ExplodingRegistry(ValueError("boom")))
        with pytest.raises(PublishFailure) as info:
            runner.run("demo", "abc123", _target(runner))
        assert "ValueError: boom" in str(info.value)
        assert isinstance(info.value.__cause__, ValueError)
        entries = runner.get_run_entries(info.value.run_id)
        failed = [e for e in entries if e.state_transition == "running->failed"]
        assert failed[0].stage_id == "publish"
        assert "boom" in failed[0].detail

    def test_rollout_failure_after_publish(self, make_pipeline):
        runtime = LocalRuntime(readiness=lambda handle: False)
        runner = make_pipeline(runtime=runtime)
        with pytest.raises(RolloutFailure) as info:
            runner.run("demo", "abc123", _target(runner))
        assert info.value.exit_code == 30
        assert runner.registry.resolve("registry/demo:abc123") is not None
        assert runner.get_states(info.value.run_id)["deploy"] == S.FAILED
        assert runtime.revisions("demo-svc") == []

    def test_failure_detail_keeps_revision_name(self, make_pipeline):
        """Env values ``1`` and ``2`` must not mangle the digits of a revision name."""
        runner = make_pipeline(runtime=LocalRuntime(readiness=lambda handle: False))
        with pytest.raises(RolloutFailure) as info:
            runner.run("demo", "abc123", _target(runner))
        failed = [
            e for e in runner.get_run_entries(info.value.run_id)
            if e.state_transition == "running->failed"
        ]
        assert "revision demo-svc-00001-" in failed[0].detail
        assert "demo-svc-00001-" in str(info.value)


class TestCancellation:
    def test_cancel_before_start(self, make_pipeline):
        runner = make_pipeline()
        event = threading.Event()
        event.set()
        with pytest.raises(PipelineCancelled) as info:
            runner.run("demo", "abc123", _target(runner), cancel_event=event)
        assert info.value.exit_code == 130
        assert set(runner.get_states(info.value.run_id).values()) == {S.CANCELLED}

    def test_interrupt_during_publish(self, make_pipeline):
        runner = make_pipeline(registry=ExplodingRegistry(KeyboardInterrupt()))
        with pytest.raises(PipelineCancelled) as info:
            runner.run("demo", "abc123", _target(runner))
        assert runner.get_states(info.value.run_id) == {
            "build": S.PASSED,
            "publish": S.CANCELLED,
            "deploy": S.CANCELLED,
        }
        assert runner.verify_chain(info.value.run_id)


class TestSingleStageOperations:
    def test_build_only_records_no_run(self, make_pipeline):
        runner = make_pipeline()
        revision = runner.build("demo", "abc123")
        assert revision.image_ref == "registry/demo:abc123"
        assert runner.ledger.get_all_run_ids() == []
        assert runner.registry.resolve(revision.image_ref) is None

    def test_deploy_published_image(self, make_pipeline, runtime):
        runner = make_pipeline()
        first = runner.run("demo", "abc123", _target(runner))
        runner.run("demo", "def456", _target(runner))

        result = runner.deploy_image("registry/demo:abc123", _target(runner))
        assert runtime.serving_revision_of("demo-svc") == result.revision_name
        assert runner.state_store.get("demo-svc").image_ref == first.image.image_ref
        assert len(runner.ledger.get_all_run_ids()) == 2

    def test_deploy_unpublished_image(self, make_pipeline):
        runner = make_pipeline()
        with pytest.raises(RolloutFailure, match="not published"):
            runner.deploy_image("registry/demo:missing", _target(runner))


class TestBuildTarget:
    def test_expands_templates_and_builtins(self):
        settings = DeploySettings(
            service_name="demo-svc",
            env={"URL": "${_URL}/v1", "SHA": "$SHORT_SHA", "PROJECT": "$PROJECT_ID"},
        )
        target = build_target(
            settings, {"_URL": "https://example.test"}, project_id="demo", commit_sha="abcdef123456"
        )
        assert target.reveal_env() == {
            "URL": "https://example.test/v1",
            "SHA": "abcdef1",
            "PROJECT": "demo",
        }

    def test_literal_env_wins_and_overrides_apply(self):
        settings = DeploySettings(service_name="demo-svc", env={"A": "from-file"})
        target = build_target(
            settings,
            {},
            project_id="demo",
            env={"A": "from-flag", "B": "$NOT_EXPANDED"},
            region=None,
            access_policy=AccessPolicy.AUTHENTICATED,
        )
        assert target.reveal_env() == {"A": "from-flag", "B": "$NOT_EXPANDED"}
        assert target.region == "us-central1"
        assert target.access_policy == AccessPolicy.AUTHENTICATED

    def test_unknown_substitution(self):
        from deployforge.core.substitutions import SubstitutionError

        settings = DeploySettings(service_name="demo-svc", env={"A": "${_MISSING}"})
        with pytest.raises(SubstitutionError):
            build_target(settings, {}, project_id="demo")
