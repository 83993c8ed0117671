"""Tests for readiness probes and the readiness wait loop."""

from __future__ import annotations

import httpx
import pytest

from deployforge.models.deployment import RevisionHandle
from deployforge.runtime.readiness import (
    HttpReadinessProbe,
    ReadinessPolicy,
    RuntimeReadinessProbe,
    wait_until_ready,
)

HANDLE = RevisionHandle(
    service_name="demo-svc",
    revision_name="demo-svc-00001-abc",
    image_ref="registry/demo:abc123",
    url="https://demo-svc.run.local/",
)


class ScriptedProbe:
    def __init__(self, *answers: bool) -> None:
        self._answers = list(answers)
        self.calls = 0

    def probe(self, target, handle) -> bool:
        self.calls += 1
        return self._answers.pop(0) if len(self._answers) > 1 else self._answers[0]


class TestHttpReadinessProbe:
    def _client(self, status: int, seen: list[str] | None = None) -> httpx.Client:
        def handler(request: httpx.Request) -> httpx.Response:
            if seen is not None:
                seen.append(str(request.url))
            return httpx.Response(status)

        return httpx.Client(transport=httpx.MockTransport(handler))

    def test_success(self, make_target):
        seen: list[str] = []
        probe = HttpReadinessProbe("healthz", client=self._client(200, seen))
        assert probe.probe(make_target(), HANDLE) is True
        assert seen == ["https://demo-svc.run.local/healthz"]

    @pytest.mark.parametrize("status", [404, 500, 503])
    def test_non_2xx_is_not_ready(self, make_target, status):
        probe = HttpReadinessProbe("/healthz", client=self._client(status))
        assert probe.probe(make_target(), HANDLE) is False

    def test_transport_error_is_not_ready(self, make_target):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        probe = HttpReadinessProbe(client=httpx.Client(transport=httpx.MockTransport(handler)))
        assert probe.probe(make_target(), HANDLE) is False

    def test_no_url(self, make_target):
        handle = HANDLE.model_copy(update={"url": ""})
        assert HttpReadinessProbe(client=self._client(200)).probe(make_target(), handle) is False


class TestWaitUntilReady:
    def test_ready_on_first_check(self, make_target):
        sleeps: list[float] = []
        outcome = wait_until_ready(ScriptedProbe(True), make_target(), HANDLE, ReadinessPolicy(), sleep=sleeps.append)
        assert outcome.ready and outcome.checks == 1
        assert sleeps == []

    def test_success_threshold_needs_consecutive_successes(self, make_target):
        probe = ScriptedProbe(True, False, True, True)
        policy = ReadinessPolicy(success_threshold=2, interval_seconds=1.0)
        sleeps: list[float] = []
        outcome = wait_until_ready(probe, make_target(), HANDLE, policy, sleep=sleeps.append)
        assert outcome.ready and outcome.checks == 4
        assert sleeps == [1.0, 1.0, 1.0]

    def test_failure_threshold(self, make_target):
        policy = ReadinessPolicy(failure_threshold=3, interval_seconds=0)
        outcome = wait_until_ready(ScriptedProbe(False), make_target(), HANDLE, policy, sleep=lambda s: None)
        assert not outcome.ready
        assert outcome.checks == 3
        assert "3 consecutive" in outcome.detail

    def test_max_checks(self, make_target):
        probe = ScriptedProbe(False, True, False, True, False)
        policy = ReadinessPolicy(success_threshold=2, failure_threshold=2, max_checks=5)
        outcome = wait_until_ready(probe, make_target(), HANDLE, policy, sleep=lambda s: None)
        assert not outcome.ready
        assert outcome.checks == 5
        assert "after 5 checks" in outcome.detail

    def test_initial_delay(self, make_target):
        sleeps: list[float] = []
        policy = ReadinessPolicy(initial_delay_seconds=3.0)
        wait_until_ready(ScriptedProbe(True), make_target(), HANDLE, policy, sleep=sleeps.append)
        assert sleeps == [3.0]

    def test_runtime_probe_asks_runtime(self, runtime, make_target):
        target = make_target()
        handle = runtime.create_revision(target, "registry/demo:abc123")
        assert RuntimeReadinessProbe(runtime).probe(target, handle) is True
        unknown = HANDLE.model_copy(update={"revision_name": "demo-svc-99999-zzz"})
        assert RuntimeReadinessProbe(runtime).probe(target, unknown) is False
