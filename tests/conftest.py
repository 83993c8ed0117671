"""Shared test fixtures for deployforge."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from pydantic import SecretStr

from deployforge.config import ProdConfig
from deployforge.core.artifact_store import ContentAddressedStore
from deployforge.core.pipeline import PipelineRunner
from deployforge.core.run_ledger import RunLedger
from deployforge.core.stage_machine import StageMachine
from deployforge.core.state_store import DeploymentStateStore
from deployforge.log import secret_filter
from deployforge.models.artifacts import BuildSpec
from deployforge.models.config import BuildSettings, DeploySettings, PipelineConfig
from deployforge.models.deployment import DeploymentTarget
from deployforge.models.stages import DEFAULT_STAGE_DEFINITIONS
from deployforge.registry.local import LocalRegistry
from deployforge.runtime.local import LocalRuntime


@pytest.fixture(autouse=True)
def _reset_deployforge_logger():
    """Undo ``configure_logging`` and forget registered secrets between tests."""
    yield
    logger = logging.getLogger("deployforge")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    secret_filter._secrets.clear()


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def artifact_store(tmp_dir: Path) -> ContentAddressedStore:
    """Provide a fresh ContentAddressedStore in a temp directory."""
    return ContentAddressedStore(tmp_dir / "artifacts")


@pytest.fixture
def stage_machine(ledger: RunLedger) -> StageMachine:
    """Provide a StageMachine wired to the test ledger."""
    return StageMachine(ledger, DEFAULT_STAGE_DEFINITIONS)


@pytest.fixture
def state_store(tmp_dir: Path) -> DeploymentStateStore:
    return DeploymentStateStore(tmp_dir / "services.db")


@pytest.fixture
def registry(tmp_dir: Path) -> LocalRegistry:
    return LocalRegistry(tmp_dir / "registry")


@pytest.fixture
def runtime() -> LocalRuntime:
    """In-memory LocalRuntime where every revision is ready."""
    return LocalRuntime()


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "df-test-run-001"


@pytest.fixture
def source_tree(tmp_dir: Path) -> Path:
    """A minimal service source tree with a Dockerfile and an ignore file."""
    src = tmp_dir / "src"
    (src / "app").mkdir(parents=True)
    (src / "Dockerfile").write_text("FROM python:3.12-slim\nCOPY app /app\n")
    (src / "app" / "main.py").write_text("print('hello')\n")
    (src / ".dockerignore").write_text("# local junk\n*.log\nnode_modules\n")
    (src / "debug.log").write_text("noise\n")
    (src / "node_modules").mkdir()
    (src / "node_modules" / "pkg.js").write_text("module.exports = 1\n")
    return src


@pytest.fixture
def build_spec(source_tree: Path) -> BuildSpec:
    return BuildSpec(source_dir=source_tree, registry="registry", project_id="demo")


@pytest.fixture
def make_target() -> Callable[..., DeploymentTarget]:
    """Factory fixture: a DeploymentTarget with plain-string env values."""

    def _factory(service_name: str = "demo-svc", env: dict[str, str] | None = None, **overrides: Any):
        return DeploymentTarget(
            service_name=service_name,
            env={k: SecretStr(v) for k, v in (env or {}).items()},
            **overrides,
        )

    return _factory


class FakeRunner:
    """Records argv lists and replays scripted CompletedProcess results.

    ``responses`` maps a predicate over argv to a result (or a list of
    results consumed in order); unmatched commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.inputs: list[bytes | None] = []
        self._rules: list[tuple[Callable[[list[str]], bool], list[subprocess.CompletedProcess]]] = []

    def on(self, predicate: Callable[[list[str]], bool], *results: tuple[int, str, str]) -> None:
        self._rules.append(
            (predicate, [subprocess.CompletedProcess([], rc, out, err) for rc, out, err in results])
        )

    def __call__(self, argv: list[str], *, input: bytes | None = None, timeout: float | None = 600):
        self.calls.append(list(argv))
        self.inputs.append(input)
        for predicate, results in self._rules:
            if predicate(argv):
                return results.pop(0) if len(results) > 1 else results[0]
        return subprocess.CompletedProcess(argv, 0, "", "")


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def pipeline_config(tmp_dir: Path, source_tree: Path) -> PipelineConfig:
    """Pipeline config for project ``demo`` with all storage under tmp_dir."""
    return PipelineConfig(
        project_id="demo",
        build=BuildSettings(source_dir=source_tree, registry="registry"),
        deploy=DeploySettings(service_name="demo-svc", env={"A": "1", "B": "2"}),
        artifact_store_path=tmp_dir / "artifacts",
        ledger_db_path=tmp_dir / "ledger.db",
        registry_path=tmp_dir / "registry",
        runtime_path=tmp_dir / "runtime",
        state_db_path=tmp_dir / "services.db",
    )


@pytest.fixture
def make_pipeline(pipeline_config: PipelineConfig, runtime: LocalRuntime) -> Callable[..., PipelineRunner]:
    """Factory fixture: a PipelineRunner on local backends that never sleeps."""

    def _factory(**kwargs: Any) -> PipelineRunner:
        kwargs.setdefault("runtime", runtime)
        kwargs.setdefault("prod_config", ProdConfig())
        kwargs.setdefault("sleep", lambda seconds: None)
        return PipelineRunner(kwargs.pop("config", pipeline_config), **kwargs)

    return _factory
