"""Shared plumbing for CLI commands: settings, pipeline config, targets, exit codes."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import NoReturn

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from deployforge.config import ProdConfig
from deployforge.core.failures import EXIT_CONFIG_ERROR, PipelineFailure
from deployforge.core.pipeline import PipelineRunner, build_target
from deployforge.core.production_guard import ProductionConfigError
from deployforge.core.substitutions import (
    SubstitutionError,
    load_pipeline_file,
    load_substitutions_file,
    parse_assignments,
)
from deployforge.log import configure_logging, secret_filter
from deployforge.models.config import PipelineConfig
from deployforge.models.deployment import AccessPolicy, DeploymentTarget, Platform

console = Console()

DEFAULT_PIPELINE_FILE = Path("deployforge.toml")

# Errors that mean "fix your input", reported with exit code 1.
CONFIG_ERRORS = (
    ProductionConfigError,
    SubstitutionError,
    ValidationError,
    tomllib.TOMLDecodeError,
    FileNotFoundError,
)


def config_error(exc: BaseException | str) -> NoReturn:
    console.print(f"[bold red]Configuration error:[/bold red] {escape(str(exc))}")
    raise typer.Exit(code=EXIT_CONFIG_ERROR)


def pipeline_failure(exc: PipelineFailure) -> NoReturn:
    label = type(exc).__name__
    console.print(f"[bold red]{label}:[/bold red] {escape(secret_filter.mask(str(exc)))}")
    if exc.run_id:
        console.print(f"[dim]Inspect with: deployforge status {exc.run_id}[/dim]")
    raise typer.Exit(code=exc.exit_code)


def load_settings() -> ProdConfig:
    """Read ``DEPLOYFORGE_*`` settings and install logging."""
    try:
        prod = ProdConfig()
    except ValidationError as exc:
        config_error(exc)
    configure_logging(prod.log_level)
    return prod


def load_pipeline(
    prod: ProdConfig,
    pipeline_file: Path | None,
    project: str | None,
) -> PipelineConfig:
    """Pipeline config from ``pipeline_file`` (or ./deployforge.toml), with
    storage paths from the process settings and ``project`` overriding."""
    paths = {
        "artifact_store_path": prod.artifact_store_path,
        "ledger_db_path": prod.ledger_path,
        "registry_path": prod.registry_path,
        "runtime_path": prod.runtime_path,
        "state_db_path": prod.state_db_path,
    }
    if pipeline_file is None and DEFAULT_PIPELINE_FILE.is_file():
        pipeline_file = DEFAULT_PIPELINE_FILE

    if pipeline_file is not None:
        config = load_pipeline_file(pipeline_file, **paths)
    else:
        config = PipelineConfig(**paths)

    if "region" not in config.deploy.model_fields_set:
        config = config.model_copy(
            update={"deploy": config.deploy.model_copy(update={"region": prod.default_region})}
        )
    if project:
        config = config.model_copy(update={"project_id": project})
    if not config.project_id:
        raise SubstitutionError("a project is required: pass --project or set `project` in the pipeline file")
    prod.data_dir.mkdir(parents=True, exist_ok=True)
    return config


def make_runner(prod: ProdConfig, config: PipelineConfig) -> PipelineRunner:
    return PipelineRunner(config, prod_config=prod)


def collect_substitutions(
    runner: PipelineRunner, subs_file: Path | None, subs: list[str] | None
) -> dict[str, str]:
    """Pipeline file < substitutions file < ``--sub`` flags."""
    values: dict[str, str] = {}
    if subs_file is not None:
        values.update(load_substitutions_file(subs_file))
    values.update(parse_assignments(subs))
    return runner.substitutions(values)


def resolve_target(
    config: PipelineConfig,
    substitutions: dict[str, str],
    *,
    commit: str,
    service: str | None,
    region: str | None,
    platform: Platform | None,
    access: AccessPolicy | None,
    env: list[str] | None,
) -> DeploymentTarget:
    service_name = service or config.deploy.service_name
    if not service_name:
        raise SubstitutionError("a service is required: pass --service or set `service` under [deploy]")
    return build_target(
        config.deploy,
        substitutions,
        project_id=config.project_id,
        commit_sha=commit,
        env=parse_assignments(env),
        service_name=service_name,
        region=region,
        platform=platform,
        access_policy=access,
    )


# Typer option factories shared by ``run`` and ``deploy``.


def service_option():
    return typer.Option(None, "--service", "-s", help="Service name (overrides [deploy] service).")


def region_option():
    return typer.Option(None, "--region", "-r", help="Region (defaults to DEPLOYFORGE_DEFAULT_REGION).")


def platform_option():
    return typer.Option(None, "--platform", case_sensitive=False, help="Serving platform.")


def access_option():
    return typer.Option(None, "--access", case_sensitive=False, help="Invocation access policy.")


def env_option():
    return typer.Option(
        None, "--env", "-e", help="Environment variable KEY=VALUE; repeatable. Replaces [deploy.env] keys."
    )


def sub_option():
    return typer.Option(None, "--sub", help="Substitution _KEY=VALUE; repeatable.")


def subs_file_option():
    return typer.Option(None, "--subs-file", help="Substitutions file (JSON object or KEY=VALUE lines).")


def pipeline_file_option():
    return typer.Option(None, "--pipeline-file", "-f", help="Pipeline file (default: ./deployforge.toml).")
