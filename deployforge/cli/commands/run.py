"""``deployforge run`` — build, publish and deploy one commit.

Every stage transition is recorded in the run ledger; the exit code tells
automation which stage failed (10 build, 20 publish, 30 rollout,
130 cancelled, 1 configuration).
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel

from deployforge.cli.common import (
    CONFIG_ERRORS,
    access_option,
    collect_substitutions,
    config_error,
    console,
    env_option,
    load_pipeline,
    load_settings,
    make_runner,
    pipeline_failure,
    pipeline_file_option,
    platform_option,
    region_option,
    resolve_target,
    service_option,
    sub_option,
    subs_file_option,
)
from deployforge.core.failures import PipelineFailure
from deployforge.models.deployment import AccessPolicy, Platform
from deployforge.monitor.projection import RunProjection
from deployforge.monitor.renderer import MonitorRenderer


def run_cmd(
    commit: str = typer.Option(..., "--commit", "-c", help="Commit hash to build."),
    project: str = typer.Option(None, "--project", "-p", help="Project id (overrides the pipeline file)."),
    service: str = service_option(),
    region: str = region_option(),
    platform: Platform = platform_option(),
    access: AccessPolicy = access_option(),
    env: list[str] = env_option(),
    sub: list[str] = sub_option(),
    subs_file: Path = subs_file_option(),
    pipeline_file: Path = pipeline_file_option(),
) -> None:
    """Run the full pipeline for a commit."""
    prod = load_settings()
    try:
        config = load_pipeline(prod, pipeline_file, project)
        runner = make_runner(prod, config)
        substitutions = collect_substitutions(runner, subs_file, sub)
        target = resolve_target(
            config,
            substitutions,
            commit=commit,
            service=service,
            region=region,
            platform=platform,
            access=access,
            env=env,
        )
    except CONFIG_ERRORS as exc:
        config_error(exc)

    renderer = MonitorRenderer(console=console)
    projection = RunProjection(runner.ledger)
    try:
        result = runner.run(config.project_id, commit, target, substitutions)
    except PipelineFailure as exc:
        if exc.run_id:
            renderer.print_snapshot(projection.snapshot(exc.run_id))
        pipeline_failure(exc)

    renderer.print_snapshot(projection.snapshot(result.run_id))
    console.print(
        Panel(
            "\n".join([
                "[bold green]Pipeline passed![/bold green]",
                "",
                f"[bold]Run ID:[/bold]   {result.run_id}",
                f"[bold]Image:[/bold]    {result.image.image_ref}",
                f"[bold]Digest:[/bold]   {result.image.digest}",
                f"[bold]Service:[/bold]  {result.deployment.service_name}",
                f"[bold]Revision:[/bold] {result.deployment.revision_name}",
                f"[bold]URL:[/bold]      {result.deployment.url or '-'}",
            ]),
            title="[bold]deployforge[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
