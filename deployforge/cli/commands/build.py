"""``deployforge build`` — package a commit without publishing it."""

from __future__ import annotations

from pathlib import Path

import typer

from deployforge.cli.common import (
    CONFIG_ERRORS,
    collect_substitutions,
    config_error,
    console,
    load_pipeline,
    load_settings,
    make_runner,
    pipeline_failure,
    pipeline_file_option,
    sub_option,
    subs_file_option,
)
from deployforge.core.failures import PipelineFailure


def build_cmd(
    commit: str = typer.Option(..., "--commit", "-c", help="Commit hash to build."),
    project: str = typer.Option(None, "--project", "-p", help="Project id (overrides the pipeline file)."),
    sub: list[str] = sub_option(),
    subs_file: Path = subs_file_option(),
    pipeline_file: Path = pipeline_file_option(),
) -> None:
    """Build the artifact for a commit and print its image reference and digest."""
    prod = load_settings()
    try:
        config = load_pipeline(prod, pipeline_file, project)
        runner = make_runner(prod, config)
        substitutions = collect_substitutions(runner, subs_file, sub)
    except CONFIG_ERRORS as exc:
        config_error(exc)

    try:
        revision = runner.build(config.project_id, commit, substitutions)
    except PipelineFailure as exc:
        pipeline_failure(exc)

    console.print(f"[bold]Image:[/bold]  {revision.image_ref}")
    console.print(f"[bold]Digest:[/bold] {revision.artifact.content_address}")
