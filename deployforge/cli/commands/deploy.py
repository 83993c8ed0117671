"""``deployforge deploy --image REF`` — roll out an already published image.

Also the rollback path: deploying an older tag makes it the serving
revision again with exactly the environment given on this invocation.
"""

from __future__ import annotations

from pathlib import Path

import typer

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
from deployforge.monitor.renderer import MonitorRenderer


def deploy_cmd(
    image: str = typer.Option(..., "--image", "-i", help="Published image reference."),
    project: str = typer.Option(None, "--project", "-p", help="Project id (overrides the pipeline file)."),
    commit: str = typer.Option("", "--commit", "-c", help="Commit for $COMMIT_SHA in env templates."),
    service: str = service_option(),
    region: str = region_option(),
    platform: Platform = platform_option(),
    access: AccessPolicy = access_option(),
    env: list[str] = env_option(),
    sub: list[str] = sub_option(),
    subs_file: Path = subs_file_option(),
    pipeline_file: Path = pipeline_file_option(),
) -> None:
    """Deploy a published image to a service."""
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

    try:
        result = runner.deploy_image(image, target)
    except PipelineFailure as exc:
        pipeline_failure(exc)

    MonitorRenderer(console=console).print_deploy_result(result, image)
