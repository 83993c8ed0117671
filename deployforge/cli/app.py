"""Main Typer application — imports and registers all CLI commands.

Entry point: ``deployforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from deployforge.cli.commands.build import build_cmd
from deployforge.cli.commands.deploy import deploy_cmd
from deployforge.cli.commands.run import run_cmd
from deployforge.cli.commands.services import services_cmd
from deployforge.cli.commands.status import status_cmd

app = typer.Typer(
    name="deployforge",
    help="deployforge: build, publish and deploy a containerized service.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="run", help="Build, publish and deploy a commit.")(run_cmd)
app.command(name="build", help="Build the artifact for a commit.")(build_cmd)
app.command(name="deploy", help="Deploy an already published image.")(deploy_cmd)
app.command(name="status", help="Show the stages of a run.")(status_cmd)
app.command(name="services", help="List current service records.")(services_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
