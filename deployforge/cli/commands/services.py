"""``deployforge services`` — current service records from the state store."""

from __future__ import annotations

import typer

from deployforge.cli.common import console, load_settings
from deployforge.core.state_store import DeploymentStateStore
from deployforge.monitor.renderer import MonitorRenderer


def services_cmd(
    history: str = typer.Option(None, "--history", help="Show every record version of one service."),
    as_json: bool = typer.Option(False, "--json", help="Print all current records as JSON."),
) -> None:
    """List the serving revision of every deployed service."""
    prod = load_settings()
    if not prod.state_db_path.exists():
        console.print("[dim]No services deployed.[/dim]")
        return

    store = DeploymentStateStore(prod.state_db_path)
    if as_json:
        typer.echo(store.export())
        return

    renderer = MonitorRenderer(console=console)
    if history:
        records = store.history(history)
        if not records:
            console.print(f"[bold red]Unknown service:[/bold red] {history}")
            raise typer.Exit(code=1)
        renderer.print_services(records)
        return
    renderer.print_services(store.list_services())
