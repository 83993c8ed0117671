"""Rich terminal renderer for run snapshots and service records.

Color scheme
------------
- green     : PASSED
- red       : FAILED
- yellow    : RUNNING
- dim       : NOT_STARTED
- bold red  : BLOCKED
- magenta   : CANCELLED
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from deployforge.models.deployment import DeployResult, ServiceRecord
from deployforge.models.stages import StageState
from deployforge.monitor.projection import RunSnapshot

_STATE_STYLES: dict[StageState, str] = {
    StageState.PASSED: "bold green",
    StageState.FAILED: "bold red",
    StageState.RUNNING: "bold yellow",
    StageState.NOT_STARTED: "dim",
    StageState.BLOCKED: "bold red",
    StageState.CANCELLED: "magenta",
}

_STATE_LABELS: dict[StageState, str] = {
    StageState.PASSED: "[green]PASSED[/green]",
    StageState.FAILED: "[bold red]FAILED[/bold red]",
    StageState.RUNNING: "[yellow]RUNNING[/yellow]",
    StageState.NOT_STARTED: "[dim]NOT STARTED[/dim]",
    StageState.BLOCKED: "[bold red]BLOCKED[/bold red]",
    StageState.CANCELLED: "[magenta]CANCELLED[/magenta]",
}


class MonitorRenderer:
    """Renders snapshots and service records as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_snapshot(self, snapshot: RunSnapshot) -> Panel:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=3, justify="right")
        table.add_column("Stage", min_width=18)
        table.add_column("State", min_width=12, justify="center")
        table.add_column("Details", min_width=20)
        table.add_column("Artifacts", justify="right", width=10)

        for i, stage in enumerate(snapshot.stages):
            style = _STATE_STYLES.get(stage.state, "")
            details: list[str] = []
            if stage.detail:
                details.append(escape(stage.detail))
            if stage.entered_at:
                details.append(f"[dim]{stage.entered_at.strftime('%H:%M:%S')}[/dim]")
            table.add_row(
                str(i),
                f"[{style}]{stage.display_name}[/{style}]",
                _STATE_LABELS.get(stage.state, stage.state.value),
                " | ".join(details) or "[dim]-[/dim]",
                str(len(stage.artifact_refs)),
            )

        chain = "[green]valid[/green]" if snapshot.chain_valid else "[bold red]BROKEN[/bold red]"
        summary = "  |  ".join([
            f"[bold]Run:[/bold] {snapshot.run_id}",
            f"[bold]Progress:[/bold] {snapshot.completed_count}/{snapshot.total_stages}",
            f"[bold]Entries:[/bold] {snapshot.entry_count}",
            f"[bold]Chain:[/bold] {chain}",
        ])

        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title="[bold]deployforge run[/bold]",
            subtitle=f"Last updated: {snapshot.last_updated.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style="blue",
            padding=(1, 2),
        )

    def print_snapshot(self, snapshot: RunSnapshot) -> None:
        self.console.print(self.render_snapshot(snapshot))

    def print_chain_verification(self, run_id: str, valid: bool, error: str = "") -> None:
        if valid:
            self.console.print(f"[green]Hash chain for run {run_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Hash chain for run {run_id} is BROKEN![/bold red]")
            if error:
                self.console.print(Text(error, style="red"))

    def render_services(self, records: list[ServiceRecord]) -> Table:
        table = Table(title="Services", header_style="bold cyan")
        table.add_column("Service", style="cyan")
        table.add_column("Revision", style="green")
        table.add_column("Image")
        table.add_column("Region")
        table.add_column("Access")
        table.add_column("Env keys")
        table.add_column("v", justify="right")
        table.add_column("Updated", style="dim")
        for record in records:
            table.add_row(
                record.service_name,
                record.revision_name,
                record.image_ref,
                record.region,
                record.access_policy.value,
                ", ".join(record.env_keys) or "-",
                str(record.version),
                record.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
            )
        return table

    def print_services(self, records: list[ServiceRecord]) -> None:
        if not records:
            self.console.print("[dim]No services deployed.[/dim]")
            return
        self.console.print(self.render_services(records))

    def print_deploy_result(self, result: DeployResult, image_ref: str) -> None:
        lines = [
            "[bold green]Rollout complete![/bold green]",
            "",
            f"[bold]Service:[/bold]  {result.service_name}",
            f"[bold]Revision:[/bold] {result.revision_name}",
            f"[bold]Image:[/bold]    {image_ref}",
            f"[bold]URL:[/bold]      {result.url or '-'}",
            f"[bold]Record:[/bold]   v{result.record_version}",
        ]
        if result.previous_revision:
            lines.append(f"[dim]Previous revision: {result.previous_revision}[/dim]")
        self.console.print(
            Panel(
                "\n".join(lines),
                title="[bold]Deploy[/bold]",
                border_style="green",
                padding=(1, 2),
            )
        )
