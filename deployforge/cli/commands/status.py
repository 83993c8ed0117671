"""``deployforge status RUN_ID`` — stage table and hash chain check for a run.

A pure read over the run ledger; exits 1 when the run is unknown or its
hash chain is broken.
"""

from __future__ import annotations

from pathlib import Path

import typer

from deployforge.cli.common import console, load_settings
from deployforge.core.run_ledger import RunLedger
from deployforge.monitor.projection import RunProjection
from deployforge.monitor.renderer import MonitorRenderer


def status_cmd(
    run_id: str = typer.Argument(None, help="The run ID to show; lists runs when omitted."),
    ledger_db: Path = typer.Option(None, "--ledger", "-l", help="Path to the ledger SQLite database."),
) -> None:
    """Show the stage states of a run and verify its hash chain."""
    prod = load_settings()
    db_path = ledger_db or prod.ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        console.print("[dim]Start a run first with: deployforge run[/dim]")
        raise typer.Exit(code=1)

    ledger = RunLedger(db_path)
    all_runs = ledger.get_all_run_ids()

    if run_id is None or not ledger.get_run_entries(run_id):
        if run_id is not None:
            console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        if all_runs:
            console.print("\n[bold]Available runs:[/bold]")
            for rid in all_runs[:10]:
                console.print(f"  [cyan]{rid}[/cyan]")
            if len(all_runs) > 10:
                console.print(f"  [dim]... and {len(all_runs) - 10} more[/dim]")
        raise typer.Exit(code=0 if run_id is None else 1)

    renderer = MonitorRenderer(console=console)
    snapshot = RunProjection(ledger).snapshot(run_id)
    renderer.print_snapshot(snapshot)
    renderer.print_chain_verification(run_id, snapshot.chain_valid, snapshot.chain_error)
    if not snapshot.chain_valid:
        raise typer.Exit(code=1)
