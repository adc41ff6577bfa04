"""``deployline history`` / ``deployline show`` — read the Run Ledger.

Both commands are read-only: they never touch the artifact store, the
cache or any function.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from deployline.config import config
from deployline.core.run_ledger import RunLedger
from deployline.monitor.renderer import PipelineRenderer

console = Console()


def _open_ledger(ledger_db: Path) -> RunLedger:
    if not ledger_db.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {ledger_db}")
        console.print("[dim]Run a pipeline first with: deployline run FUNCTION[/dim]")
        raise typer.Exit(code=1)
    return RunLedger(ledger_db)


def history_cmd(
    limit: int = typer.Option(20, "--limit", "-n", help="How many executions to list."),
    ledger_db: Path = typer.Option(
        config.ledger_path,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
) -> None:
    """List recorded executions, most recent first."""
    ledger = _open_ledger(ledger_db)
    executions = ledger.list_executions(limit=limit)
    if not executions:
        console.print("[dim]No executions recorded.[/dim]")
        return
    console.print(PipelineRenderer(console=console).render_history(executions))


def show_cmd(
    execution_id: str = typer.Argument(..., help="The execution to show."),
    ledger_db: Path = typer.Option(
        config.ledger_path,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database.",
    ),
) -> None:
    """Show the final result and every transition of one execution."""
    ledger = _open_ledger(ledger_db)
    summary = ledger.get_execution(execution_id)
    if summary is None:
        console.print(f"[bold red]Execution not found:[/bold red] {execution_id}")
        recent = ledger.list_executions(limit=10)
        if recent:
            console.print("\n[bold]Recent executions:[/bold]")
            for ex in recent:
                console.print(f"  [cyan]{ex.execution_id}[/cyan]")
        raise typer.Exit(code=1)

    renderer = PipelineRenderer(console=console)
    result = ledger.get_result(execution_id)
    if result is not None:
        renderer.print_result(result)
    else:
        console.print(f"[yellow]{execution_id} is still running.[/yellow]")
    console.print(renderer.render_transitions(ledger.get_transitions(execution_id)))
