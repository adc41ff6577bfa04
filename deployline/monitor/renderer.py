"""Rich terminal rendering for pipeline executions.

Color scheme
------------
- green   : succeeded
- red     : failed
- yellow  : running
- dim     : pending
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from deployline.core.run_ledger import ExecutionSummary
from deployline.models.events import EventKind, TransitionEvent
from deployline.models.results import PipelineResult
from deployline.models.stages import StageStatus

_STATUS_STYLES: dict[StageStatus, str] = {
    StageStatus.SUCCEEDED: "bold green",
    StageStatus.FAILED: "bold red",
    StageStatus.RUNNING: "bold yellow",
    StageStatus.PENDING: "dim",
}

_STATUS_LABELS: dict[StageStatus, str] = {
    StageStatus.SUCCEEDED: "[green]SUCCEEDED[/green]",
    StageStatus.FAILED: "[bold red]FAILED[/bold red]",
    StageStatus.RUNNING: "[yellow]RUNNING[/yellow]",
    StageStatus.PENDING: "[dim]PENDING[/dim]",
}


def _short(address: str) -> str:
    return address.removeprefix("sha256:")[:12]


class PipelineRenderer:
    """Renders results, transitions and history as Rich output.

    Parameters
    ----------
    console:
        Rich Console instance. A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Single execution
    # ------------------------------------------------------------------

    def render_result(self, result: PipelineResult) -> Panel:
        stages = Table(show_header=True, header_style="bold cyan", expand=True)
        stages.add_column("#", style="dim", width=3, justify="right")
        stages.add_column("Stage", min_width=12)
        stages.add_column("Action", min_width=12)
        stages.add_column("Status", justify="center", min_width=12)
        stages.add_column("Outputs")

        for i, stage in enumerate(result.stages):
            style = _STATUS_STYLES.get(stage.status, "")
            actions = stage.actions or []
            action_names = ", ".join(a.name for a in actions) or "[dim]-[/dim]"
            outputs = ", ".join(_short(o) for a in actions for o in a.outputs) or "[dim]-[/dim]"
            stages.add_row(
                str(i),
                f"[{style}]{stage.name}[/{style}]",
                action_names,
                _STATUS_LABELS.get(stage.status, stage.status.value),
                outputs,
            )

        parts: list[object] = [stages]

        if result.phases:
            phases = Table(show_header=True, header_style="bold cyan", expand=True)
            phases.add_column("Phase", min_width=12)
            phases.add_column("Status", justify="center")
            phases.add_column("Commands", justify="right")
            phases.add_column("Cache", justify="center")
            for phase in result.phases:
                phases.add_row(
                    phase.phase.value,
                    _STATUS_LABELS.get(phase.status, phase.status.value),
                    str(len(phase.commands)),
                    "[green]hit[/green]" if phase.cache_hit else "[dim]miss[/dim]",
                )
            parts.extend([Text(""), phases])

        summary = [
            f"[bold]Execution:[/bold] {result.execution_id}",
            f"[bold]Revision:[/bold] {result.trigger.revision}",
            f"[bold]Status:[/bold] {_STATUS_LABELS.get(result.status, result.status.value)}",
        ]
        if result.deploy is not None:
            deployed = "[green]yes[/green]" if result.deploy.succeeded else "[bold red]no[/bold red]"
            summary.append(f"[bold]Deployed:[/bold] {deployed} -> {result.deploy.function_identity}")
        parts.extend([Text(""), Text.from_markup("  |  ".join(summary))])

        if result.error is not None:
            err = result.error
            lines = [f"[bold red]{err.kind.value}[/bold red]: {escape(err.message)}"]
            if err.phase:
                lines.append(f"phase={err.phase}")
            if err.command:
                lines.append(f"command={escape(repr(err.command))}")
            if err.exit_code is not None:
                lines.append(f"exit_code={err.exit_code}")
            parts.extend([Text(""), Text.from_markup("  ".join(lines))])

        for warning in result.cache_warnings:
            parts.append(Text.from_markup(f"[yellow]cache:[/yellow] {escape(warning)}"))

        return Panel(
            Group(*parts),
            title="[bold]Deployline Pipeline[/bold]",
            subtitle=f"Finished: {result.finished_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style="green" if result.succeeded else "red",
            padding=(1, 2),
        )

    def print_result(self, result: PipelineResult) -> None:
        self.console.print(self.render_result(result))

    # ------------------------------------------------------------------
    # Transitions and history
    # ------------------------------------------------------------------

    def render_transitions(self, events: list[TransitionEvent]) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Time", style="dim")
        table.add_column("Kind")
        table.add_column("Stage")
        table.add_column("Action")
        table.add_column("Status", justify="center")
        for event in events:
            table.add_row(
                event.timestamp_utc.strftime("%H:%M:%S.%f")[:-3],
                event.kind.value,
                event.stage or "[dim]-[/dim]",
                event.action or "[dim]-[/dim]",
                _STATUS_LABELS.get(event.status, event.status.value),
            )
        return table

    def render_history(self, executions: list[ExecutionSummary]) -> Table:
        table = Table(title="Executions", show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Execution", style="cyan")
        table.add_column("Revision")
        table.add_column("Status", justify="center")
        table.add_column("Error")
        table.add_column("Started", style="dim")
        for ex in executions:
            table.add_row(
                ex.execution_id,
                ex.revision[:12],
                _STATUS_LABELS.get(ex.status, ex.status.value),
                ex.error_kind or "[dim]-[/dim]",
                ex.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            )
        return table

    def print_transition(self, event: TransitionEvent) -> None:
        """``EventBus`` handler: one line per stage/execution transition."""
        if event.kind == EventKind.ACTION_TRANSITION:
            return
        label = _STATUS_LABELS.get(event.status, event.status.value)
        where = event.stage or "pipeline"
        self.console.print(f"[dim]{event.timestamp_utc.strftime('%H:%M:%S')}[/dim] {where}: {label}")
