"""Main Typer application — imports and registers all CLI commands.

Entry point: ``deployline`` (configured via pyproject.toml project.scripts).
"""

from __future__ import annotations

import typer

from deployline.cli.commands.grant import grant_cmd, revoke_cmd
from deployline.cli.commands.history import history_cmd, show_cmd
from deployline.cli.commands.run import run_cmd

app = typer.Typer(
    name="deployline",
    help="Deployline: commit-triggered build and single-function deploy pipeline.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="run", help="Run the pipeline once for a revision.")(run_cmd)
app.command(name="history", help="List recorded executions.")(history_cmd)
app.command(name="show", help="Show one execution and its transitions.")(show_cmd)
app.command(name="grant", help="Issue a deploy credential for one function.")(grant_cmd)
app.command(name="revoke", help="Revoke a deploy credential.")(revoke_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
