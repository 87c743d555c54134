"""Operation history commands (git reflog or jj op log)."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from beads_vcs.vcs import VCSBackend, get_vcs

from ._common import REPO_OPTION_HELP, print_json, run_or_exit

app = typer.Typer(help="Operation history and undo")
console = Console(width=120)


@app.command("log")
def log_command(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries to show"),
    repo: str = typer.Option(".", "--repo", help=REPO_OPTION_HELP),
    as_json: bool = typer.Option(False, "--json", help="Render history as JSON"),
) -> None:
    """Show recent operations."""

    def _run() -> None:
        vcs = get_vcs(repo)
        operations = vcs.get_operation_log(limit)
        if as_json:
            print_json(
                [
                    {
                        "id": op.id,
                        "description": op.description,
                        "timestamp": op.timestamp.isoformat() if op.timestamp else None,
                        "user": op.user,
                        "args": list(op.args),
                    }
                    for op in operations
                ]
            )
            return
        if not operations:
            console.print("[dim]No operations found.[/dim]")
            return

        source = "jj op log" if vcs.name() == VCSBackend.JUJUTSU else "git reflog"
        table = Table(title=f"Operation History ({source})")
        table.add_column("ID", style="cyan")
        table.add_column("When")
        table.add_column("Description")
        for op in operations:
            when = op.timestamp.strftime("%Y-%m-%d %H:%M") if op.timestamp else ""
            table.add_row(op.id[:12], when, op.description)
        console.print(table)

    run_or_exit(_run)


@app.command("undo")
def undo_command(
    repo: str = typer.Option(".", "--repo", help=REPO_OPTION_HELP),
) -> None:
    """Undo the most recent operation."""

    def _run() -> None:
        vcs = get_vcs(repo)
        if not vcs.can_undo():
            typer.secho("Nothing to undo.", fg=typer.colors.YELLOW, err=True)
            raise typer.Exit(1)
        vcs.undo()
        typer.echo("Undid the last operation")

    run_or_exit(_run)
