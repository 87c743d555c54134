"""Agent bookmark commands.

Commands:
    agent spawn     -- Start an agent bookmark on a base reference
    agent handoff   -- Continue one agent's work under another
    agent complete  -- Land an agent's work on its target
    agent archive   -- Move an agent bookmark under archive/
    agent delete    -- Delete an agent bookmark
    agent list      -- List agent bookmarks
    agent status    -- Show one agent's bookmark status
    agent recover   -- Recreate a lost agent bookmark from the op log
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from beads_vcs.agent import bookmarks
from beads_vcs.agent.bookmarks import (
    MAIN_BOOKMARK,
    CompleteOptions,
    HandoffOptions,
    RecoverOptions,
    SpawnOptions,
)
from beads_vcs.vcs import get_vcs

from ._common import REPO_OPTION_HELP, print_json, run_or_exit

app = typer.Typer(help="Agent bookmark lifecycle commands")
console = Console(width=120)


@app.command("spawn")
def spawn_command(
    agent_id: str = typer.Argument(..., help="Agent id, with or without the agent- prefix"),
    base: str = typer.Option(MAIN_BOOKMARK, "--base", help="Reference to start from"),
    message: str = typer.Option("", "--message", "-m", help="Description for the agent's first change"),
    repo: str = typer.Option(".", "--repo", help=REPO_OPTION_HELP),
    as_json: bool = typer.Option(False, "--json", help="Render result as JSON"),
) -> None:
    """Start a new agent on top of a base reference."""

    def _run() -> None:
        agent = bookmarks.spawn(
            get_vcs(repo),
            SpawnOptions(agent_id=agent_id, base_branch=base, description=message),
        )
        if as_json:
            print_json(agent.to_dict())
            return
        typer.echo(f"Spawned {agent.bookmark} from {agent.based_on}")

    run_or_exit(_run)


@app.command("handoff")
def handoff_command(
    from_agent: str = typer.Argument(..., help="Agent handing off"),
    to_agent: str = typer.Argument(..., help="Agent taking over"),
    reason: str = typer.Option("", "--reason", help="Why the work is changing hands"),
    archive_old: bool = typer.Option(False, "--archive-old", help="Archive the old agent bookmark"),
    repo: str = typer.Option(".", "--repo", help=REPO_OPTION_HELP),
) -> None:
    """Continue one agent's work under a new agent."""

    def _run() -> None:
        agent = bookmarks.handoff(
            get_vcs(repo),
            HandoffOptions(
                from_agent=from_agent,
                to_agent=to_agent,
                reason=reason,
                archive_old=archive_old,
            ),
        )
        typer.echo(f"Handed off {agent.based_on} to {agent.bookmark}")

    run_or_exit(_run)


@app.command("complete")
def complete_command(
    agent_id: str = typer.Argument(..., help="Agent to complete"),
    target: str = typer.Option(MAIN_BOOKMARK, "--target", help="Reference receiving the work"),
    keep: bool = typer.Option(False, "--keep", help="Leave the agent bookmark in place"),
    archive: bool = typer.Option(False, "--archive", help="Archive instead of deleting the bookmark"),
    repo: str = typer.Option(".", "--repo", help=REPO_OPTION_HELP),
) -> None:
    """Rebase an agent onto its target and move the target to it."""

    def _run() -> None:
        if keep and archive:
            raise ValueError("--keep and --archive are mutually exclusive")
        opts = CompleteOptions(
            agent_id=agent_id,
            target=target,
            delete_bookmark=not keep,
            archive_bookmark=archive,
        )
        bookmarks.complete(get_vcs(repo), opts)
        typer.echo(f"Completed {bookmarks.normalize_agent_id(agent_id)} into {target}")

    run_or_exit(_run)


@app.command("archive")
def archive_command(
    agent_id: str = typer.Argument(..., help="Agent to archive"),
    repo: str = typer.Option(".", "--repo", help=REPO_OPTION_HELP),
) -> None:
    """Move an agent bookmark under archive/."""

    def _run() -> None:
        archived = bookmarks.archive_agent(get_vcs(repo), agent_id)
        typer.echo(f"Archived as {archived}")

    run_or_exit(_run)


@app.command("delete")
def delete_command(
    agent_id: str = typer.Argument(..., help="Agent to delete"),
    repo: str = typer.Option(".", "--repo", help=REPO_OPTION_HELP),
) -> None:
    """Delete an agent bookmark."""

    def _run() -> None:
        bookmarks.delete_agent(get_vcs(repo), agent_id)
        typer.echo(f"Deleted {bookmarks.normalize_agent_id(agent_id)}")

    run_or_exit(_run)


@app.command("list")
def list_command(
    repo: str = typer.Option(".", "--repo", help=REPO_OPTION_HELP),
    as_json: bool = typer.Option(False, "--json", help="Render agent list as JSON"),
) -> None:
    """List agent bookmarks."""

    def _run() -> None:
        agents = bookmarks.list_agents(get_vcs(repo))
        if as_json:
            print_json(
                [
                    {"bookmark": agent.bookmark, "hash": agent.change_id, "archived": agent.is_archived}
                    for agent in agents
                ]
            )
            return
        if not agents:
            console.print("[dim]No agent bookmarks found.[/dim]")
            return

        table = Table(title="Agent Bookmarks")
        table.add_column("Bookmark", style="bold")
        table.add_column("Commit", style="cyan")
        table.add_column("Archived")
        for agent in agents:
            table.add_row(agent.bookmark, agent.change_id[:12], "yes" if agent.is_archived else "no")
        console.print(table)

    run_or_exit(_run)


@app.command("status")
def status_command(
    agent_id: str = typer.Argument(..., help="Agent to inspect"),
    repo: str = typer.Option(".", "--repo", help=REPO_OPTION_HELP),
    as_json: bool = typer.Option(False, "--json", help="Render status as JSON"),
) -> None:
    """Show an agent's bookmark status."""

    def _run() -> None:
        result = bookmarks.status(get_vcs(repo), agent_id)
        if as_json:
            print_json(result.to_dict())
            return
        typer.echo(f"{result.bookmark}:")
        typer.echo(f"- exists: {'yes' if result.exists else 'no'}")
        if result.exists:
            typer.echo(f"- change: {result.change_id}")
            typer.echo(f"- uncommitted changes: {'yes' if result.has_changes else 'no'}")
        typer.echo(f"- archived: {'yes' if result.is_archived else 'no'}")

    run_or_exit(_run)


@app.command("recover")
def recover_command(
    agent_id: str = typer.Argument(..., help="Agent whose bookmark was lost"),
    recover_to: str = typer.Option("", "--to", help="Name for the recovered agent"),
    operation_id: str = typer.Option("", "--op", help="Operation id to recover from"),
    repo: str = typer.Option(".", "--repo", help=REPO_OPTION_HELP),
) -> None:
    """Recreate a lost agent bookmark from the operation log."""

    def _run() -> None:
        agent = bookmarks.recover(
            get_vcs(repo),
            RecoverOptions(agent_id=agent_id, recover_to_id=recover_to, operation_id=operation_id),
        )
        typer.echo(f"Recovered as {agent.bookmark} at {agent.based_on}")

    run_or_exit(_run)
