"""
beads-vcs CLI - inspect repositories and drive agent bookmarks.

Usage:
    beads-vcs detect [PATH]
    beads-vcs agent spawn 47
    beads-vcs ops log
"""

from __future__ import annotations

import typer

from beads_vcs import __version__
from beads_vcs.vcs import (
    detect_with_availability,
    get_git_version,
    get_jj_version,
)
from beads_vcs.vcs.features import get_feature_flags

from .commands import agent, ops
from .commands._common import print_json, run_or_exit

app = typer.Typer(help="Unified git / Jujutsu tooling", no_args_is_help=True)
app.add_typer(agent.app, name="agent")
app.add_typer(ops.app, name="ops")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"beads-vcs {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit",
    ),
) -> None:
    """Unified git / Jujutsu tooling."""


@app.command("detect")
def detect_command(
    path: str = typer.Argument(".", help="Path to inspect"),
    as_json: bool = typer.Option(False, "--json", help="Render detection as JSON"),
) -> None:
    """Report which repository contains PATH and which tools are installed."""

    def _run() -> None:
        result = detect_with_availability(path)
        flags = get_feature_flags()
        payload = {
            **result.to_dict(),
            "git_version": get_git_version(),
            "jj_version": get_jj_version(),
            "preferred": flags.preferred.value,
        }
        if as_json:
            print_json(payload)
            return
        typer.echo(f"Repository: {result.repo_root}")
        typer.echo(f"- backend: {result.backend.value}")
        typer.echo(f"- colocated: {'yes' if result.colocated else 'no'}")
        if result.is_worktree:
            typer.echo(f"- worktree of: {result.main_repo_root}")
        typer.echo(f"- git: {payload['git_version'] or 'not installed'}")
        typer.echo(f"- jj: {payload['jj_version'] or 'not installed'}")
        typer.echo(f"- preferred: {flags.preferred.value}")

    run_or_exit(_run)


def main() -> None:
    app()
