"""Helpers shared by the CLI command modules."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any, TypeVar

import typer

from beads_vcs.vcs import VCSError

T = TypeVar("T")

REPO_OPTION_HELP = "Path inside the repository (default: current directory)"


def print_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


def run_or_exit(fn: Callable[[], T]) -> T:
    try:
        return fn()
    except (VCSError, ValueError) as exc:
        message = str(exc)
        for note in getattr(exc, "__notes__", ()):
            message = f"{message}\n  during: {note}"
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(1) from exc
