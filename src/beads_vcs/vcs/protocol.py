"""
VCS Protocol
============

The contract every backend satisfies. Callers program against
VCSProtocol and WorkspaceProtocol only; GitVCS and JujutsuVCS are never
referenced directly outside the factory and the registry.

Methods that mutate the repository or talk to a remote accept an optional
``cancel`` token (see exec_util.CancelToken).
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from .types import (
    CommitOptions,
    DivergenceInfo,
    FileStatus,
    OperationInfo,
    PullOptions,
    PushOptions,
    RefInfo,
    RemoteInfo,
    VCSBackend,
    VCSCapabilities,
    WorkspaceInfo,
    WorkspaceOptions,
)

if TYPE_CHECKING:
    from .exec_util import CancelToken, CommandResult


@runtime_checkable
class WorkspaceProtocol(Protocol):
    """An isolated working area bound to a single reference."""

    @property
    def path(self) -> Path: ...

    @property
    def ref(self) -> str: ...

    def sync_to_workspace(self, files: list[str]) -> None:
        """Copy files from the main working copy into the workspace."""
        ...

    def sync_from_workspace(self, files: list[str]) -> None:
        """Copy files from the workspace back into the main working copy."""
        ...

    def has_changes(self) -> bool: ...

    def commit(self, message: str, cancel: CancelToken | None = None) -> None: ...

    def push(self, cancel: CancelToken | None = None) -> None: ...

    def pull(self, cancel: CancelToken | None = None) -> None: ...

    def cleanup(self) -> None:
        """Tear the workspace down; afterwards is_healthy() is False."""
        ...

    def check_health(self) -> None:
        """Raise WorkspaceNotFoundError describing why the workspace is unusable."""
        ...

    def is_healthy(self) -> bool: ...


@runtime_checkable
class VCSProtocol(Protocol):
    """Repository operations shared by the git and jj backends."""

    @property
    def capabilities(self) -> VCSCapabilities: ...

    # Identity
    def name(self) -> VCSBackend: ...

    def version(self) -> str: ...

    def repo_root(self) -> Path: ...

    def vcs_dir(self) -> Path: ...

    def is_in_vcs(self) -> bool: ...

    # References
    def current_ref(self) -> str:
        """Return the active branch/bookmark, or "" when there is none."""
        ...

    def ref_exists(self, name: str) -> bool: ...

    def create_ref(self, name: str, base: str = "") -> None: ...

    def delete_ref(self, name: str) -> None: ...

    def move_ref(self, name: str, target: str) -> None: ...

    def list_refs(self) -> list[RefInfo]: ...

    def switch_ref(self, name: str) -> None:
        """Make ``name`` the active reference of the working copy."""
        ...

    def new_change(self, base: str, message: str = "") -> None:
        """Start a new change on top of ``base`` and make it the working state."""
        ...

    def rebase(self, source: str, destination: str) -> None:
        """Rebase the branch of ``source`` onto ``destination``."""
        ...

    def ref_at_operation(self, name: str, operation_id: str) -> str:
        """Return the commit ``name`` pointed at when ``operation_id`` was recorded."""
        ...

    # Status
    def has_changes(self, *paths: str) -> bool: ...

    def has_unmerged_paths(self) -> bool: ...

    def is_in_rebase_or_merge(self) -> bool: ...

    def has_remote(self) -> bool: ...

    def get_remotes(self) -> list[RemoteInfo]: ...

    def status(self, *paths: str) -> list[FileStatus]: ...

    def get_commit_hash(self, ref: str) -> str: ...

    def has_divergence(self, local: str, remote: str) -> DivergenceInfo: ...

    def extract_file_from_ref(self, ref: str, path: str) -> bytes: ...

    # Recording
    def add(self, paths: list[str]) -> None: ...

    def commit(self, opts: CommitOptions, cancel: CancelToken | None = None) -> None: ...

    # Remotes
    def fetch(self, remote: str = "", ref: str = "", cancel: CancelToken | None = None) -> None: ...

    def pull(self, opts: PullOptions, cancel: CancelToken | None = None) -> None: ...

    def push(self, opts: PushOptions, cancel: CancelToken | None = None) -> None: ...

    # Workspaces
    def create_workspace(self, opts: WorkspaceOptions) -> WorkspaceProtocol: ...

    def list_workspaces(self) -> list[WorkspaceInfo]: ...

    # Conflicts
    def has_conflicts(self) -> bool: ...

    def get_conflicted_files(self) -> list[str]: ...

    # Undo / journal
    def can_undo(self) -> bool: ...

    def undo(self, cancel: CancelToken | None = None) -> None: ...

    def get_operation_log(self, limit: int = 10) -> list[OperationInfo]: ...

    # Escape hatch
    def exec(self, *args: str, cancel: CancelToken | None = None) -> CommandResult:
        """Run the backend tool with raw arguments in the repository root."""
        ...
