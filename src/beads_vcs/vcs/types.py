"""
VCS Types
=========

Enums, dataclasses and constants shared by every VCS backend.

Values here are plain data: backends build them from tool output and
callers (the agent lifecycle, the CLI) consume them without knowing which
tool produced them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

# =============================================================================
# Constants
# =============================================================================

SIGNIFICANT_DIVERGENCE_THRESHOLD = 5
"""Divergence on either side above this many commits is significant."""

DEFAULT_SYNC_BRANCH = "beads-sync"
"""Reference used for the sync workspace when none is given."""

DEFAULT_TIMEOUT = 30.0
"""Default subprocess timeout, in seconds."""

WORKTREES_DIR = "beads-worktrees"
"""Directory under the git meta directory holding managed worktrees."""


# =============================================================================
# Enums
# =============================================================================


class VCSBackend(str, Enum):
    """Supported VCS backends."""

    GIT = "git"
    JUJUTSU = "jj"
    COLOCATED = "colocate"


class StatusCode(str, Enum):
    """Per-file status, using git porcelain letters."""

    UNMODIFIED = " "
    MODIFIED = "M"
    ADDED = "A"
    DELETED = "D"
    RENAMED = "R"
    COPIED = "C"
    UNTRACKED = "?"
    IGNORED = "!"
    CONFLICT = "U"

    @classmethod
    def from_letter(cls, letter: str) -> StatusCode:
        """Map a single status letter to a code, treating unknowns as modified."""
        try:
            return cls(letter)
        except ValueError:
            return cls.MODIFIED


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class VCSCapabilities:
    """Describes what a VCS backend can do."""

    supports_staging_area: bool
    supports_conflict_storage: bool
    supports_operation_log: bool
    supports_change_ids: bool
    supports_workspaces: bool
    supports_colocated: bool


GIT_CAPABILITIES = VCSCapabilities(
    supports_staging_area=True,
    supports_conflict_storage=False,
    supports_operation_log=False,
    supports_change_ids=False,
    supports_workspaces=True,
    supports_colocated=False,
)

JJ_CAPABILITIES = VCSCapabilities(
    supports_staging_area=False,
    supports_conflict_storage=True,
    supports_operation_log=True,
    supports_change_ids=True,
    supports_workspaces=True,
    supports_colocated=True,
)


@dataclass(frozen=True)
class RefInfo:
    """A named reference (branch or bookmark)."""

    name: str
    hash: str
    remote: str = ""
    is_remote: bool = False


@dataclass(frozen=True)
class RemoteInfo:
    """A configured remote."""

    name: str
    url: str


@dataclass(frozen=True)
class FileStatus:
    """Status of a single path.

    ``status`` is the working-tree state and ``staged`` the index state.
    Backends without a staging area always report ``staged`` as unmodified.
    """

    path: str
    status: StatusCode
    staged: StatusCode = StatusCode.UNMODIFIED


@dataclass
class CommitOptions:
    """Options for recording a commit."""

    message: str
    paths: list[str] = field(default_factory=list)
    author: str = ""
    no_gpg_sign: bool = False
    no_verify: bool = False
    allow_empty: bool = False
    create_new: bool = False


@dataclass
class PullOptions:
    """Options for pulling from a remote."""

    remote: str = ""
    ref: str = ""
    rebase: bool = False
    ff_only: bool = False


@dataclass
class PushOptions:
    """Options for pushing to a remote."""

    remote: str = ""
    ref: str = ""
    set_upstream: bool = False
    force: bool = False


@dataclass(frozen=True)
class DivergenceInfo:
    """How far a local reference and its remote counterpart have drifted."""

    local_ahead: int
    remote_ahead: int

    @property
    def is_diverged(self) -> bool:
        return self.local_ahead > 0 and self.remote_ahead > 0

    @property
    def is_significant(self) -> bool:
        return (
            self.local_ahead > SIGNIFICANT_DIVERGENCE_THRESHOLD
            or self.remote_ahead > SIGNIFICANT_DIVERGENCE_THRESHOLD
        )


@dataclass
class WorkspaceOptions:
    """Options for creating an isolated workspace."""

    name: str
    ref: str = DEFAULT_SYNC_BRANCH
    path: Path | None = None
    sparse: bool = False
    sparse_paths: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class WorkspaceInfo:
    """A workspace as listed by a backend."""

    name: str
    path: Path
    ref: str
    is_valid: bool


@dataclass(frozen=True)
class OperationInfo:
    """Entry in a backend's operation journal (reflog or jj op log)."""

    id: str
    description: str
    timestamp: datetime | None = None
    user: str = ""
    args: tuple[str, ...] = ()

    def mentions(self, needle: str) -> bool:
        """Return True if ``needle`` appears in the description or args."""
        if needle in self.description:
            return True
        return any(needle in arg for arg in self.args)
