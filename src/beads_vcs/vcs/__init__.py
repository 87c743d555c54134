"""
VCS Abstraction Package
=======================

This package provides a unified interface for Version Control System operations,
supporting both Git and Jujutsu (jj) backends.

Usage:
    from beads_vcs.vcs import get_vcs, VCSBackend

    vcs = get_vcs(repo_path)
    if vcs.name() == VCSBackend.JUJUTSU:
        ...

Importing this package registers the built-in backends with the registry.
"""

from __future__ import annotations

# Enums
from .types import (
    StatusCode,
    VCSBackend,
)

# Dataclasses
from .types import (
    CommitOptions,
    DivergenceInfo,
    FileStatus,
    OperationInfo,
    PullOptions,
    PushOptions,
    RefInfo,
    RemoteInfo,
    VCSCapabilities,
    WorkspaceInfo,
    WorkspaceOptions,
)

# Constants
from .types import (
    DEFAULT_SYNC_BRANCH,
    DEFAULT_TIMEOUT,
    GIT_CAPABILITIES,
    JJ_CAPABILITIES,
    SIGNIFICANT_DIVERGENCE_THRESHOLD,
)

# Protocol
from .protocol import VCSProtocol, WorkspaceProtocol

# Exceptions
from .exceptions import (
    AbortedError,
    CommandError,
    DetachedError,
    DirtyWorkspaceError,
    MergeRequiredError,
    NoRemoteError,
    NotInVCSError,
    NotSupportedError,
    PushRejectedError,
    RefExistsError,
    RefNotFoundError,
    RegistryError,
    VCSCapabilityError,
    VCSConflictError,
    VCSError,
    VCSNotFoundError,
    VCSTimeoutError,
    WorkspaceExistsError,
    WorkspaceNotFoundError,
    is_fatal,
    is_retryable,
    is_user_action_required,
)

# Detection
from .detection import (
    DetectionResult,
    detect,
    detect_available_backends,
    detect_with_availability,
    get_git_version,
    get_jj_version,
    is_git_available,
    is_jj_available,
    must_detect,
    preferred_vcs,
)

# Factory
from .factory import (
    VCSFactory,
    disable_cache,
    enable_cache,
    get_git,
    get_jj,
    get_vcs,
    get_vcs_with_preference,
    reset_cache,
)

# Backends (import registers them)
from .git import GitVCS, GitWorkspace
from .jujutsu import JujutsuVCS, JujutsuWorkspace

__all__ = [
    # Enums
    "VCSBackend",
    "StatusCode",
    # Dataclasses
    "CommitOptions",
    "DivergenceInfo",
    "FileStatus",
    "OperationInfo",
    "PullOptions",
    "PushOptions",
    "RefInfo",
    "RemoteInfo",
    "VCSCapabilities",
    "WorkspaceInfo",
    "WorkspaceOptions",
    # Constants
    "DEFAULT_SYNC_BRANCH",
    "DEFAULT_TIMEOUT",
    "GIT_CAPABILITIES",
    "JJ_CAPABILITIES",
    "SIGNIFICANT_DIVERGENCE_THRESHOLD",
    # Protocol
    "VCSProtocol",
    "WorkspaceProtocol",
    # Exceptions
    "VCSError",
    "AbortedError",
    "CommandError",
    "DetachedError",
    "DirtyWorkspaceError",
    "MergeRequiredError",
    "NoRemoteError",
    "NotInVCSError",
    "NotSupportedError",
    "PushRejectedError",
    "RefExistsError",
    "RefNotFoundError",
    "RegistryError",
    "VCSCapabilityError",
    "VCSConflictError",
    "VCSNotFoundError",
    "VCSTimeoutError",
    "WorkspaceExistsError",
    "WorkspaceNotFoundError",
    "is_fatal",
    "is_retryable",
    "is_user_action_required",
    # Detection
    "DetectionResult",
    "detect",
    "detect_available_backends",
    "detect_with_availability",
    "get_git_version",
    "get_jj_version",
    "is_git_available",
    "is_jj_available",
    "must_detect",
    "preferred_vcs",
    # Factory
    "VCSFactory",
    "disable_cache",
    "enable_cache",
    "get_git",
    "get_jj",
    "get_vcs",
    "get_vcs_with_preference",
    "reset_cache",
    # Backends
    "GitVCS",
    "GitWorkspace",
    "JujutsuVCS",
    "JujutsuWorkspace",
]
