"""Agent bookmark lifecycle on top of the VCS abstraction."""

from __future__ import annotations

from .bookmarks import (
    AGENT_BOOKMARK_PREFIX,
    ARCHIVE_BOOKMARK_PREFIX,
    MAIN_BOOKMARK,
    RECOVERY_SCAN_LIMIT,
    STAGING_BOOKMARK,
    Agent,
    AgentExistsError,
    AgentNotFoundError,
    BaseMissingError,
    BookmarkStatus,
    CompleteOptions,
    HandoffOptions,
    NoRecoveryAnchorError,
    RecoverOptions,
    SpawnOptions,
    archive_agent,
    archive_bookmark_name,
    complete,
    delete_agent,
    find_recovery_anchor,
    handoff,
    is_archive_bookmark,
    list_agents,
    normalize_agent_id,
    recover,
    spawn,
    status,
)

__all__ = [
    "AGENT_BOOKMARK_PREFIX",
    "ARCHIVE_BOOKMARK_PREFIX",
    "MAIN_BOOKMARK",
    "RECOVERY_SCAN_LIMIT",
    "STAGING_BOOKMARK",
    "Agent",
    "AgentExistsError",
    "AgentNotFoundError",
    "BaseMissingError",
    "BookmarkStatus",
    "CompleteOptions",
    "HandoffOptions",
    "NoRecoveryAnchorError",
    "RecoverOptions",
    "SpawnOptions",
    "archive_agent",
    "archive_bookmark_name",
    "complete",
    "delete_agent",
    "find_recovery_anchor",
    "handoff",
    "is_archive_bookmark",
    "list_agents",
    "normalize_agent_id",
    "recover",
    "spawn",
    "status",
]
