"""
Agent Bookmark Lifecycle
========================

Each agent works on its own named reference, ``agent-<id>``. This module
spawns those references, hands work from one agent to another, lands an
agent's work on a target (``main`` by default), archives or deletes agent
references, and tries to recover lost ones from the operation journal.

Everything here goes through VCSProtocol, so the same code drives git
branches and jj bookmarks. Backend errors keep their type; a note naming
the lifecycle step that failed is attached before they propagate.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from beads_vcs.vcs.exceptions import RefExistsError, RefNotFoundError, VCSError
from beads_vcs.vcs.protocol import VCSProtocol
from beads_vcs.vcs.types import OperationInfo

logger = logging.getLogger(__name__)

AGENT_BOOKMARK_PREFIX = "agent-"
MAIN_BOOKMARK = "main"
STAGING_BOOKMARK = "staging"
ARCHIVE_BOOKMARK_PREFIX = "archive/"
RECOVERY_SCAN_LIMIT = 100


class AgentExistsError(RefExistsError):
    """The agent's bookmark already exists."""


class AgentNotFoundError(RefNotFoundError):
    """The agent's bookmark does not exist."""


class BaseMissingError(RefNotFoundError):
    """The base (or target) reference does not exist."""


class NoRecoveryAnchorError(RefNotFoundError):
    """No journal entry mentions the agent."""


@dataclass(frozen=True)
class Agent:
    id: str
    bookmark: str
    based_on: str
    created_at: datetime

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "bookmark": self.bookmark,
            "based_on": self.based_on,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class SpawnOptions:
    agent_id: str
    base_branch: str = MAIN_BOOKMARK
    description: str = ""


@dataclass
class HandoffOptions:
    from_agent: str
    to_agent: str
    reason: str = ""
    archive_old: bool = False


@dataclass
class CompleteOptions:
    agent_id: str
    target: str = MAIN_BOOKMARK
    delete_bookmark: bool = True
    archive_bookmark: bool = False


@dataclass
class RecoverOptions:
    agent_id: str
    recover_to_id: str = ""
    operation_id: str = ""


@dataclass(frozen=True)
class BookmarkStatus:
    agent_id: str
    bookmark: str
    exists: bool
    change_id: str = ""
    has_changes: bool = False
    is_archived: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "agent_id": self.agent_id,
            "bookmark": self.bookmark,
            "exists": self.exists,
            "change_id": self.change_id,
            "has_changes": self.has_changes,
            "is_archived": self.is_archived,
        }


# =============================================================================
# Naming
# =============================================================================


def normalize_agent_id(agent_id: str) -> str:
    """
    Return the bookmark name for an agent id.

    ``"47"`` and ``"agent-47"`` both map to ``"agent-47"``. Archived names
    (``"archive/agent-47"``) are returned unchanged. Applying the function
    twice changes nothing.

    Raises:
        ValueError: The id is empty.
    """
    cleaned = agent_id.strip()
    if not cleaned:
        raise ValueError("agent id must not be empty")
    if cleaned.startswith((AGENT_BOOKMARK_PREFIX, ARCHIVE_BOOKMARK_PREFIX)):
        return cleaned
    return f"{AGENT_BOOKMARK_PREFIX}{cleaned}"


def is_archive_bookmark(name: str) -> bool:
    return name.startswith(ARCHIVE_BOOKMARK_PREFIX)


def archive_bookmark_name(agent_id: str) -> str:
    bookmark = normalize_agent_id(agent_id)
    if is_archive_bookmark(bookmark):
        return bookmark
    return f"{ARCHIVE_BOOKMARK_PREFIX}{bookmark}"


@contextmanager
def _step(description: str) -> Iterator[None]:
    try:
        yield
    except VCSError as exc:
        exc.add_note(description)
        raise


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _require_agent(vcs: VCSProtocol, bookmark: str) -> None:
    if not vcs.ref_exists(bookmark):
        raise AgentNotFoundError(f"agent bookmark {bookmark!r} does not exist")


def _require_revision(vcs: VCSProtocol, ref: str) -> None:
    try:
        vcs.get_commit_hash(ref)
    except RefNotFoundError as exc:
        raise BaseMissingError(f"{ref!r} does not exist") from exc


# =============================================================================
# Lifecycle
# =============================================================================


def spawn(vcs: VCSProtocol, opts: SpawnOptions) -> Agent:
    """
    Start a new agent on top of ``opts.base_branch``.

    Raises:
        AgentExistsError: The agent's bookmark already exists.
        BaseMissingError: The base reference does not exist.
    """
    bookmark = normalize_agent_id(opts.agent_id)
    base = opts.base_branch or MAIN_BOOKMARK

    with _step(f"spawn {bookmark}: validating"):
        if vcs.ref_exists(bookmark):
            raise AgentExistsError(f"agent bookmark {bookmark!r} already exists")
        _require_revision(vcs, base)

    description = opts.description or f"Agent {bookmark} work"
    with _step(f"spawn {bookmark}: creating change on {base}"):
        vcs.new_change(base, description)
    with _step(f"spawn {bookmark}: creating bookmark"):
        vcs.create_ref(bookmark)
    with _step(f"spawn {bookmark}: switching to bookmark"):
        vcs.switch_ref(bookmark)

    logger.info("Spawned %s from %s", bookmark, base)
    return Agent(id=bookmark, bookmark=bookmark, based_on=base, created_at=_now())


def handoff(vcs: VCSProtocol, opts: HandoffOptions) -> Agent:
    """
    Continue ``opts.from_agent``'s work under a new agent.

    Raises:
        AgentNotFoundError: The source agent does not exist.
        AgentExistsError: The target agent already exists.
    """
    source = normalize_agent_id(opts.from_agent)
    target = normalize_agent_id(opts.to_agent)

    with _step(f"handoff {source} -> {target}: validating"):
        _require_agent(vcs, source)
        if vcs.ref_exists(target):
            raise AgentExistsError(f"agent bookmark {target!r} already exists")

    message = f"Handoff from {source}"
    if opts.reason:
        message = f"{message}: {opts.reason}"
    with _step(f"handoff {source} -> {target}: creating change"):
        vcs.new_change(source, message)
    with _step(f"handoff {source} -> {target}: creating bookmark"):
        vcs.create_ref(target)
    with _step(f"handoff {source} -> {target}: switching to bookmark"):
        vcs.switch_ref(target)

    if opts.archive_old:
        with _step(f"handoff {source} -> {target}: archiving {source}"):
            archive_agent(vcs, source)

    logger.info("Handed off %s to %s", source, target)
    return Agent(id=target, bookmark=target, based_on=source, created_at=_now())


def complete(vcs: VCSProtocol, opts: CompleteOptions) -> None:
    """
    Land an agent's work on ``opts.target`` and clean up its bookmark.

    The agent is rebased onto the target, the target moves to the agent's
    head, then the agent bookmark is archived, deleted or left in place.
    """
    bookmark = normalize_agent_id(opts.agent_id)
    target = opts.target or MAIN_BOOKMARK

    with _step(f"complete {bookmark}: validating"):
        _require_agent(vcs, bookmark)
        _require_revision(vcs, target)
    with _step(f"complete {bookmark}: rebasing onto {target}"):
        vcs.rebase(bookmark, target)
    with _step(f"complete {bookmark}: moving {target}"):
        vcs.move_ref(target, bookmark)

    if opts.archive_bookmark:
        with _step(f"complete {bookmark}: archiving"):
            archive_agent(vcs, bookmark)
    elif opts.delete_bookmark:
        with _step(f"complete {bookmark}: deleting bookmark"):
            vcs.delete_ref(bookmark)

    logger.info("Completed %s into %s", bookmark, target)


def archive_agent(vcs: VCSProtocol, agent_id: str) -> str:
    """
    Rename ``agent-<id>`` to ``archive/agent-<id>``.

    If the original cannot be deleted, the archive copy is removed again.

    Returns:
        The archive bookmark name.
    """
    bookmark = normalize_agent_id(agent_id)
    archived = archive_bookmark_name(bookmark)

    _require_agent(vcs, bookmark)
    vcs.create_ref(archived, bookmark)
    try:
        vcs.delete_ref(bookmark)
    except VCSError as exc:
        try:
            vcs.delete_ref(archived)
        except VCSError as rollback_exc:
            logger.warning("Could not roll back archive %s: %s", archived, rollback_exc)
        exc.add_note(f"archive {bookmark}: deleting original bookmark")
        raise
    return archived


def delete_agent(vcs: VCSProtocol, agent_id: str) -> None:
    bookmark = normalize_agent_id(agent_id)
    with _step(f"delete {bookmark}"):
        _require_agent(vcs, bookmark)
        vcs.delete_ref(bookmark)


def list_agents(vcs: VCSProtocol) -> list[BookmarkStatus]:
    """Return every local agent bookmark, archived ones included and flagged."""
    archived_prefix = f"{ARCHIVE_BOOKMARK_PREFIX}{AGENT_BOOKMARK_PREFIX}"
    return [
        BookmarkStatus(
            agent_id=ref.name,
            bookmark=ref.name,
            exists=True,
            change_id=ref.hash,
            is_archived=is_archive_bookmark(ref.name),
        )
        for ref in vcs.list_refs()
        if not ref.is_remote and ref.name.startswith((AGENT_BOOKMARK_PREFIX, archived_prefix))
    ]


def status(vcs: VCSProtocol, agent_id: str) -> BookmarkStatus:
    """
    Describe an agent's bookmark.

    ``has_changes`` is only reported when the agent's bookmark is the
    active reference, since only then is the working copy the agent's.
    """
    bookmark = normalize_agent_id(agent_id)
    is_archived = is_archive_bookmark(bookmark) or vcs.ref_exists(archive_bookmark_name(bookmark))
    if not vcs.ref_exists(bookmark):
        return BookmarkStatus(bookmark, bookmark, exists=False, is_archived=is_archived)

    has_changes = vcs.current_ref() == bookmark and vcs.has_changes()
    return BookmarkStatus(
        agent_id=bookmark,
        bookmark=bookmark,
        exists=True,
        change_id=vcs.get_commit_hash(bookmark),
        has_changes=has_changes,
        is_archived=is_archived,
    )


# =============================================================================
# Recovery
# =============================================================================


def find_recovery_anchor(
    vcs: VCSProtocol,
    agent_id: str,
    operation_id: str = "",
) -> OperationInfo:
    """
    Find the newest journal entry that mentions the agent.

    An explicit ``operation_id`` (full id or prefix) is used instead of
    searching when given.

    Raises:
        NoRecoveryAnchorError: Nothing in the scanned window matches.
    """
    bookmark = normalize_agent_id(agent_id)
    operations = vcs.get_operation_log(RECOVERY_SCAN_LIMIT)

    if operation_id:
        for operation in operations:
            if operation.id.startswith(operation_id):
                return operation
        raise NoRecoveryAnchorError(f"operation {operation_id!r} not found in the journal")

    for operation in operations:
        if operation.mentions(bookmark):
            return operation
    raise NoRecoveryAnchorError(
        f"no operation in the last {RECOVERY_SCAN_LIMIT} mentions {bookmark!r}"
    )


def recover(vcs: VCSProtocol, opts: RecoverOptions) -> Agent:
    """
    Recreate a lost agent bookmark from the operation journal.

    The bookmark is restored under ``opts.recover_to_id`` (default
    ``agent-<id>-recovered``). Backends that cannot resolve a reference at
    a journal entry raise NotSupportedError.
    """
    bookmark = normalize_agent_id(opts.agent_id)
    recover_to = (
        normalize_agent_id(opts.recover_to_id) if opts.recover_to_id else f"{bookmark}-recovered"
    )

    with _step(f"recover {bookmark}: validating"):
        if vcs.ref_exists(recover_to):
            raise AgentExistsError(f"agent bookmark {recover_to!r} already exists")
    with _step(f"recover {bookmark}: scanning operation log"):
        anchor = find_recovery_anchor(vcs, bookmark, opts.operation_id)
    with _step(f"recover {bookmark}: resolving at operation {anchor.id}"):
        commit = vcs.ref_at_operation(bookmark, anchor.id)
    with _step(f"recover {bookmark}: creating {recover_to}"):
        vcs.create_ref(recover_to, commit)

    logger.info("Recovered %s as %s at %s", bookmark, recover_to, commit)
    return Agent(id=recover_to, bookmark=recover_to, based_on=commit, created_at=_now())
