"""
Jujutsu VCS Implementation
==========================

The change backend. Named references are jj bookmarks; the working copy
is always a commit (``@``), so there is no staging area and committing
means describing the current change.

jj prints progress and hints on stderr even when it succeeds, so error
messages are distilled with _extract_jj_error before they are classified.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from . import registry
from .detection import jj_executable, parse_jj_version
from .exceptions import (
    CommandError,
    NoRemoteError,
    NotInVCSError,
    NotSupportedError,
    PushRejectedError,
    RefExistsError,
    RefNotFoundError,
    VCSConflictError,
    VCSError,
    WorkspaceExistsError,
    WorkspaceNotFoundError,
)
from .exec_util import CancelToken, CommandResult, run_binary, run_command
from .types import (
    DEFAULT_SYNC_BRANCH,
    DEFAULT_TIMEOUT,
    JJ_CAPABILITIES,
    CommitOptions,
    DivergenceInfo,
    FileStatus,
    OperationInfo,
    PullOptions,
    PushOptions,
    RefInfo,
    RemoteInfo,
    StatusCode,
    VCSBackend,
    VCSCapabilities,
    WorkspaceInfo,
    WorkspaceOptions,
)

logger = logging.getLogger(__name__)

_GLOBAL_ARGS = ("--color", "never", "--no-pager")

_CHANGE_ID_TEMPLATE = 'change_id ++ "\\n"'
_COMMIT_ID_TEMPLATE = 'commit_id ++ "\\n"'
_LOCAL_BOOKMARKS_TEMPLATE = 'local_bookmarks.map(|b| b.name()).join(" ") ++ "\\n"'
_OPERATION_TEMPLATE = (
    'id ++ "\\t" ++ time.start().format("%Y-%m-%dT%H:%M:%S%:z") ++ "\\t" ++ user'
    ' ++ "\\t" ++ description.first_line() ++ "\\t" ++ tags.first_line() ++ "\\n"'
)

_WORKSPACE_MARKERS = ("sync", "workspace")

_BENIGN_PREFIXES = (
    "Warning:",
    "Hint:",
    "Working copy",
    "Parent commit",
    "Added ",
    "Concurrent modification",
    "Done importing",
    "Reset the working copy parent",
    "Created workspace",
    "Rebased ",
    "Nothing changed",
)


def _extract_jj_error(stderr: str | None) -> str | None:
    """
    Pull the real error out of jj's stderr.

    Only ``Error:`` lines and the ``Caused by:`` block that follows them
    are kept; progress and hint lines are dropped.

    Returns:
        The error text, or None if stderr holds no error.
    """
    if not stderr:
        return None
    kept: list[str] = []
    in_error = False
    for raw_line in stderr.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("Error:"):
            in_error = True
            kept.append(line)
        elif line.startswith("Caused by:"):
            in_error = True
            kept.append(line)
        elif line.startswith(_BENIGN_PREFIXES):
            in_error = False
        elif in_error and re.match(r"^\d+:", line):
            kept.append(line)
    return "\n".join(kept) if kept else None


def _classify_jj_failure(result: CommandResult, operation: str = "") -> VCSError:
    """
    Map a failed jj command onto the exception hierarchy.

    Args:
        result: The failed command.
        operation: "push" enables the push-rejection patterns.
    """
    lowered = f"{result.stderr}\n{result.stdout}".lower()
    detail = _extract_jj_error(result.stderr) or result.stderr.strip() or result.stdout.strip()

    if "there is no jj repo" in lowered or "no workspace configured" in lowered:
        return NotInVCSError(detail)
    if "no git remote named" in lowered or "no remote" in lowered or "no git remotes" in lowered:
        return NoRemoteError(detail)
    if operation == "push" and (
        "rejected" in lowered or "non-fast-forward" in lowered or "unexpectedly moved" in lowered
    ):
        return PushRejectedError(detail)
    if "already exists" in lowered:
        return RefExistsError(detail)
    if (
        "doesn't exist" in lowered
        or "no such bookmark" in lowered
        or "no matching bookmarks" in lowered
    ):
        return RefNotFoundError(detail)
    if "unresolved conflicts" in lowered or "has conflicts" in lowered:
        return VCSConflictError(detail)
    return CommandError(result.args, result.returncode, result.stderr, result.stdout)


# =============================================================================
# Output Parsers
# =============================================================================


def _commit_field(rest: str) -> str:
    # "<change id> <commit id> <description...>"
    fields = rest.split()
    if len(fields) >= 2:
        return fields[1]
    return fields[0] if fields else ""


def parse_bookmark_list(output: str) -> list[RefInfo]:
    """
    Parse ``jj bookmark list --all-remotes`` output.

    Local entries look like ``name: <change> <commit> <desc>``; tracked
    remotes follow indented as ``@remote: ...``; untracked remotes appear as
    ``name@remote: ...``. The internal ``@git`` remote is skipped.
    """
    refs: list[RefInfo] = []
    current = ""
    for line in output.splitlines():
        if not line.strip():
            continue
        if line[0].isspace():
            stripped = line.strip()
            if stripped.startswith("@") and current:
                remote, _, rest = stripped[1:].partition(":")
                if remote != "git":
                    refs.append(
                        RefInfo(current, _commit_field(rest), remote=remote, is_remote=True)
                    )
            continue

        head, sep, rest = line.partition(":")
        if not sep:
            head, rest = line, ""
        name = head.split(" ")[0].rstrip("*").strip('"')
        markers = head[len(name):] if head.startswith(name) else head

        if "@" in name:
            name, remote = name.rsplit("@", 1)
            current = name
            if remote != "git":
                refs.append(RefInfo(name, _commit_field(rest), remote=remote, is_remote=True))
            continue

        current = name
        if "(deleted)" in markers:
            continue
        if "(conflicted)" in markers:
            refs.append(RefInfo(name, ""))
            continue
        refs.append(RefInfo(name, _commit_field(rest)))
    return refs


def _summary_path(path: str) -> str:
    # Renames: "src/{a.py => b.py}" or "a.py => b.py"
    path = re.sub(r"\{[^{}]*? => ([^{}]*)\}", r"\1", path)
    if " => " in path:
        path = path.split(" => ")[-1]
    return path.replace("//", "/")


def parse_diff_summary(output: str) -> list[FileStatus]:
    """Parse ``jj diff --summary`` lines such as ``M src/app.py``."""
    statuses: list[FileStatus] = []
    for line in output.splitlines():
        if len(line) < 3 or line[1] != " ":
            continue
        statuses.append(FileStatus(_summary_path(line[2:].strip()), StatusCode.from_letter(line[0])))
    return statuses


def parse_operation_log(output: str) -> list[OperationInfo]:
    """Parse the tab-separated op log template; unrecognised lines are kept whole."""
    operations: list[OperationInfo] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        fields = line.split("\t")
        if len(fields) < 5:
            operations.append(OperationInfo(id=line.split()[0], description=line.strip()))
            continue
        op_id, started, user, description, tags = fields[:5]
        timestamp = None
        try:
            timestamp = datetime.fromisoformat(started)
        except ValueError:
            logger.debug("Unparseable op log timestamp %r", started)
        args: tuple[str, ...] = ()
        if tags.startswith("args:"):
            args = tuple(tags[len("args:"):].split())
        operations.append(
            OperationInfo(
                id=op_id,
                description=description,
                timestamp=timestamp,
                user=user,
                args=args,
            )
        )
    return operations


# =============================================================================
# Module-level Operations
# =============================================================================


def _jj(repo_path: Path, *args: str, timeout: float | None = DEFAULT_TIMEOUT) -> CommandResult:
    return run_command([jj_executable(), *_GLOBAL_ARGS, *args], repo_path, timeout=timeout)


def jj_get_operation_log(repo_path: Path, limit: int = 10) -> list[OperationInfo]:
    """
    Read the newest ``limit`` entries of the jj operation log.

    Falls back to one entry per plain-text line when the template is not
    understood by the installed jj.
    """
    result = _jj(repo_path, "op", "log", "--no-graph", "--limit", str(limit), "-T", _OPERATION_TEMPLATE)
    if result.ok:
        return parse_operation_log(result.stdout)

    logger.debug("jj op log template failed, using plain output: %s", result.stderr.strip())
    result = _jj(repo_path, "op", "log", "--no-graph", "--limit", str(limit))
    if not result.ok:
        raise _classify_jj_failure(result)
    return parse_operation_log(result.stdout)


def jj_get_change_by_id(repo_path: Path, change_id: str) -> str | None:
    """Return the commit id for a change id, or None if it is unknown."""
    result = _jj(repo_path, "log", "-r", change_id, "--no-graph", "--limit", "1", "-T", _COMMIT_ID_TEMPLATE)
    if not result.ok:
        return None
    return result.stdout.strip() or None


# =============================================================================
# Backend
# =============================================================================


class JujutsuVCS:
    """
    Jujutsu implementation of VCSProtocol.

    Args:
        path: Any path inside the jj workspace.

    Raises:
        NotInVCSError: ``path`` is not inside a jj workspace.
    """

    def __init__(self, path: Path | str, timeout: float | None = DEFAULT_TIMEOUT) -> None:
        self._jj = jj_executable()
        self._timeout = timeout
        start = Path(path)
        result = run_command([self._jj, *_GLOBAL_ARGS, "root"], start, timeout=timeout)
        if not result.ok or not result.stdout.strip():
            raise NotInVCSError(f"{start} is not inside a jj repository")
        self._root = Path(result.stdout.strip())
        self._colocated = (self._root / ".git").exists()

    @classmethod
    def init(cls, path: Path | str, colocate: bool = True) -> JujutsuVCS:
        """Create a jj repository (git-backed) at ``path``."""
        target = Path(path)
        target.mkdir(parents=True, exist_ok=True)
        args = [jj_executable(), "git", "init"]
        if colocate:
            args.append("--colocate")
        args.append(str(target))
        run_command(args, target).check()
        return cls(target)

    def __repr__(self) -> str:
        return f"JujutsuVCS({str(self._root)!r})"

    # =========================================================================
    # Internals
    # =========================================================================

    def _run(self, *args: str, cancel: CancelToken | None = None) -> CommandResult:
        return run_command(
            [self._jj, *_GLOBAL_ARGS, *args],
            self._root,
            timeout=self._timeout,
            cancel=cancel,
        )

    def _run_checked(
        self,
        *args: str,
        cancel: CancelToken | None = None,
        operation: str = "",
    ) -> str:
        result = self._run(*args, cancel=cancel)
        if not result.ok:
            raise _classify_jj_failure(result, operation)
        return result.stdout

    def _restore_change(self, change_id: str, strict: bool) -> None:
        result = self._run("edit", change_id)
        if result.ok:
            return
        if strict:
            raise _classify_jj_failure(result)
        logger.warning("Could not return to change %s: %s", change_id, result.stderr.strip())

    @contextmanager
    def preserve_working_copy(self) -> Iterator[str]:
        """
        Return to the current working change when the block exits.

        Yields the original change id. If the block raises, a failed
        restore is logged and the block's exception propagates.
        """
        original = self.current_change_id()
        try:
            yield original
        except BaseException:
            self._restore_change(original, strict=False)
            raise
        self._restore_change(original, strict=True)

    # =========================================================================
    # Identity
    # =========================================================================

    @property
    def capabilities(self) -> VCSCapabilities:
        return JJ_CAPABILITIES

    @property
    def is_colocated(self) -> bool:
        return self._colocated

    def name(self) -> VCSBackend:
        # Colocated repositories still report jj: the handle speaks jj.
        return VCSBackend.JUJUTSU

    def version(self) -> str:
        result = run_command([self._jj, "--version"], self._root, timeout=self._timeout)
        if not result.ok:
            raise _classify_jj_failure(result)
        return parse_jj_version(result.stdout.strip())

    def repo_root(self) -> Path:
        return self._root

    def vcs_dir(self) -> Path:
        return self._root / ".jj"

    def is_in_vcs(self) -> bool:
        return self._run("root").ok

    def current_change_id(self) -> str:
        return self._run_checked("log", "-r", "@", "--no-graph", "-T", _CHANGE_ID_TEMPLATE).strip()

    # =========================================================================
    # References
    # =========================================================================

    def current_ref(self) -> str:
        output = self._run_checked("log", "-r", "@", "--no-graph", "-T", _LOCAL_BOOKMARKS_TEMPLATE)
        names = output.split()
        return names[0] if names else ""

    def list_refs(self) -> list[RefInfo]:
        return parse_bookmark_list(self._run_checked("bookmark", "list", "--all-remotes"))

    def ref_exists(self, name: str) -> bool:
        return any(ref.name == name and not ref.is_remote for ref in self.list_refs())

    def create_ref(self, name: str, base: str = "") -> None:
        if self.ref_exists(name):
            raise RefExistsError(f"bookmark {name!r} already exists")
        self._run_checked("bookmark", "create", name, "-r", base or "@")

    def delete_ref(self, name: str) -> None:
        if not self.ref_exists(name):
            raise RefNotFoundError(f"bookmark {name!r} not found")
        self._run_checked("bookmark", "delete", name)

    def move_ref(self, name: str, target: str) -> None:
        if not self.ref_exists(name):
            raise RefNotFoundError(f"bookmark {name!r} not found")
        self._run_checked("bookmark", "move", name, "--to", target, "--allow-backwards")

    def switch_ref(self, name: str) -> None:
        if self.get_commit_hash(name) == self.get_commit_hash("@"):
            return
        self._run_checked("edit", name)

    def new_change(self, base: str, message: str = "") -> None:
        args = ["new", base]
        if message:
            args += ["-m", message]
        self._run_checked(*args)

    def rebase(self, source: str, destination: str) -> None:
        self._run_checked("rebase", "-b", source, "-d", destination)

    def ref_at_operation(self, name: str, operation_id: str) -> str:
        # The entry may be the one that removed the bookmark; try its parent too.
        for at_operation in (operation_id, f"{operation_id}-"):
            result = self._run(
                "--at-operation",
                at_operation,
                "log",
                "-r",
                name,
                "--no-graph",
                "--limit",
                "1",
                "-T",
                _COMMIT_ID_TEMPLATE,
            )
            if result.ok and result.stdout.strip():
                return result.stdout.strip()
        raise RefNotFoundError(f"{name!r} did not exist at operation {operation_id}")

    # =========================================================================
    # Status
    # =========================================================================

    def status(self, *paths: str) -> list[FileStatus]:
        return parse_diff_summary(self._run_checked("diff", "--summary", *paths))

    def has_changes(self, *paths: str) -> bool:
        return bool(self.status(*paths))

    def has_unmerged_paths(self) -> bool:
        return self.has_conflicts()

    def is_in_rebase_or_merge(self) -> bool:
        # jj records conflicts in commits; it never stops mid-rebase.
        return False

    def get_remotes(self) -> list[RemoteInfo]:
        remotes: list[RemoteInfo] = []
        for line in self._run_checked("git", "remote", "list").splitlines():
            fields = line.split()
            if len(fields) >= 2:
                remotes.append(RemoteInfo(fields[0], fields[1]))
        return remotes

    def has_remote(self) -> bool:
        return bool(self.get_remotes())

    def get_commit_hash(self, ref: str) -> str:
        result = self._run("log", "-r", ref, "--no-graph", "--limit", "1", "-T", _COMMIT_ID_TEMPLATE)
        if not result.ok or not result.stdout.strip():
            raise RefNotFoundError(f"{ref!r} does not name a commit")
        return result.stdout.strip()

    def _count_commits(self, revset: str) -> int:
        output = self._run_checked("log", "-r", revset, "--no-graph", "-T", _COMMIT_ID_TEMPLATE)
        return sum(1 for line in output.splitlines() if line.strip())

    def has_divergence(self, local: str, remote: str) -> DivergenceInfo:
        return DivergenceInfo(
            local_ahead=self._count_commits(f"{remote}..{local}"),
            remote_ahead=self._count_commits(f"{local}..{remote}"),
        )

    def extract_file_from_ref(self, ref: str, path: str) -> bytes:
        result, content = run_binary(
            [self._jj, *_GLOBAL_ARGS, "file", "show", "-r", ref, path],
            self._root,
            timeout=self._timeout,
        )
        if not result.ok:
            raise _classify_jj_failure(result)
        return content

    # =========================================================================
    # Recording
    # =========================================================================

    def add(self, paths: list[str]) -> None:
        # The working copy is snapshotted automatically; nothing to stage.
        logger.debug("jj tracks files automatically; ignoring add(%s)", paths)

    def commit(self, opts: CommitOptions, cancel: CancelToken | None = None) -> None:
        args = ["describe", "-m", opts.message]
        if opts.author:
            args += ["--author", opts.author]
        self._run_checked(*args, cancel=cancel)
        if opts.create_new:
            self._run_checked("new", cancel=cancel)

    # =========================================================================
    # Remotes
    # =========================================================================

    def fetch(self, remote: str = "", ref: str = "", cancel: CancelToken | None = None) -> None:
        if not self.has_remote():
            logger.debug("No remote configured; skipping fetch")
            return
        args = ["git", "fetch"]
        if remote:
            args += ["--remote", remote]
        if ref:
            args += ["-b", ref]
        self._run_checked(*args, cancel=cancel, operation="fetch")

    def pull(self, opts: PullOptions, cancel: CancelToken | None = None) -> None:
        # Tracked bookmarks follow their remotes on fetch.
        self.fetch(opts.remote, opts.ref, cancel=cancel)

    def push(self, opts: PushOptions, cancel: CancelToken | None = None) -> None:
        if opts.force:
            raise NotSupportedError("jj does not support force push; rewrite history instead")
        if not self.has_remote():
            logger.debug("No remote configured; skipping push")
            return
        args = ["git", "push"]
        if opts.remote:
            args += ["--remote", opts.remote]
        ref = opts.ref or self.current_ref()
        if ref:
            args += ["-b", ref]
        if opts.set_upstream:
            args.append("--allow-new")
        self._run_checked(*args, cancel=cancel, operation="push")

    # =========================================================================
    # Workspaces
    # =========================================================================

    def create_workspace(self, opts: WorkspaceOptions) -> JujutsuWorkspace:
        """
        Create a sync change with a bookmark, without leaving the current change.

        Raises:
            WorkspaceExistsError: The bookmark already exists.
        """
        ref = opts.ref or DEFAULT_SYNC_BRANCH
        if self.ref_exists(ref):
            raise WorkspaceExistsError(f"bookmark {ref!r} already exists")

        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        with self.preserve_working_copy():
            self._run_checked("new", "-m", f"Sync: {timestamp}")
            change_id = self.current_change_id()
            try:
                self.create_ref(ref, "@")
            except VCSError:
                self._run("abandon", change_id)
                raise
        return JujutsuWorkspace(self, opts.name, ref, change_id)

    def list_workspaces(self) -> list[WorkspaceInfo]:
        return [
            WorkspaceInfo(name=ref.name, path=self._root, ref=ref.name, is_valid=True)
            for ref in self.list_refs()
            if not ref.is_remote and any(marker in ref.name for marker in _WORKSPACE_MARKERS)
        ]

    # =========================================================================
    # Conflicts
    # =========================================================================

    def get_conflicted_files(self) -> list[str]:
        result = self._run("resolve", "--list")
        if not result.ok:
            if "no conflicts" in result.stderr.lower():
                return []
            raise _classify_jj_failure(result)
        files: list[str] = []
        for line in result.stdout.splitlines():
            if line.strip():
                files.append(re.split(r"\s{2,}", line.strip())[0])
        return files

    def has_conflicts(self) -> bool:
        return bool(self.get_conflicted_files())

    # =========================================================================
    # Undo / journal
    # =========================================================================

    def can_undo(self) -> bool:
        return True

    def undo(self, cancel: CancelToken | None = None) -> None:
        self._run_checked("op", "undo", cancel=cancel)

    def get_operation_log(self, limit: int = 10) -> list[OperationInfo]:
        return jj_get_operation_log(self._root, limit)

    # =========================================================================
    # Escape hatch
    # =========================================================================

    def exec(self, *args: str, cancel: CancelToken | None = None) -> CommandResult:
        result = self._run(*args, cancel=cancel)
        if not result.ok:
            raise _classify_jj_failure(result)
        return result


class JujutsuWorkspace:
    """A bookmarked change acting as an isolated workspace."""

    def __init__(self, vcs: JujutsuVCS, name: str, ref: str, change_id: str) -> None:
        self.name = name
        self.change_id = change_id
        self._vcs = vcs
        self._ref = ref

    def __repr__(self) -> str:
        return f"JujutsuWorkspace(name={self.name!r}, ref={self._ref!r}, change={self.change_id[:12]!r})"

    @property
    def path(self) -> Path:
        return self._vcs.repo_root()

    @property
    def ref(self) -> str:
        return self._ref

    def sync_to_workspace(self, files: list[str]) -> None:
        # The change shares the repository's working copy.
        logger.debug("jj workspace shares the working copy; nothing to sync for %s", files)

    def sync_from_workspace(self, files: list[str]) -> None:
        logger.debug("jj workspace shares the working copy; nothing to sync for %s", files)

    def has_changes(self) -> bool:
        output = self._vcs._run_checked("diff", "--summary", "-r", self.change_id)
        return bool(parse_diff_summary(output))

    def commit(self, message: str, cancel: CancelToken | None = None) -> None:
        self._vcs._run_checked("describe", self.change_id, "-m", message, cancel=cancel)

    def push(self, cancel: CancelToken | None = None) -> None:
        self._vcs.push(PushOptions(ref=self._ref), cancel=cancel)

    def pull(self, cancel: CancelToken | None = None) -> None:
        self._vcs.fetch(ref=self._ref, cancel=cancel)

    def cleanup(self) -> None:
        if not self.has_changes():
            result = self._vcs._run("abandon", self.change_id)
            if not result.ok:
                logger.warning("Could not abandon %s: %s", self.change_id, result.stderr.strip())
        try:
            self._vcs.delete_ref(self._ref)
        except VCSError as exc:
            logger.warning("Could not delete bookmark %s: %s", self._ref, exc)

    def check_health(self) -> None:
        if not self._vcs.ref_exists(self._ref):
            raise WorkspaceNotFoundError(f"bookmark {self._ref!r} no longer exists")
        if jj_get_change_by_id(self._vcs.repo_root(), self.change_id) is None:
            raise WorkspaceNotFoundError(f"change {self.change_id} no longer exists")

    def is_healthy(self) -> bool:
        try:
            self.check_health()
        except WorkspaceNotFoundError:
            return False
        return True


def register_backend() -> None:
    """Register JujutsuVCS with the backend registry (idempotent)."""
    if not registry.is_registered(VCSBackend.JUJUTSU):
        registry.register(VCSBackend.JUJUTSU, JujutsuVCS)


register_backend()
