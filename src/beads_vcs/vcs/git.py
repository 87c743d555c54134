"""
Git VCS Implementation
======================

The snapshot backend. Every operation shells out to the ``git`` binary;
failures are mapped onto the VCSError hierarchy by _classify_git_failure.

The handle is bound to the checkout it was created for. When that checkout
is a linked worktree, commands still run inside the worktree while
repo_root() reports the main repository.
"""

from __future__ import annotations

import logging
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path

from . import registry
from .detection import git_executable, parse_git_version
from .exceptions import (
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
    VCSConflictError,
    VCSError,
    WorkspaceNotFoundError,
)
from .exec_util import CancelToken, CommandResult, run_binary, run_command, sanitize_path
from .types import (
    DEFAULT_SYNC_BRANCH,
    DEFAULT_TIMEOUT,
    GIT_CAPABILITIES,
    WORKTREES_DIR,
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

_UNMERGED_CODES = {"DD", "AU", "UD", "UA", "DU", "AA", "UU"}

_REF_NOT_FOUND_PATTERNS = (
    "unknown revision",
    "not a valid object name",
    "not a valid ref",
    "invalid reference",
    "bad revision",
    "couldn't find remote ref",
    "did not match any file(s) known to git",
)

_DIRTY_PATTERNS = (
    "would be overwritten",
    "please commit your changes or stash them",
    "you have unstaged changes",
    "your index contains uncommitted changes",
)

_NO_REMOTE_PATTERNS = (
    "does not appear to be a git repository",
    "no such remote",
    "no configured push destination",
)


def _classify_git_failure(result: CommandResult, operation: str = "") -> VCSError:
    """
    Map a failed git command onto the exception hierarchy.

    Args:
        result: The failed command.
        operation: "push" or "pull" enable the remote-specific patterns.

    Returns:
        The exception to raise; CommandError when nothing matches.
    """
    text = f"{result.stderr}\n{result.stdout}"
    lowered = text.lower()
    detail = result.stderr.strip() or result.stdout.strip()

    if "not a git repository" in lowered:
        return NotInVCSError(detail)
    if any(pattern in lowered for pattern in _NO_REMOTE_PATTERNS):
        return NoRemoteError(detail)
    if operation == "push" and ("rejected" in lowered or "non-fast-forward" in lowered):
        return PushRejectedError(detail)
    if "conflict" in lowered:
        return VCSConflictError(detail)
    if (
        "non-fast-forward" in lowered
        or "not possible to fast-forward" in lowered
        or "divergent branches" in lowered
    ):
        return MergeRequiredError(detail)
    if any(pattern in lowered for pattern in _DIRTY_PATTERNS):
        return DirtyWorkspaceError(detail)
    if "already exists" in lowered:
        return RefExistsError(detail)
    if any(pattern in lowered for pattern in _REF_NOT_FOUND_PATTERNS) or (
        "branch '" in lowered and "not found" in lowered
    ):
        return RefNotFoundError(detail)
    return CommandError(result.args, result.returncode, result.stderr, result.stdout)


def _status_code(letter: str) -> StatusCode:
    return StatusCode.from_letter(letter)


def parse_porcelain_z(output: str) -> list[FileStatus]:
    """Parse ``git status --porcelain -z`` output.

    Rename and copy entries carry the original path as a separate NUL
    field, which is skipped.
    """
    entries = output.split("\0")
    statuses: list[FileStatus] = []
    index = 0
    while index < len(entries):
        entry = entries[index]
        index += 1
        if len(entry) < 4:
            continue
        code, path = entry[:2], entry[3:]
        if code[0] in ("R", "C"):
            index += 1
        if code in _UNMERGED_CODES:
            statuses.append(FileStatus(path, StatusCode.CONFLICT, StatusCode.CONFLICT))
            continue
        statuses.append(FileStatus(path, _status_code(code[1]), _status_code(code[0])))
    return statuses


def parse_worktree_list(output: str) -> list[dict[str, str]]:
    """Parse ``git worktree list --porcelain`` into one dict per worktree."""
    worktrees: list[dict[str, str]] = []
    current: dict[str, str] = {}
    for line in output.splitlines():
        if not line.strip():
            if current:
                worktrees.append(current)
                current = {}
            continue
        key, _, value = line.partition(" ")
        current[key] = value
    if current:
        worktrees.append(current)
    return worktrees


class GitVCS:
    """
    Git implementation of VCSProtocol.

    Args:
        path: Any path inside the checkout the handle should operate on.

    Raises:
        NotInVCSError: ``path`` is not inside a git working tree.
    """

    def __init__(self, path: Path | str, timeout: float | None = DEFAULT_TIMEOUT) -> None:
        self._git = git_executable()
        self._timeout = timeout
        start = Path(path)
        result = run_command(
            [
                self._git,
                "rev-parse",
                "--path-format=absolute",
                "--git-dir",
                "--git-common-dir",
                "--show-toplevel",
            ],
            start,
            timeout=timeout,
        )
        lines = result.stdout.splitlines()
        if not result.ok or len(lines) < 3:
            raise NotInVCSError(f"{start} is not inside a git working tree")

        self._git_dir = Path(lines[0])
        self._common_dir = Path(lines[1])
        self._work_tree = Path(lines[2])
        self._is_worktree = self._git_dir != self._common_dir
        self._main_root = self._common_dir.parent if self._is_worktree else self._work_tree

    @classmethod
    def init(cls, path: Path | str, initial_branch: str = "main") -> GitVCS:
        """Create a new repository at ``path`` and return a handle for it."""
        target = Path(path)
        target.mkdir(parents=True, exist_ok=True)
        run_command(
            [git_executable(), "init", "-b", initial_branch, str(target)],
            target,
        ).check()
        return cls(target)

    def __repr__(self) -> str:
        return f"GitVCS({str(self._work_tree)!r})"

    # =========================================================================
    # Internals
    # =========================================================================

    def _run(
        self,
        *args: str,
        cwd: Path | None = None,
        cancel: CancelToken | None = None,
    ) -> CommandResult:
        return run_command(
            [self._git, *args],
            cwd or self._work_tree,
            timeout=self._timeout,
            cancel=cancel,
        )

    def _run_checked(
        self,
        *args: str,
        cwd: Path | None = None,
        cancel: CancelToken | None = None,
        operation: str = "",
    ) -> str:
        result = self._run(*args, cwd=cwd, cancel=cancel)
        if not result.ok:
            raise _classify_git_failure(result, operation)
        return result.stdout

    def _head_commit(self) -> str:
        return self._run_checked("rev-parse", "HEAD").strip()

    def _default_remote(self, branch: str) -> str:
        if branch:
            result = self._run("config", "--get", f"branch.{branch}.remote")
            if result.ok and result.stdout.strip():
                return result.stdout.strip()
        return "origin"

    def _remove_worktree(self, path: Path) -> None:
        result = self._run("worktree", "remove", str(path), "--force")
        if not result.ok:
            logger.warning("git worktree remove failed for %s: %s", path, result.stderr.strip())
            shutil.rmtree(path, ignore_errors=True)
            self._run("worktree", "prune")

    # =========================================================================
    # Identity
    # =========================================================================

    @property
    def capabilities(self) -> VCSCapabilities:
        return GIT_CAPABILITIES

    @property
    def work_tree(self) -> Path:
        """Top level of the checkout this handle runs commands in."""
        return self._work_tree

    @property
    def is_worktree(self) -> bool:
        return self._is_worktree

    def name(self) -> VCSBackend:
        return VCSBackend.GIT

    def version(self) -> str:
        return parse_git_version(self._run_checked("--version").strip())

    def repo_root(self) -> Path:
        return self._main_root

    def vcs_dir(self) -> Path:
        return self._git_dir

    def is_in_vcs(self) -> bool:
        result = self._run("rev-parse", "--is-inside-work-tree")
        return result.ok and result.stdout.strip() == "true"

    # =========================================================================
    # References
    # =========================================================================

    def current_ref(self) -> str:
        result = self._run("symbolic-ref", "--short", "-q", "HEAD")
        if result.ok:
            return result.stdout.strip()
        if result.returncode == 1:
            return ""
        raise _classify_git_failure(result)

    def ref_exists(self, name: str) -> bool:
        return self._run("show-ref", "--verify", "--quiet", f"refs/heads/{name}").ok

    def create_ref(self, name: str, base: str = "") -> None:
        if self.ref_exists(name):
            raise RefExistsError(f"branch {name!r} already exists")
        args = ["branch", name]
        if base:
            args.append(base)
        self._run_checked(*args)

    def delete_ref(self, name: str) -> None:
        if not self.ref_exists(name):
            raise RefNotFoundError(f"branch {name!r} not found")
        if self.current_ref() == name:
            # Deleting never disturbs the working copy: detach first.
            self._run_checked("checkout", "--detach")
        self._run_checked("branch", "-D", name)

    def move_ref(self, name: str, target: str) -> None:
        if not self.ref_exists(name):
            raise RefNotFoundError(f"branch {name!r} not found")
        if self.current_ref() == name:
            self._run_checked("reset", "--keep", target)
        else:
            self._run_checked("branch", "-f", name, target)

    def list_refs(self) -> list[RefInfo]:
        output = self._run_checked(
            "for-each-ref",
            "--format=%(refname) %(objectname)",
            "refs/heads",
            "refs/remotes",
        )
        refs: list[RefInfo] = []
        for line in output.splitlines():
            refname, _, commit = line.strip().partition(" ")
            if refname.startswith("refs/heads/"):
                refs.append(RefInfo(refname[len("refs/heads/"):], commit))
            elif refname.startswith("refs/remotes/"):
                remote, _, branch = refname[len("refs/remotes/"):].partition("/")
                if not branch or branch == "HEAD":
                    continue
                refs.append(RefInfo(branch, commit, remote=remote, is_remote=True))
        return refs

    def switch_ref(self, name: str) -> None:
        self._run_checked("checkout", name, "--")

    def new_change(self, base: str, message: str = "") -> None:
        self._run_checked("checkout", "--detach", base)
        if message:
            self._run_checked("commit", "--allow-empty", "--no-verify", "-m", message)

    def rebase(self, source: str, destination: str) -> None:
        original = self.current_ref() or self._head_commit()
        result = self._run("rebase", destination, source)
        if not result.ok:
            if self.is_in_rebase_or_merge():
                self._run("rebase", "--abort")
            self._restore_checkout(original, source)
            raise _classify_git_failure(result)
        # git rebase leaves ``source`` checked out; put the old checkout back.
        self._restore_checkout(original, source)

    def _restore_checkout(self, original: str, source: str) -> None:
        if original == source or original == self.current_ref():
            return
        if self.ref_exists(original):
            self._run_checked("checkout", original, "--")
        else:
            self._run_checked("checkout", "--detach", original)

    def ref_at_operation(self, name: str, operation_id: str) -> str:
        raise NotSupportedError(
            f"git cannot resolve {name!r} at reflog entry {operation_id}; "
            "inspect `git reflog` and recreate the branch manually"
        )

    # =========================================================================
    # Status
    # =========================================================================

    def status(self, *paths: str) -> list[FileStatus]:
        args = ["status", "--porcelain", "-z"]
        if paths:
            args += ["--", *paths]
        return parse_porcelain_z(self._run_checked(*args))

    def has_changes(self, *paths: str) -> bool:
        args = ["status", "--porcelain"]
        if paths:
            args += ["--", *paths]
        return bool(self._run_checked(*args).strip())

    def has_unmerged_paths(self) -> bool:
        return any(entry.status == StatusCode.CONFLICT for entry in self.status())

    def is_in_rebase_or_merge(self) -> bool:
        return (
            (self._git_dir / "rebase-merge").exists()
            or (self._git_dir / "rebase-apply").exists()
            or (self._git_dir / "MERGE_HEAD").exists()
        )

    def has_remote(self) -> bool:
        return bool(self._run_checked("remote").strip())

    def get_remotes(self) -> list[RemoteInfo]:
        remotes: dict[str, RemoteInfo] = {}
        for line in self._run_checked("remote", "-v").splitlines():
            fields = line.split()
            if len(fields) >= 2 and fields[0] not in remotes:
                remotes[fields[0]] = RemoteInfo(fields[0], fields[1])
        return list(remotes.values())

    def get_commit_hash(self, ref: str) -> str:
        result = self._run("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")
        if not result.ok:
            raise RefNotFoundError(f"{ref!r} does not name a commit")
        return result.stdout.strip()

    def has_divergence(self, local: str, remote: str) -> DivergenceInfo:
        local_ahead = self._run_checked("rev-list", "--count", f"{remote}..{local}")
        remote_ahead = self._run_checked("rev-list", "--count", f"{local}..{remote}")
        return DivergenceInfo(int(local_ahead.strip()), int(remote_ahead.strip()))

    def extract_file_from_ref(self, ref: str, path: str) -> bytes:
        result, content = run_binary(
            [self._git, "show", f"{ref}:{path}"],
            self._work_tree,
            timeout=self._timeout,
        )
        if not result.ok:
            raise _classify_git_failure(result)
        return content

    # =========================================================================
    # Recording
    # =========================================================================

    def add(self, paths: list[str]) -> None:
        if paths:
            self._run_checked("add", "--", *paths)

    def commit(self, opts: CommitOptions, cancel: CancelToken | None = None) -> None:
        if opts.paths:
            self.add(opts.paths)
        args = ["commit", "-m", opts.message]
        if opts.author:
            args += ["--author", opts.author]
        if opts.no_gpg_sign:
            args.append("--no-gpg-sign")
        if opts.no_verify:
            args.append("--no-verify")
        if opts.allow_empty:
            args.append("--allow-empty")
        if opts.paths:
            args += ["--", *opts.paths]
        self._run_checked(*args, cancel=cancel)

    # =========================================================================
    # Remotes
    # =========================================================================

    def fetch(self, remote: str = "", ref: str = "", cancel: CancelToken | None = None) -> None:
        if not self.has_remote():
            logger.debug("No remote configured; skipping fetch")
            return
        args = ["fetch", remote or self._default_remote(self.current_ref())]
        if ref:
            args.append(ref)
        self._run_checked(*args, cancel=cancel, operation="fetch")

    def pull(self, opts: PullOptions, cancel: CancelToken | None = None) -> None:
        if not self.has_remote():
            logger.debug("No remote configured; skipping pull")
            return
        ref = opts.ref or self.current_ref()
        if not ref:
            raise DetachedError("cannot pull with a detached HEAD and no ref")
        args = ["pull"]
        if opts.rebase:
            args.append("--rebase")
        if opts.ff_only:
            args.append("--ff-only")
        args += [opts.remote or self._default_remote(ref), ref]
        self._run_checked(*args, cancel=cancel, operation="pull")

    def push(self, opts: PushOptions, cancel: CancelToken | None = None) -> None:
        if not self.has_remote():
            logger.debug("No remote configured; skipping push")
            return
        ref = opts.ref or self.current_ref()
        if not ref:
            raise DetachedError("cannot push with a detached HEAD and no ref")
        args = ["push"]
        if opts.set_upstream:
            args.append("-u")
        if opts.force:
            args.append("--force")
        args += [opts.remote or self._default_remote(ref), ref]
        self._run_checked(*args, cancel=cancel, operation="push")

    # =========================================================================
    # Workspaces
    # =========================================================================

    def create_workspace(self, opts: WorkspaceOptions) -> GitWorkspace:
        """
        Create (or reuse) a linked worktree checked out at ``opts.ref``.

        A healthy worktree already at the target path is returned as is; an
        unhealthy one is removed and recreated. The ref is created from HEAD
        when it does not exist yet.
        """
        ref = opts.ref or DEFAULT_SYNC_BRANCH
        default_path = self._common_dir / WORKTREES_DIR / opts.name
        path = sanitize_path(opts.path or default_path, self._work_tree)
        workspace = GitWorkspace(self, opts.name, path, ref)

        if path.exists():
            if workspace.is_healthy():
                return workspace
            logger.info("Removing unhealthy worktree at %s", path)
            self._remove_worktree(path)

        path.parent.mkdir(parents=True, exist_ok=True)
        if not self.ref_exists(ref):
            self.create_ref(ref)

        if not (opts.sparse and opts.sparse_paths):
            self._run_checked("worktree", "add", "-f", str(path), ref)
            return workspace

        self._run_checked("worktree", "add", "-f", "--no-checkout", str(path), ref)
        try:
            self._run_checked("sparse-checkout", "init", "--no-cone", cwd=path)
            self._run_checked("sparse-checkout", "set", "--no-cone", *opts.sparse_paths, cwd=path)
            self._run_checked("checkout", ref, cwd=path)
        except VCSError:
            self._remove_worktree(path)
            raise

        # Sparse settings must not leak into the main checkout.
        result = self._run("config", "core.sparseCheckout", "false")
        if not result.ok:
            logger.warning("Could not reset core.sparseCheckout: %s", result.stderr.strip())
        return workspace

    def list_workspaces(self) -> list[WorkspaceInfo]:
        workspaces: list[WorkspaceInfo] = []
        for entry in parse_worktree_list(self._run_checked("worktree", "list", "--porcelain")):
            path = Path(entry.get("worktree", ""))
            if path == self._main_root:
                continue
            branch = entry.get("branch", "")
            ref = branch[len("refs/heads/"):] if branch.startswith("refs/heads/") else branch
            workspaces.append(
                WorkspaceInfo(
                    name=path.name,
                    path=path,
                    ref=ref,
                    is_valid=path.exists() and "prunable" not in entry,
                )
            )
        return workspaces

    # =========================================================================
    # Conflicts
    # =========================================================================

    def get_conflicted_files(self) -> list[str]:
        output = self._run_checked("diff", "--name-only", "--diff-filter=U")
        return [line.strip() for line in output.splitlines() if line.strip()]

    def has_conflicts(self) -> bool:
        return bool(self.get_conflicted_files())

    # =========================================================================
    # Undo / journal
    # =========================================================================

    def can_undo(self) -> bool:
        return self._run("rev-parse", "--verify", "--quiet", "HEAD@{1}").ok

    def undo(self, cancel: CancelToken | None = None) -> None:
        if not self.can_undo():
            raise RefNotFoundError("no previous reflog entry to return to")
        self._run_checked("reset", "--hard", "HEAD@{1}", cancel=cancel)

    def get_operation_log(self, limit: int = 10) -> list[OperationInfo]:
        result = self._run(
            "reflog",
            "-n",
            str(limit),
            "--date=unix",
            "--format=%H%x1f%gd%x1f%gn%x1f%gs",
        )
        if not result.ok:
            # A repository without commits has no reflog yet.
            return []
        operations: list[OperationInfo] = []
        for line in result.stdout.splitlines():
            fields = line.split("\x1f")
            if len(fields) < 4:
                continue
            commit, selector, user, subject = fields[:4]
            timestamp = None
            match = re.search(r"@\{(\d+)\}", selector)
            if match:
                timestamp = datetime.fromtimestamp(int(match.group(1)), tz=timezone.utc)
            operations.append(
                OperationInfo(id=commit, description=subject, timestamp=timestamp, user=user)
            )
        return operations

    # =========================================================================
    # Escape hatch
    # =========================================================================

    def exec(self, *args: str, cancel: CancelToken | None = None) -> CommandResult:
        result = self._run(*args, cancel=cancel)
        if not result.ok:
            raise _classify_git_failure(result)
        return result


class GitWorkspace:
    """A linked git worktree bound to one branch."""

    def __init__(self, vcs: GitVCS, name: str, path: Path, ref: str) -> None:
        self.name = name
        self._vcs = vcs
        self._path = path
        self._ref = ref

    def __repr__(self) -> str:
        return f"GitWorkspace(name={self.name!r}, path={str(self._path)!r}, ref={self._ref!r})"

    @property
    def path(self) -> Path:
        return self._path

    @property
    def ref(self) -> str:
        return self._ref

    def _run_checked(self, *args: str, cancel: CancelToken | None = None, operation: str = "") -> str:
        return self._vcs._run_checked(*args, cwd=self._path, cancel=cancel, operation=operation)

    @staticmethod
    def _copy(source_root: Path, target_root: Path, files: list[str]) -> None:
        for relative in files:
            target = target_root / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source_root / relative, target)

    def sync_to_workspace(self, files: list[str]) -> None:
        self._copy(self._vcs.work_tree, self._path, files)

    def sync_from_workspace(self, files: list[str]) -> None:
        self._copy(self._path, self._vcs.work_tree, files)

    def has_changes(self) -> bool:
        return bool(self._run_checked("status", "--porcelain").strip())

    def commit(self, message: str, cancel: CancelToken | None = None) -> None:
        self._run_checked("add", "-A")
        if not self._run_checked("status", "--porcelain").strip():
            logger.debug("Nothing to commit in %s", self._path)
            return
        self._run_checked("commit", "--no-verify", "-m", message, cancel=cancel)

    def push(self, cancel: CancelToken | None = None) -> None:
        if not self._vcs.has_remote():
            logger.debug("No remote configured; skipping workspace push")
            return
        remote = self._vcs._default_remote(self._ref)
        self._run_checked("push", remote, self._ref, cancel=cancel, operation="push")

    def pull(self, cancel: CancelToken | None = None) -> None:
        if not self._vcs.has_remote():
            logger.debug("No remote configured; skipping workspace pull")
            return
        remote = self._vcs._default_remote(self._ref)
        self._run_checked("pull", remote, self._ref, cancel=cancel, operation="pull")

    def cleanup(self) -> None:
        self._vcs._remove_worktree(self._path)

    def check_health(self) -> None:
        if not self._path.is_dir():
            raise WorkspaceNotFoundError(f"worktree path {self._path} does not exist")
        if not (self._path / ".git").exists():
            raise WorkspaceNotFoundError(f"{self._path} has no .git entry")
        listed = {workspace.path for workspace in self._vcs.list_workspaces()}
        if self._path not in listed and self._path.resolve() not in listed:
            raise WorkspaceNotFoundError(f"{self._path} is not registered with git worktree")

    def is_healthy(self) -> bool:
        try:
            self.check_health()
        except WorkspaceNotFoundError:
            return False
        return True


def register_backend() -> None:
    """Register GitVCS with the backend registry (idempotent)."""
    if not registry.is_registered(VCSBackend.GIT):
        registry.register(VCSBackend.GIT, GitVCS)


register_backend()
