"""
VCS Detection Module
====================

This module finds the repository that contains a path and reports which
VCS tools are installed.

Detection walks upward from the starting path looking for a ``.jj``
directory or a ``.git`` entry. A ``.git`` *file* marks a git worktree; its
``gitdir:`` line is followed back to the main repository. Availability
probes search PATH and a few well-known install locations, and are cached
for the life of the process.
"""

from __future__ import annotations

import dataclasses
import os
import re
import shutil
import subprocess
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from .exceptions import NotInVCSError, VCSNotFoundError
from .features import preferred_backend
from .types import VCSBackend

_WORKTREE_MARKERS = ("/worktrees/", "/beads-worktrees/")

_JJ_LOCATIONS = (
    "/usr/local/bin/jj",
    "/opt/homebrew/bin/jj",
    "~/.cargo/bin/jj",
)

_GIT_LOCATIONS = (
    "/usr/bin/git",
    "/usr/local/bin/git",
    "/opt/homebrew/bin/git",
)


@dataclass(frozen=True)
class DetectionResult:
    """Where a repository lives and which backends it carries."""

    backend: VCSBackend
    repo_root: Path
    vcs_dir: Path
    has_git: bool = False
    has_jj: bool = False
    colocated: bool = False
    is_worktree: bool = False
    main_repo_root: Path | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "backend": self.backend.value,
            "repo_root": str(self.repo_root),
            "vcs_dir": str(self.vcs_dir),
            "has_git": self.has_git,
            "has_jj": self.has_jj,
            "colocated": self.colocated,
            "is_worktree": self.is_worktree,
            "main_repo_root": str(self.main_repo_root or self.repo_root),
        }


# =============================================================================
# Tool Detection Functions
# =============================================================================


def _find_executable(name: str, locations: tuple[str, ...]) -> str | None:
    found = shutil.which(name)
    if found:
        return found
    for location in locations:
        candidate = os.path.expanduser(location)
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return None


@lru_cache(maxsize=1)
def find_jj() -> str | None:
    """Return the path of the jj executable, or None."""
    return _find_executable("jj", _JJ_LOCATIONS)


@lru_cache(maxsize=1)
def find_git() -> str | None:
    """Return the path of the git executable, or None."""
    return _find_executable("git", _GIT_LOCATIONS)


def jj_executable() -> str:
    return find_jj() or "jj"


def git_executable() -> str:
    return find_git() or "git"


def _responds_to_version(executable: str | None) -> bool:
    if executable is None:
        return False
    try:
        result = subprocess.run(
            [executable, "--version"],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


@lru_cache(maxsize=1)
def is_jj_available() -> bool:
    """
    Check if jj is installed and working.

    Returns:
        True if jj is found and responds to --version, False otherwise.
    """
    return _responds_to_version(find_jj())


@lru_cache(maxsize=1)
def is_git_available() -> bool:
    """
    Check if git is installed and working.

    Returns:
        True if git is found and responds to --version, False otherwise.
    """
    return _responds_to_version(find_git())


def _version_output(executable: str) -> str | None:
    try:
        result = subprocess.run(
            [executable, "--version"],
            capture_output=True,
            timeout=5,
            text=True,
        )
    except (subprocess.TimeoutExpired, OSError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip()


@lru_cache(maxsize=1)
def get_jj_version() -> str | None:
    """
    Get installed jj version, or None if not installed.

    Returns:
        Version string (e.g., "0.23.0") or None if jj is not available.
    """
    if not is_jj_available():
        return None
    output = _version_output(jj_executable())
    if output is None:
        return None
    return parse_jj_version(output)


@lru_cache(maxsize=1)
def get_git_version() -> str | None:
    """
    Get installed git version, or None if not installed.

    Returns:
        Version string (e.g., "2.43.0") or None if git is not available.
    """
    if not is_git_available():
        return None
    output = _version_output(git_executable())
    if output is None:
        return None
    return parse_git_version(output)


def parse_jj_version(output: str) -> str:
    # jj version format: "jj 0.23.0" or "jj 0.23.0-abcdef"
    match = re.search(r"jj\s+(\d+\.\d+\.\d+)", output)
    if match:
        return match.group(1)
    if output.startswith("jj "):
        return output[3:].strip()
    return "unknown"


def parse_git_version(output: str) -> str:
    # git version format: "git version 2.43.0" or "git version 2.43.0.windows.1"
    match = re.search(r"git version\s+(\d+\.\d+\.\d+)", output)
    if match:
        return match.group(1)
    if "git version " in output:
        return output.split("git version ")[1].strip()
    return "unknown"


def detect_available_backends() -> list[VCSBackend]:
    """
    Detect which VCS tools are installed and available.

    Returns:
        List of available backends, preferred backend first.
    """
    backends = []
    if is_jj_available():
        backends.append(VCSBackend.JUJUTSU)
    if is_git_available():
        backends.append(VCSBackend.GIT)
    if preferred_backend() == VCSBackend.GIT:
        backends.sort(key=lambda backend: backend != VCSBackend.GIT)
    return backends


def preferred_vcs() -> VCSBackend:
    """Return the backend preferred for colocated repositories (env: BD_VCS)."""
    return preferred_backend()


# =============================================================================
# Repository Detection
# =============================================================================


def resolve_git_worktree_root(worktree_root: Path, git_file: Path) -> tuple[Path, Path]:
    """
    Follow a worktree's ``.git`` file back to the main repository root.

    Args:
        worktree_root: Directory containing the ``.git`` file.
        git_file: The ``.git`` file itself.

    Returns:
        ``(main_root, git_dir)``. ``git_dir`` is the resolved ``gitdir:``
        target. When the file cannot be read or has no ``gitdir:`` line,
        this is ``(worktree_root, git_file)``; when the gitdir does not look
        like a worktree admin directory, ``main_root`` is ``worktree_root``.
    """
    try:
        content = git_file.read_text(encoding="utf-8")
    except OSError:
        return worktree_root, git_file

    gitdir = ""
    for line in content.splitlines():
        if line.startswith("gitdir:"):
            gitdir = line[len("gitdir:"):].strip()
            break
    if not gitdir:
        return worktree_root, git_file

    if not os.path.isabs(gitdir):
        gitdir = os.path.join(str(git_file.parent), gitdir)
    gitdir = os.path.normpath(gitdir).replace(os.sep, "/")

    for marker in _WORKTREE_MARKERS:
        index = gitdir.rfind(marker)
        if index >= 0:
            return Path(os.path.dirname(gitdir[:index])), Path(gitdir)
    return worktree_root, Path(gitdir)


def _git_meta_dir(root: Path) -> Path:
    git_path = root / ".git"
    if git_path.is_file():
        return resolve_git_worktree_root(root, git_path)[1]
    return git_path


def _build_result(root: Path, has_git: bool, has_jj: bool) -> DetectionResult:
    git_path = root / ".git"
    is_worktree = has_git and git_path.is_file()
    if is_worktree:
        main_root, git_dir = resolve_git_worktree_root(root, git_path)
    else:
        main_root, git_dir = root, git_path

    if has_git and has_jj:
        backend = VCSBackend.COLOCATED
    elif has_jj:
        backend = VCSBackend.JUJUTSU
    else:
        backend = VCSBackend.GIT

    return DetectionResult(
        backend=backend,
        repo_root=root,
        vcs_dir=root / ".jj" if has_jj else git_dir,
        has_git=has_git,
        has_jj=has_jj,
        colocated=has_git and has_jj,
        is_worktree=is_worktree,
        main_repo_root=main_root,
    )


def detect(path: str | Path = ".") -> DetectionResult:
    """
    Find the repository containing ``path``.

    The search walks upward from ``path`` (symlinks resolved) and stops at
    the first directory holding a ``.jj`` directory or a ``.git`` entry.

    Raises:
        NotInVCSError: The filesystem root was reached without a marker.
    """
    start = Path(path).resolve()
    current = start if start.is_dir() or not start.exists() else start.parent
    while True:
        has_jj = (current / ".jj").is_dir()
        git_path = current / ".git"
        has_git = git_path.is_dir() or git_path.is_file()
        if has_jj or has_git:
            return _build_result(current, has_git=has_git, has_jj=has_jj)
        if current.parent == current:
            raise NotInVCSError(f"{start} is not inside a git or jj repository")
        current = current.parent


def detect_with_availability(path: str | Path = ".") -> DetectionResult:
    """
    Detect the repository and reconcile it with the installed tools.

    A colocated repository is reported as plain git or plain jj when only
    one of the two tools is installed.

    Raises:
        NotInVCSError: No repository contains ``path``.
        VCSNotFoundError: The repository's tool is not installed.
    """
    result = detect(path)
    git_ok = is_git_available()
    jj_ok = is_jj_available()

    if result.colocated:
        if git_ok and jj_ok:
            return result
        if git_ok:
            return dataclasses.replace(
                result,
                backend=VCSBackend.GIT,
                has_jj=False,
                colocated=False,
                vcs_dir=_git_meta_dir(result.repo_root),
            )
        if jj_ok:
            return dataclasses.replace(
                result,
                backend=VCSBackend.JUJUTSU,
                has_git=False,
                colocated=False,
            )
        raise VCSNotFoundError(
            f"{result.repo_root} holds a git and jj repository but neither tool is installed"
        )

    if result.has_jj and not jj_ok:
        raise VCSNotFoundError(
            f"{result.repo_root} is a jj repository but jj is not installed. "
            "Install jj from https://github.com/jj-vcs/jj"
        )
    if result.has_git and not git_ok:
        raise VCSNotFoundError(
            f"{result.repo_root} is a git repository but git is not installed."
        )
    return result


def must_detect(path: str | Path = ".") -> DetectionResult | None:
    """Like detect(), but return None instead of raising NotInVCSError."""
    try:
        return detect(path)
    except NotInVCSError:
        return None


# =============================================================================
# Cache Management (for testing)
# =============================================================================


def _clear_detection_cache() -> None:
    """
    Clear the detection cache. For testing purposes only.

    This clears the cached executable lookups, availability probes and
    version strings.
    """
    find_jj.cache_clear()
    find_git.cache_clear()
    is_jj_available.cache_clear()
    is_git_available.cache_clear()
    get_jj_version.cache_clear()
    get_git_version.cache_clear()
