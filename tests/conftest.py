from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from beads_vcs.vcs import features
from beads_vcs.vcs.detection import _clear_detection_cache
from beads_vcs.vcs.factory import enable_cache, reset_cache

JJ_AVAILABLE = shutil.which("jj") is not None

_VCS_ENV_VARS = (
    features.VCS_PREFERENCE_ENV_VAR,
    features.ABSTRACTION_ENV_VAR,
    features.JJ_ENV_VAR,
    features.PREFER_JJ_ENV_VAR,
    features.TRACE_ENV_VAR,
)


def run(cmd: list[str], cwd: Path) -> subprocess.CompletedProcess[str]:
    return subprocess.run(cmd, cwd=cwd, check=True, capture_output=True, text=True)


@pytest.fixture(autouse=True)
def _isolate_vcs_state(monkeypatch: pytest.MonkeyPatch):
    for name in _VCS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_cache()
    _clear_detection_cache()
    yield
    # Restore patched attributes first so the cache clear below reaches the
    # real lru_cache-wrapped functions rather than test stand-ins.
    monkeypatch.undo()
    enable_cache()
    reset_cache()
    _clear_detection_cache()


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    """A git repository on ``main`` with one commit."""
    repo = tmp_path / "repo"
    repo.mkdir()
    run(["git", "init", "-b", "main"], cwd=repo)
    run(["git", "config", "user.name", "Beads Test"], cwd=repo)
    run(["git", "config", "user.email", "beads@example.com"], cwd=repo)
    run(["git", "config", "commit.gpgsign", "false"], cwd=repo)
    (repo / "README.md").write_text("# Test Repo\n", encoding="utf-8")
    run(["git", "add", "."], cwd=repo)
    run(["git", "commit", "-m", "Initial commit"], cwd=repo)
    return repo.resolve()


@pytest.fixture()
def jj_repo(tmp_path: Path) -> Path:
    """A colocated jj repository with a ``main`` bookmark on one commit."""
    if not JJ_AVAILABLE:
        pytest.skip("jj not installed")
    repo = tmp_path / "jj-repo"
    repo.mkdir()
    run(["jj", "git", "init", "--colocate"], cwd=repo)
    run(["jj", "config", "set", "--repo", "user.name", "Beads Test"], cwd=repo)
    run(["jj", "config", "set", "--repo", "user.email", "beads@example.com"], cwd=repo)
    (repo / "README.md").write_text("# Test Repo\n", encoding="utf-8")
    run(["jj", "describe", "-m", "Initial commit"], cwd=repo)
    run(["jj", "bookmark", "create", "main", "-r", "@"], cwd=repo)
    run(["jj", "new"], cwd=repo)
    return repo.resolve()
