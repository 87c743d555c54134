"""
Tests for VCS detection.

Marker-walk tests build fake ``.git`` / ``.jj`` entries in tmp_path so they
run without either tool; availability is patched where it matters.
"""

from pathlib import Path

import pytest

from beads_vcs.vcs import VCSBackend, detection
from beads_vcs.vcs.detection import (
    _clear_detection_cache,
    detect,
    detect_with_availability,
    find_jj,
    must_detect,
    parse_git_version,
    parse_jj_version,
    preferred_vcs,
    resolve_git_worktree_root,
)
from beads_vcs.vcs.exceptions import NotInVCSError, VCSNotFoundError


def _set_available(monkeypatch, git: bool, jj: bool) -> None:
    monkeypatch.setattr(detection, "is_git_available", lambda: git)
    monkeypatch.setattr(detection, "is_jj_available", lambda: jj)


@pytest.fixture
def fake_repo(tmp_path) -> Path:
    root = tmp_path / "project"
    (root / "src" / "pkg").mkdir(parents=True)
    return root.resolve()


# =============================================================================
# Marker walk
# =============================================================================


class TestDetect:
    def test_plain_git(self, fake_repo):
        (fake_repo / ".git").mkdir()
        result = detect(fake_repo / "src" / "pkg")
        assert result.backend == VCSBackend.GIT
        assert result.repo_root == fake_repo
        assert result.vcs_dir == fake_repo / ".git"
        assert result.has_git and not result.has_jj
        assert not result.colocated
        assert result.main_repo_root == fake_repo

    def test_plain_jj(self, fake_repo):
        (fake_repo / ".jj").mkdir()
        result = detect(fake_repo / "src")
        assert result.backend == VCSBackend.JUJUTSU
        assert result.vcs_dir == fake_repo / ".jj"
        assert result.has_jj and not result.has_git

    def test_colocated(self, fake_repo):
        (fake_repo / ".git").mkdir()
        (fake_repo / ".jj").mkdir()
        result = detect(fake_repo)
        assert result.backend == VCSBackend.COLOCATED
        assert result.colocated
        assert result.has_git and result.has_jj

    def test_repo_root_is_prefix_of_path(self, fake_repo):
        (fake_repo / ".git").mkdir()
        start = fake_repo / "src" / "pkg"
        result = detect(start)
        assert start.resolve().is_relative_to(result.repo_root)

    def test_nearest_marker_wins(self, fake_repo):
        (fake_repo / ".git").mkdir()
        nested = fake_repo / "src"
        (nested / ".jj").mkdir()
        assert detect(nested / "pkg").repo_root == nested

    def test_start_at_a_file(self, fake_repo):
        (fake_repo / ".git").mkdir()
        file_path = fake_repo / "src" / "pkg" / "mod.py"
        file_path.write_text("x = 1\n")
        assert detect(file_path).repo_root == fake_repo

    def test_not_in_vcs(self, tmp_path):
        lonely = tmp_path / "lonely"
        lonely.mkdir()
        # tmp_path itself may sit inside a repository on some machines.
        if must_detect(tmp_path) is not None:
            pytest.skip("tmp_path is inside a repository")
        with pytest.raises(NotInVCSError):
            detect(lonely)

    def test_must_detect_returns_none(self, tmp_path):
        if must_detect(tmp_path) is not None:
            pytest.skip("tmp_path is inside a repository")
        assert must_detect(tmp_path / "nowhere") is None


# =============================================================================
# Worktree indirection
# =============================================================================


class TestWorktrees:
    def test_worktree_resolves_to_main_root(self, tmp_path):
        main = (tmp_path / "main").resolve()
        admin = main / ".git" / "worktrees" / "feature"
        admin.mkdir(parents=True)
        worktree = (tmp_path / "feature").resolve()
        worktree.mkdir()
        (worktree / ".git").write_text(f"gitdir: {admin}\n")

        result = detect(worktree)
        assert result.is_worktree
        assert result.repo_root == worktree
        assert result.main_repo_root == main
        assert result.vcs_dir == admin

    def test_detect_from_nested_worktree_directory(self, tmp_path):
        main = (tmp_path / "repo").resolve()
        admin = main / ".git" / "worktrees" / "w1"
        admin.mkdir(parents=True)
        worktree = (tmp_path / "wt").resolve()
        nested = worktree / "a" / "b"
        nested.mkdir(parents=True)
        (worktree / ".git").write_text(f"gitdir: {admin}\n")

        result = detect(nested)
        assert result.repo_root == worktree
        assert result.vcs_dir == admin
        assert result.main_repo_root == main

    def test_relative_gitdir(self, tmp_path):
        main = (tmp_path / "main").resolve()
        (main / ".git" / "worktrees" / "wt").mkdir(parents=True)
        worktree = (tmp_path / "wt").resolve()
        worktree.mkdir()
        git_file = worktree / ".git"
        git_file.write_text("gitdir: ../main/.git/worktrees/wt\n")

        assert resolve_git_worktree_root(worktree, git_file) == (main, main / ".git" / "worktrees" / "wt")

    def test_beads_worktrees_marker(self, tmp_path):
        main = (tmp_path / "main").resolve()
        worktree = main / ".git" / "beads-worktrees" / "sync"
        worktree.mkdir(parents=True)
        git_file = worktree / ".git"
        git_file.write_text(f"gitdir: {main}/.git/beads-worktrees/sync\n")

        assert resolve_git_worktree_root(worktree, git_file) == (main, worktree)

    def test_unrecognised_gitdir_falls_back_to_worktree(self, tmp_path):
        worktree = tmp_path / "odd"
        worktree.mkdir()
        git_file = worktree / ".git"
        git_file.write_text(f"gitdir: {tmp_path}/elsewhere/.git\n")
        assert resolve_git_worktree_root(worktree, git_file) == (worktree, tmp_path / "elsewhere" / ".git")

    def test_missing_gitdir_line_falls_back_to_worktree(self, tmp_path):
        worktree = tmp_path / "plain"
        worktree.mkdir()
        git_file = worktree / ".git"
        git_file.write_text("not a gitdir file\n")
        assert resolve_git_worktree_root(worktree, git_file) == (worktree, git_file)

        result = detect(worktree)
        assert result.is_worktree
        assert result.repo_root == worktree.resolve()
        assert result.main_repo_root == worktree.resolve()
        assert result.vcs_dir == git_file.resolve()


# =============================================================================
# Availability
# =============================================================================


class TestDetectWithAvailability:
    def test_colocated_without_jj_reports_git(self, monkeypatch, fake_repo):
        (fake_repo / ".git").mkdir()
        (fake_repo / ".jj").mkdir()
        _set_available(monkeypatch, git=True, jj=False)

        result = detect_with_availability(fake_repo)
        assert result.backend == VCSBackend.GIT
        assert result.has_git and not result.has_jj
        assert not result.colocated
        assert result.vcs_dir == fake_repo / ".git"

    def test_colocated_without_git_reports_jj(self, monkeypatch, fake_repo):
        (fake_repo / ".git").mkdir()
        (fake_repo / ".jj").mkdir()
        _set_available(monkeypatch, git=False, jj=True)

        result = detect_with_availability(fake_repo)
        assert result.backend == VCSBackend.JUJUTSU
        assert result.has_jj and not result.has_git

    def test_colocated_with_both(self, monkeypatch, fake_repo):
        (fake_repo / ".git").mkdir()
        (fake_repo / ".jj").mkdir()
        _set_available(monkeypatch, git=True, jj=True)
        assert detect_with_availability(fake_repo).colocated

    def test_jj_repo_without_jj(self, monkeypatch, fake_repo):
        (fake_repo / ".jj").mkdir()
        _set_available(monkeypatch, git=True, jj=False)
        with pytest.raises(VCSNotFoundError):
            detect_with_availability(fake_repo)

    def test_git_repo_without_git(self, monkeypatch, fake_repo):
        (fake_repo / ".git").mkdir()
        _set_available(monkeypatch, git=False, jj=True)
        with pytest.raises(VCSNotFoundError):
            detect_with_availability(fake_repo)


class TestToolLookup:
    def test_well_known_location_is_used(self, monkeypatch, tmp_path):
        fake_jj = tmp_path / "jj"
        fake_jj.write_text("#!/bin/sh\necho 'jj 0.23.0'\n")
        fake_jj.chmod(0o755)
        monkeypatch.setattr(detection.shutil, "which", lambda name: None)
        monkeypatch.setattr(detection, "_JJ_LOCATIONS", (str(fake_jj),))
        _clear_detection_cache()

        assert find_jj() == str(fake_jj)

    def test_not_found_anywhere(self, monkeypatch, tmp_path):
        monkeypatch.setattr(detection.shutil, "which", lambda name: None)
        monkeypatch.setattr(detection, "_JJ_LOCATIONS", (str(tmp_path / "missing"),))
        _clear_detection_cache()

        assert find_jj() is None
        assert detection.is_jj_available() is False

    @pytest.mark.parametrize(
        ("output", "expected"),
        [
            ("jj 0.23.0", "0.23.0"),
            ("jj 0.24.0-abcdef123", "0.24.0"),
            ("jj nightly", "nightly"),
            ("something else", "unknown"),
        ],
    )
    def test_parse_jj_version(self, output, expected):
        assert parse_jj_version(output) == expected

    @pytest.mark.parametrize(
        ("output", "expected"),
        [
            ("git version 2.43.0", "2.43.0"),
            ("git version 2.43.0.windows.1", "2.43.0"),
            ("git version 2.43", "2.43"),
        ],
    )
    def test_parse_git_version(self, output, expected):
        assert parse_git_version(output) == expected

    def test_preferred_vcs_follows_env(self, monkeypatch):
        assert preferred_vcs() == VCSBackend.JUJUTSU
        monkeypatch.setenv("BD_VCS", "git")
        assert preferred_vcs() == VCSBackend.GIT
