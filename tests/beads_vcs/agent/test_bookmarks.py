"""
Tests for the agent bookmark lifecycle.

The lifecycle runs against real git repositories; the jj variants are
skipped when jj is not installed.
"""

import shutil
from unittest.mock import MagicMock, call

import pytest

from beads_vcs.agent import (
    AgentExistsError,
    AgentNotFoundError,
    BaseMissingError,
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
    list_agents,
    normalize_agent_id,
    recover,
    spawn,
    status,
)
from beads_vcs.vcs import OperationInfo
from beads_vcs.vcs.exceptions import NotSupportedError, RefExistsError, VCSError
from beads_vcs.vcs.git import GitVCS
from beads_vcs.vcs.jujutsu import JujutsuVCS

JJ_AVAILABLE = shutil.which("jj") is not None


@pytest.fixture
def vcs(git_repo) -> GitVCS:
    return GitVCS(git_repo)


# =============================================================================
# Naming
# =============================================================================


class TestNaming:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("47", "agent-47"),
            ("agent-47", "agent-47"),
            ("  12 ", "agent-12"),
            ("bob", "agent-bob"),
            ("archive/agent-47", "archive/agent-47"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_agent_id(raw) == expected

    @pytest.mark.parametrize("raw", ["47", "agent-47", "archive/agent-47"])
    def test_normalize_is_idempotent(self, raw):
        once = normalize_agent_id(raw)
        assert normalize_agent_id(once) == once

    def test_normalize_rejects_empty(self):
        with pytest.raises(ValueError):
            normalize_agent_id("   ")

    def test_archive_name(self):
        assert archive_bookmark_name("47") == "archive/agent-47"
        assert archive_bookmark_name("archive/agent-47") == "archive/agent-47"


# =============================================================================
# Lifecycle on git
# =============================================================================


class TestSpawn:
    def test_spawn_creates_and_activates_bookmark(self, vcs):
        main_hash = vcs.get_commit_hash("main")
        agent = spawn(vcs, SpawnOptions(agent_id="47"))

        assert agent.id == "agent-47"
        assert agent.bookmark == "agent-47"
        assert agent.based_on == "main"
        assert vcs.ref_exists("agent-47")
        assert vcs.get_commit_hash("agent-47") != main_hash
        assert vcs.get_commit_hash("agent-47~1") == main_hash
        assert vcs.current_ref() == "agent-47"
        assert vcs.get_commit_hash("main") == main_hash

    def test_spawn_twice_fails(self, vcs):
        spawn(vcs, SpawnOptions(agent_id="47"))
        with pytest.raises(AgentExistsError) as exc_info:
            spawn(vcs, SpawnOptions(agent_id="agent-47"))
        assert isinstance(exc_info.value, RefExistsError)
        assert any("spawn agent-47" in note for note in exc_info.value.__notes__)

    def test_spawn_from_missing_base(self, vcs):
        with pytest.raises(BaseMissingError):
            spawn(vcs, SpawnOptions(agent_id="1", base_branch="does-not-exist"))
        assert not vcs.ref_exists("agent-1")

    def test_spawn_description_becomes_commit_message(self, vcs):
        spawn(vcs, SpawnOptions(agent_id="5", description="Fix the parser"))
        message = vcs.exec("log", "-1", "--format=%s", "agent-5").stdout.strip()
        assert message == "Fix the parser"


class TestHandoff:
    def test_handoff_with_archive(self, vcs):
        spawn(vcs, SpawnOptions(agent_id="47"))
        source_hash = vcs.get_commit_hash("agent-47")

        agent = handoff(
            vcs, HandoffOptions(from_agent="47", to_agent="48", reason="shift change", archive_old=True)
        )

        assert agent.bookmark == "agent-48"
        assert agent.based_on == "agent-47"
        assert vcs.current_ref() == "agent-48"
        assert vcs.get_commit_hash("agent-48~1") == source_hash
        assert not vcs.ref_exists("agent-47")
        assert vcs.get_commit_hash("archive/agent-47") == source_hash

    def test_handoff_keeps_source_by_default(self, vcs):
        spawn(vcs, SpawnOptions(agent_id="1"))
        handoff(vcs, HandoffOptions(from_agent="1", to_agent="2"))
        assert vcs.ref_exists("agent-1")
        assert vcs.ref_exists("agent-2")

    def test_handoff_from_unknown_agent(self, vcs):
        with pytest.raises(AgentNotFoundError):
            handoff(vcs, HandoffOptions(from_agent="9", to_agent="10"))

    def test_handoff_to_existing_agent(self, vcs):
        spawn(vcs, SpawnOptions(agent_id="1"))
        spawn(vcs, SpawnOptions(agent_id="2"))
        with pytest.raises(AgentExistsError):
            handoff(vcs, HandoffOptions(from_agent="1", to_agent="2"))


class TestComplete:
    def test_complete_lands_on_main(self, vcs):
        spawn(vcs, SpawnOptions(agent_id="47"))
        handoff(vcs, HandoffOptions(from_agent="47", to_agent="48", archive_old=True))
        agent_hash = vcs.get_commit_hash("agent-48")

        complete(vcs, CompleteOptions(agent_id="48"))

        assert vcs.get_commit_hash("main") == agent_hash
        assert not vcs.ref_exists("agent-48")

    def test_complete_rebases_onto_moved_target(self, vcs, git_repo):
        spawn(vcs, SpawnOptions(agent_id="1"))
        (git_repo / "agent.txt").write_text("agent\n")
        vcs.exec("add", "agent.txt")
        vcs.exec("commit", "-m", "Agent change")

        vcs.switch_ref("main")
        (git_repo / "main.txt").write_text("main\n")
        vcs.exec("add", "main.txt")
        vcs.exec("commit", "-m", "Main change")
        main_hash = vcs.get_commit_hash("main")

        complete(vcs, CompleteOptions(agent_id="1", delete_bookmark=False))

        assert vcs.ref_exists("agent-1")
        assert vcs.get_commit_hash("main") == vcs.get_commit_hash("agent-1")
        assert vcs.extract_file_from_ref("main", "agent.txt") == b"agent\n"
        assert vcs.extract_file_from_ref("main", "main.txt") == b"main\n"
        assert vcs.has_divergence("main", main_hash).local_ahead == 2

    def test_complete_with_archive(self, vcs):
        spawn(vcs, SpawnOptions(agent_id="3"))
        complete(vcs, CompleteOptions(agent_id="3", archive_bookmark=True))
        assert not vcs.ref_exists("agent-3")
        assert vcs.get_commit_hash("archive/agent-3") == vcs.get_commit_hash("main")

    def test_complete_unknown_agent(self, vcs):
        with pytest.raises(AgentNotFoundError):
            complete(vcs, CompleteOptions(agent_id="404"))

    def test_complete_into_missing_target(self, vcs):
        spawn(vcs, SpawnOptions(agent_id="1"))
        with pytest.raises(BaseMissingError):
            complete(vcs, CompleteOptions(agent_id="1", target="release"))


class TestInspection:
    def test_list_agents_flags_archives_and_skips_other_refs(self, vcs):
        spawn(vcs, SpawnOptions(agent_id="1"))
        spawn(vcs, SpawnOptions(agent_id="2"))
        archive_agent(vcs, "1")
        vcs.create_ref("feature")
        vcs.create_ref("archive/feature")

        agents = {agent.bookmark: agent for agent in list_agents(vcs)}
        assert set(agents) == {"agent-2", "archive/agent-1"}
        assert agents["archive/agent-1"].is_archived
        assert not agents["agent-2"].is_archived
        assert agents["agent-2"].change_id == vcs.get_commit_hash("agent-2")
        assert all(agent.exists for agent in agents.values())

    def test_status_of_active_agent(self, vcs, git_repo):
        spawn(vcs, SpawnOptions(agent_id="7"))
        clean = status(vcs, "7")
        assert clean.exists
        assert clean.change_id == vcs.get_commit_hash("agent-7")
        assert not clean.has_changes

        (git_repo / "wip.txt").write_text("wip\n")
        assert status(vcs, "agent-7").has_changes

    def test_status_of_inactive_agent_ignores_working_copy(self, vcs, git_repo):
        spawn(vcs, SpawnOptions(agent_id="7"))
        vcs.switch_ref("main")
        (git_repo / "wip.txt").write_text("wip\n")
        assert not status(vcs, "7").has_changes

    def test_status_of_archived_agent(self, vcs):
        spawn(vcs, SpawnOptions(agent_id="7"))
        archive_agent(vcs, "7")
        result = status(vcs, "7")
        assert not result.exists
        assert result.is_archived
        assert result.to_dict()["bookmark"] == "agent-7"

    def test_status_of_archive_bookmark_itself(self, vcs):
        spawn(vcs, SpawnOptions(agent_id="7"))
        archive_agent(vcs, "7")
        result = status(vcs, "archive/agent-7")
        assert result.bookmark == "archive/agent-7"
        assert result.exists
        assert result.is_archived
        assert result.change_id == vcs.get_commit_hash("archive/agent-7")

    def test_delete_agent(self, vcs):
        spawn(vcs, SpawnOptions(agent_id="8"))
        delete_agent(vcs, "8")
        assert not vcs.ref_exists("agent-8")
        with pytest.raises(AgentNotFoundError):
            delete_agent(vcs, "8")


class TestArchiveRollback:
    def test_failed_delete_removes_archive_copy(self):
        vcs = MagicMock()
        vcs.ref_exists.return_value = True
        vcs.delete_ref.side_effect = [VCSError("branch is locked"), None]

        with pytest.raises(VCSError) as exc_info:
            archive_agent(vcs, "1")

        vcs.create_ref.assert_called_once_with("archive/agent-1", "agent-1")
        assert vcs.delete_ref.call_args_list == [call("agent-1"), call("archive/agent-1")]
        assert "archive agent-1: deleting original bookmark" in exc_info.value.__notes__


# =============================================================================
# Recovery
# =============================================================================


class TestRecovery:
    def test_anchor_is_newest_mention(self):
        vcs = MagicMock()
        vcs.get_operation_log.return_value = [
            OperationInfo(id="op3", description="snapshot working copy"),
            OperationInfo(id="op2", description="delete bookmark agent-5"),
            OperationInfo(id="op1", description="create bookmark agent-5"),
        ]
        assert find_recovery_anchor(vcs, "5").id == "op2"
        vcs.get_operation_log.assert_called_once_with(100)

    def test_explicit_operation_prefix(self):
        vcs = MagicMock()
        vcs.get_operation_log.return_value = [
            OperationInfo(id="abc123", description="x"),
            OperationInfo(id="def456", description="y"),
        ]
        assert find_recovery_anchor(vcs, "5", operation_id="def").id == "def456"
        with pytest.raises(NoRecoveryAnchorError):
            find_recovery_anchor(vcs, "5", operation_id="zzz")

    def test_recover_uses_anchor_and_default_name(self):
        vcs = MagicMock()
        vcs.ref_exists.return_value = False
        vcs.get_operation_log.return_value = [
            OperationInfo(id="op2", description="delete bookmark agent-5"),
        ]
        vcs.ref_at_operation.return_value = "c0ffee"

        agent = recover(vcs, RecoverOptions(agent_id="5"))

        vcs.ref_at_operation.assert_called_once_with("agent-5", "op2")
        vcs.create_ref.assert_called_once_with("agent-5-recovered", "c0ffee")
        assert agent.bookmark == "agent-5-recovered"
        assert agent.based_on == "c0ffee"

    def test_recover_without_anchor(self, vcs):
        with pytest.raises(NoRecoveryAnchorError):
            recover(vcs, RecoverOptions(agent_id="999"))

    def test_recover_on_git_is_not_supported(self, vcs):
        spawn(vcs, SpawnOptions(agent_id="47"))
        vcs.switch_ref("main")
        delete_agent(vcs, "47")

        with pytest.raises(NotSupportedError) as exc_info:
            recover(vcs, RecoverOptions(agent_id="47"))
        assert any("resolving at operation" in note for note in exc_info.value.__notes__)
        assert not vcs.ref_exists("agent-47-recovered")

    def test_recover_target_must_not_exist(self, vcs):
        spawn(vcs, SpawnOptions(agent_id="1"))
        spawn(vcs, SpawnOptions(agent_id="2"))
        with pytest.raises(AgentExistsError):
            recover(vcs, RecoverOptions(agent_id="1", recover_to_id="2"))


# =============================================================================
# Lifecycle on jj
# =============================================================================


@pytest.mark.skipif(not JJ_AVAILABLE, reason="jj not installed")
class TestJujutsuLifecycle:
    @pytest.fixture
    def jj_vcs(self, jj_repo) -> JujutsuVCS:
        return JujutsuVCS(jj_repo)

    def test_spawn_and_complete(self, jj_vcs):
        main_hash = jj_vcs.get_commit_hash("main")
        spawn(jj_vcs, SpawnOptions(agent_id="47"))
        assert jj_vcs.current_ref() == "agent-47"
        agent_hash = jj_vcs.get_commit_hash("agent-47")
        assert agent_hash != main_hash

        complete(jj_vcs, CompleteOptions(agent_id="47"))
        assert jj_vcs.get_commit_hash("main") == agent_hash
        assert not jj_vcs.ref_exists("agent-47")

    def test_recover_deleted_agent(self, jj_vcs):
        spawn(jj_vcs, SpawnOptions(agent_id="50"))
        lost_hash = jj_vcs.get_commit_hash("agent-50")
        delete_agent(jj_vcs, "50")

        agent = recover(jj_vcs, RecoverOptions(agent_id="50"))

        assert agent.bookmark == "agent-50-recovered"
        assert jj_vcs.get_commit_hash("agent-50-recovered") == lost_hash
