"""Tests for swarm.merge and swarm.merge_agent modules."""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from swarm.constants import EngineType
from swarm.engine import EngineResult, StubEngine
from swarm.events import MemorySink
from swarm.exceptions import MergeIntegrityError
from swarm.git import GitOps
from swarm.merge import MergeCoordinator, verify_with_one_retry
from swarm.merge_agent import EngineMergeAgent, GitMergeAgent, generate_merge_agent_prompt
from swarm.repo_ops import RepoOps
from swarm.worktree import WorktreeManager


def _feature_with_commit(repo: Path, git: Callable[..., str]) -> None:
    git("checkout", "-q", "-b", "feature", cwd=repo)
    (repo / "f.txt").write_text("feature")
    git("add", "-A", cwd=repo)
    git("commit", "-q", "-m", "feature work", cwd=repo)
    git("checkout", "-q", "main", cwd=repo)


class TestVerifyWithOneRetry:
    """Tests for the verify/retry protocol."""

    def test_first_verification_passes(self) -> None:
        retry = MagicMock()

        assert verify_with_one_retry(lambda: None, retry) == 1
        retry.assert_not_called()

    def test_retry_then_pass(self) -> None:
        verify = MagicMock(side_effect=[MergeIntegrityError("not merged"), None])
        retry = MagicMock(return_value=EngineResult.ok("merged"))

        assert verify_with_one_retry(verify, retry) == 2
        retry.assert_called_once()

    def test_retry_failure_message(self) -> None:
        verify = MagicMock(side_effect=MergeIntegrityError("E1"))
        retry = MagicMock(return_value=EngineResult.failure("R"))

        with pytest.raises(MergeIntegrityError) as exc_info:
            verify_with_one_retry(verify, retry)

        assert str(exc_info.value) == "merge agent failed: attempt 1: E1; retry failed: R"
        assert verify.call_count == 1

    def test_second_verification_failure_message(self) -> None:
        verify = MagicMock(side_effect=[MergeIntegrityError("E1"), MergeIntegrityError("E2")])
        retry = MagicMock(return_value=EngineResult.ok(""))

        with pytest.raises(MergeIntegrityError) as exc_info:
            verify_with_one_retry(verify, retry)

        assert str(exc_info.value) == "merge agent failed after retry: attempt 1: E1; attempt 2: E2"
        retry.assert_called_once()


class TestEnsureFeatureMerged:
    """Tests for merge verification against real history."""

    def test_true_merge_passes(self, tmp_repo: Path, git: Callable[..., str]) -> None:
        _feature_with_commit(tmp_repo, git)
        git("merge", "-q", "--no-ff", "-m", "Merge feature", "feature", cwd=tmp_repo)

        MergeCoordinator(tmp_repo, MagicMock()).ensure_feature_merged("feature", "main")

    def test_not_merged(self, tmp_repo: Path, git: Callable[..., str]) -> None:
        _feature_with_commit(tmp_repo, git)

        with pytest.raises(MergeIntegrityError, match="is not merged into"):
            MergeCoordinator(tmp_repo, MagicMock()).ensure_feature_merged("feature", "main")

    def test_fast_forward_detected(self, tmp_repo: Path, git: Callable[..., str]) -> None:
        _feature_with_commit(tmp_repo, git)
        git("merge", "-q", "--ff-only", "feature", cwd=tmp_repo)

        with pytest.raises(MergeIntegrityError) as exc_info:
            MergeCoordinator(tmp_repo, MagicMock()).ensure_feature_merged("feature", "main")

        assert "squash-merge detected" in str(exc_info.value)
        assert exc_info.value.parent_count == 1

    def test_squash_merge_detected(self, tmp_repo: Path, git: Callable[..., str]) -> None:
        _feature_with_commit(tmp_repo, git)
        git("merge", "-q", "--squash", "feature", cwd=tmp_repo)
        git("commit", "-q", "-m", "squashed", cwd=tmp_repo)

        with pytest.raises(MergeIntegrityError, match="is not merged into"):
            MergeCoordinator(tmp_repo, MagicMock()).ensure_feature_merged("feature", "main")

    def test_same_branch_passes(self, tmp_repo: Path) -> None:
        MergeCoordinator(tmp_repo, MagicMock()).ensure_feature_merged("main", "main")


class TestLand:
    """Tests for MergeCoordinator.land."""

    def test_land_with_git_merge_agent(self, tmp_repo: Path, git: Callable[..., str]) -> None:
        _feature_with_commit(tmp_repo, git)
        sink = MemorySink()
        with RepoOps() as ops:
            agent = GitMergeAgent(WorktreeManager(tmp_repo, ops))
            result = MergeCoordinator(tmp_repo, agent, sink).land("feature", "main", tmp_repo)

        assert result.success is True
        assert result.attempts == 1
        assert result.merge_commit == GitOps(tmp_repo).get_commit("main")
        assert sink.texts()[-1].startswith("Merged feature into main")

    def test_land_retries_once(self, tmp_repo: Path, git: Callable[..., str]) -> None:
        _feature_with_commit(tmp_repo, git)
        agent = MagicMock()

        def _merge_on_second_call(feature: str, target: str, repo_dir: Path) -> EngineResult:
            if agent.run.call_count == 2:
                git("merge", "-q", "--no-ff", "-m", "Merge", feature, cwd=repo_dir)
            return EngineResult.ok("")

        agent.run.side_effect = _merge_on_second_call

        result = MergeCoordinator(tmp_repo, agent).land("feature", "main", tmp_repo)

        assert result.success is True
        assert result.attempts == 2
        assert agent.run.call_count == 2

    def test_land_failure_reported(self, tmp_repo: Path, git: Callable[..., str]) -> None:
        _feature_with_commit(tmp_repo, git)
        agent = MagicMock()
        agent.run.return_value = EngineResult.failure("cannot merge")
        sink = MemorySink()

        result = MergeCoordinator(tmp_repo, agent, sink).land("feature", "main", tmp_repo)

        assert result.success is False
        assert "retry failed: cannot merge" in (result.error or "")
        assert agent.run.call_count == 2
        assert "failed" in sink.texts()[-1]


class TestMergeAgents:
    """Tests for merge agent implementations."""

    def test_prompt(self) -> None:
        prompt = generate_merge_agent_prompt(" feature ", "main")

        assert "git merge --no-ff feature" in prompt
        assert "Co-Authored-By: Swarm ScrumMaster <swarm@local>" in prompt

    def test_prompt_rejects_empty_branch(self) -> None:
        with pytest.raises(ValueError):
            generate_merge_agent_prompt("", "main")

    def test_stub_engine_merges_with_git(self, tmp_repo: Path, git: Callable[..., str]) -> None:
        _feature_with_commit(tmp_repo, git)
        engine = StubEngine()
        with RepoOps() as ops:
            agent = EngineMergeAgent(engine, WorktreeManager(tmp_repo, ops))
            result = MergeCoordinator(tmp_repo, agent).land("feature", "main", tmp_repo)

        assert result.success is True
        assert result.attempts == 1
        assert GitOps(tmp_repo).parent_count("main") == 2
        assert engine.calls == []

    def test_engine_receives_prompt(self, tmp_path: Path) -> None:
        engine = MagicMock()
        engine.engine_type = EngineType.COMMAND
        engine.execute.return_value = EngineResult.ok("done")

        result = EngineMergeAgent(engine, MagicMock()).run("f", "t", tmp_path)

        assert result.success is True
        name, prompt, workdir, turn, team_dir = engine.execute.call_args.args
        assert name == "MergeAgent"
        assert "`f` into `t`" in prompt
        assert workdir == tmp_path

    def test_empty_branch_is_failure(self, tmp_path: Path) -> None:
        result = EngineMergeAgent(MagicMock(), MagicMock()).run(" ", "t", tmp_path)

        assert result.success is False
