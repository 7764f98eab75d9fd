"""Merge agents land a sprint branch on the target branch.

``GitMergeAgent`` performs the merge directly. ``EngineMergeAgent`` hands the
job (including conflict resolution) to an engine. Either way the outcome is
verified afterwards by ``MergeCoordinator``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from swarm.constants import SCRUM_MASTER_EMAIL, SCRUM_MASTER_NAME, EngineType
from swarm.engine import Engine, EngineResult
from swarm.logging import get_logger
from swarm.worktree import WorktreeManager

logger = get_logger("merge_agent")

MERGE_AGENT_NAME = "MergeAgent"
DEFAULT_CO_AUTHOR = f"{SCRUM_MASTER_NAME} <{SCRUM_MASTER_EMAIL}>"


class MergeAgent(Protocol):
    def run(self, feature_branch: str, target_branch: str, repo_dir: Path) -> EngineResult: ...


def _normalize_branch(label: str, branch: str) -> str:
    branch = branch.strip()
    if not branch:
        raise ValueError(f"{label} branch name is empty")
    return branch


def generate_merge_agent_prompt(
    feature_branch: str, target_branch: str, co_author: str = DEFAULT_CO_AUTHOR
) -> str:
    """Instructions for an engine-backed merge.

    Raises:
        ValueError: If either branch name is empty
    """
    feature = _normalize_branch("feature", feature_branch)
    target = _normalize_branch("target", target_branch)
    return (
        f"Merge the branch `{feature}` into `{target}` in this repository.\n\n"
        f"1. Check out `{target}`.\n"
        f"2. Run `git merge --no-ff {feature}`. Never squash or fast-forward.\n"
        "3. Resolve any conflicts so both sides' intent is kept, then commit the merge.\n"
        f"4. Add the trailer `Co-Authored-By: {co_author}` to the merge commit.\n"
        f"5. Confirm `git merge-base --is-ancestor {feature} {target}` succeeds.\n"
    )


class GitMergeAgent:
    """Merge the sprint branch with plain git (no conflict resolution)."""

    def __init__(self, worktrees: WorktreeManager) -> None:
        self.worktrees = worktrees

    def run(self, feature_branch: str, target_branch: str, repo_dir: Path) -> EngineResult:
        result = self.worktrees.merge_feature_branch(repo_dir, feature_branch, target_branch)
        if result.ok:
            return EngineResult.ok(result.describe())
        return EngineResult.failure(result.describe())


class EngineMergeAgent:
    """Ask an engine to perform (and if necessary resolve) the merge.

    A stub engine cannot merge, so in stub mode the merge is done with git.
    """

    def __init__(
        self, engine: Engine, worktrees: WorktreeManager, co_author: str = DEFAULT_CO_AUTHOR
    ) -> None:
        self.engine = engine
        self.co_author = co_author
        self._git_merge = GitMergeAgent(worktrees)

    def run(self, feature_branch: str, target_branch: str, repo_dir: Path) -> EngineResult:
        try:
            prompt = generate_merge_agent_prompt(feature_branch, target_branch, self.co_author)
        except ValueError as e:
            return EngineResult.failure(str(e))

        if getattr(self.engine, "engine_type", None) == EngineType.STUB:
            logger.info(f"Stub merge agent: {feature_branch} -> {target_branch}")
            return self._git_merge.run(feature_branch, target_branch, repo_dir)

        logger.info(f"Running merge agent: {feature_branch} -> {target_branch}")
        return self.engine.execute(MERGE_AGENT_NAME, prompt, repo_dir, 0, None)
