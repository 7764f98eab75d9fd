"""Merge verification and landing of sprint branches on the target branch."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from swarm.engine import EngineResult
from swarm.events import EventSink, NullSink
from swarm.exceptions import GitOperationError, MergeIntegrityError, SwarmError
from swarm.git import GitOps
from swarm.logging import get_logger
from swarm.merge_agent import MergeAgent

logger = get_logger("merge")


@dataclass
class LandResult:
    """Result of landing a sprint branch on the target branch."""

    success: bool
    feature_branch: str
    target_branch: str
    attempts: int = 1
    merge_commit: str | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "feature_branch": self.feature_branch,
            "target_branch": self.target_branch,
            "attempts": self.attempts,
            "merge_commit": self.merge_commit,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


def verify_with_one_retry(
    verify: Callable[[], None],
    retry: Callable[[], EngineResult],
) -> int:
    """Verify a merge, re-running the merge agent exactly once on failure.

    Args:
        verify: Raises ``SwarmError`` when the merge is not in place
        retry: Re-runs the merge agent

    Returns:
        Number of verification attempts (1 or 2)

    Raises:
        MergeIntegrityError: If the retry fails or the second verification
            fails; the message carries both failures
    """
    try:
        verify()
        return 1
    except SwarmError as e:
        first_error = str(e)
    logger.warning(f"Merge verification failed (attempt 1): {first_error}")

    retry_result = retry()
    if not retry_result.success:
        detail = retry_result.error or "unknown error"
        raise MergeIntegrityError(f"merge agent failed: attempt 1: {first_error}; retry failed: {detail}")

    try:
        verify()
    except SwarmError as e:
        raise MergeIntegrityError(
            f"merge agent failed after retry: attempt 1: {first_error}; attempt 2: {e}"
        ) from e

    logger.info("Merge verification succeeded on retry (attempt 2)")
    return 2


class MergeCoordinator:
    """Verify and land sprint branches."""

    def __init__(
        self,
        repo_path: str | Path,
        merge_agent: MergeAgent,
        sink: EventSink | None = None,
    ) -> None:
        """Initialize merge coordinator.

        Args:
            repo_path: Path to the git repository
            merge_agent: Performs the merge (git- or engine-backed)
            sink: Receives human-readable merge progress
        """
        self.git = GitOps(repo_path)
        self.merge_agent = merge_agent
        self.sink = sink or NullSink()

    def ensure_feature_merged(self, feature_branch: str, target_branch: str) -> None:
        """Check that ``feature_branch`` was merged into ``target_branch`` with a merge commit.

        Ancestry alone is not enough: a squash or fast-forward can leave the
        feature reachable while the tip of the target has a single parent.

        Raises:
            MergeIntegrityError: If not merged, or the target tip is not a merge commit
            GitOperationError: If git cannot answer
        """
        if not self.git.is_ancestor(feature_branch, target_branch):
            raise MergeIntegrityError(
                f"{feature_branch} is not merged into {target_branch}",
                feature_branch=feature_branch,
                target_branch=target_branch,
            )
        if feature_branch == target_branch:
            return

        parents = self.git.parent_count(target_branch)
        if parents < 2:
            raise MergeIntegrityError(
                f"squash-merge detected: tip of {target_branch} has {parents} parent(s), "
                f"expected a merge commit for {feature_branch}",
                feature_branch=feature_branch,
                target_branch=target_branch,
                parent_count=parents,
            )

    def run_merge_agent_with_retry(
        self, feature_branch: str, target_branch: str, repo_dir: Path
    ) -> int:
        """Verify the merge; on failure re-run the merge agent once and verify again.

        Returns:
            Number of verification attempts

        Raises:
            MergeIntegrityError: If the merge is still not verified after one retry
        """
        return verify_with_one_retry(
            lambda: self.ensure_feature_merged(feature_branch, target_branch),
            lambda: self.merge_agent.run(feature_branch, target_branch, repo_dir),
        )

    def land(self, feature_branch: str, target_branch: str, repo_dir: str | Path) -> LandResult:
        """Merge ``feature_branch`` into ``target_branch`` (checked out at ``repo_dir``) and verify.

        Failures are reported in the result rather than raised.
        """
        repo_dir = Path(repo_dir)
        logger.info(f"Landing {feature_branch} on {target_branch}")

        first = self.merge_agent.run(feature_branch, target_branch, repo_dir)
        if not first.success:
            logger.warning(f"Merge agent reported failure: {first.error}")

        try:
            attempts = self.run_merge_agent_with_retry(feature_branch, target_branch, repo_dir)
        except (MergeIntegrityError, GitOperationError) as e:
            self.sink.append(f"Merge of {feature_branch} into {target_branch} failed: {e}")
            logger.error(f"Failed to land {feature_branch}: {e}")
            return LandResult(False, feature_branch, target_branch, attempts=2, error=str(e))

        commit = self.git.get_commit(target_branch)
        self.sink.append(f"Merged {feature_branch} into {target_branch} ({commit[:8]})")
        return LandResult(True, feature_branch, target_branch, attempts=attempts, merge_commit=commit)
