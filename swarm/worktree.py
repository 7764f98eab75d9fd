"""Git worktree management for agent isolation.

Every agent works in its own worktree on its own branch. Worktrees are
created fresh for each task from the sprint branch and removed once the
agent's work has been merged back. All mutations are serialized through the
repository-operations worker (``RepoOps``).
"""

from __future__ import annotations

import shutil
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from swarm.agents import AgentId
from swarm.constants import (
    DEAD_LETTER_REF_PREFIX,
    SCRUM_MASTER_EMAIL,
    SCRUM_MASTER_NAME,
    STATE_DIR,
    MergeStatus,
)
from swarm.exceptions import GitOperationError, MergeConflictError, WorktreeError
from swarm.git import GitOps, Identity
from swarm.logging import get_logger
from swarm.repo_ops import RepoOps
from swarm.run_context import RunContext
from swarm.types import MergeResult

logger = get_logger("worktree")

SCRUM_MASTER = Identity(SCRUM_MASTER_NAME, SCRUM_MASTER_EMAIL)


@dataclass
class WorktreeInfo:
    """Information about a registered git worktree."""

    path: Path
    branch: str
    commit: str
    is_bare: bool = False
    is_detached: bool = False

    @property
    def name(self) -> str:
        """Get the worktree name from path."""
        return self.path.name


@dataclass
class Worktree:
    """An agent's worktree for the duration of one task."""

    path: Path
    initial: str
    name: str
    branch: str

    @property
    def agent(self) -> AgentId:
        return AgentId(self.initial, self.name)


@dataclass
class CleanupSummary:
    """Result of cleaning up several agent worktrees."""

    cleaned: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def cleaned_count(self) -> int:
        return len(self.cleaned)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


def agent_worktree_path(worktrees_dir: Path, initial: str) -> Path:
    """Deterministic worktree path ``<dir>/agent-{INITIAL}-{Name}``."""
    agent = AgentId.from_initial(initial)
    return worktrees_dir / f"agent-{agent.initial}-{agent.name}"


def agent_identity(agent: AgentId) -> Identity:
    return Identity(agent.git_author, agent.email)


def dead_letter_ref(branch: str) -> str:
    return f"{DEAD_LETTER_REF_PREFIX}/{branch}"


class WorktreeManager:
    """Manage agent and sprint worktrees of one repository."""

    def __init__(
        self,
        repo_path: str | Path = ".",
        repo_ops: RepoOps | None = None,
        state_dir: str = STATE_DIR,
    ) -> None:
        """Initialize worktree manager.

        Args:
            repo_path: Path to the main checkout of the git repository
            repo_ops: Worker that serializes mutations; a private one is created if omitted
            state_dir: Repository-relative state namespace (cleared of blocking
                untracked files before landing a sprint)

        Raises:
            WorktreeError: If repo_path is not a git repository
        """
        self.repo_path = Path(repo_path).resolve()
        if not (self.repo_path / ".git").exists():
            raise WorktreeError(
                f"Not a git repository: {self.repo_path}",
                worktree_path=str(self.repo_path),
            )
        self.git = GitOps(self.repo_path)
        self.repo_ops = repo_ops or RepoOps()
        self.state_dir = state_dir

    def _abs(self, path: str | Path) -> Path:
        path = Path(path)
        if not path.is_absolute():
            path = self.repo_path / path
        return path.resolve()

    # -- inspection --------------------------------------------------------

    def list_worktrees(self) -> list[WorktreeInfo]:
        """List all worktrees registered in the repository.

        Returns:
            List of WorktreeInfo objects
        """
        result = self.git._run("worktree", "list", "--porcelain")
        worktrees = []
        current: dict[str, str] = {}

        for line in result.stdout.strip().split("\n"):
            if not line:
                if current:
                    worktrees.append(self._parse_worktree_info(current))
                    current = {}
                continue

            if line.startswith("worktree "):
                current["path"] = line[9:]
            elif line.startswith("HEAD "):
                current["commit"] = line[5:]
            elif line.startswith("branch "):
                current["branch"] = line[7:]
            elif line == "bare":
                current["bare"] = "true"
            elif line == "detached":
                current["detached"] = "true"

        if current:
            worktrees.append(self._parse_worktree_info(current))

        return worktrees

    def _parse_worktree_info(self, data: dict[str, str]) -> WorktreeInfo:
        branch = data.get("branch", "")
        if branch.startswith("refs/heads/"):
            branch = branch[11:]

        return WorktreeInfo(
            path=Path(data["path"]).resolve(),
            branch=branch,
            commit=data.get("commit", ""),
            is_bare=data.get("bare") == "true",
            is_detached=data.get("detached") == "true",
        )

    def is_registered(self, path: str | Path) -> bool:
        path = self._abs(path)
        return any(wt.path == path for wt in self.list_worktrees())

    def find_worktrees_with_branch(self, branch: str) -> list[Path]:
        """Paths of every worktree that has ``branch`` checked out."""
        return [wt.path for wt in self.list_worktrees() if wt.branch == branch]

    def find_checkout(self, branch: str) -> Path | None:
        """First worktree (main checkout included) with ``branch`` checked out."""
        paths = self.find_worktrees_with_branch(branch)
        return paths[0] if paths else None

    # -- removal -----------------------------------------------------------

    def _remove_path(self, path: Path) -> bool:
        """Remove a worktree directory, registered or not.

        Returns:
            True if something was removed
        """
        if path == self.repo_path:
            raise WorktreeError("Refusing to remove the main checkout", worktree_path=str(path))

        if self.is_registered(path):
            try:
                self.git._run("worktree", "remove", "--force", str(path))
            except GitOperationError:
                self.git._run("worktree", "prune", check=False)
                if path.exists():
                    shutil.rmtree(path)
            logger.info(f"Removed worktree at {path}")
            return True

        if path.exists():
            shutil.rmtree(path)
            logger.info(f"Removed stale worktree directory {path}")
            return True
        return False

    def remove_worktree(self, path: str | Path) -> bool:
        """Force-remove a worktree. Removing a nonexistent worktree succeeds."""
        return self.repo_ops.run(self._remove_path, self._abs(path))

    def _unlock_and_delete_branch(self, branch: str) -> bool:
        """Force-delete ``branch``, first removing worktrees that have it checked out."""
        for wt_path in self.find_worktrees_with_branch(branch):
            if wt_path == self.repo_path:
                logger.warning(f"Branch {branch} is checked out in the main checkout; not removing it")
                continue
            try:
                self._remove_path(wt_path)
            except (GitOperationError, OSError) as e:
                logger.warning(f"Failed to remove worktree {wt_path} holding {branch}: {e}")
        return self.git.delete_branch(branch, force=True)

    def delete_branch(self, branch: str) -> bool:
        return self.repo_ops.run(self._unlock_and_delete_branch, branch)

    def prune(self) -> None:
        """Prune stale worktree references."""
        self.repo_ops.run(self.git._run, "worktree", "prune")
        logger.info("Pruned stale worktree references")

    # -- creation ----------------------------------------------------------

    def _create_agent(
        self, worktrees_dir: Path, initial: str, sprint_branch: str, ctx: RunContext
    ) -> Worktree:
        agent = AgentId.from_initial(initial)
        path = agent_worktree_path(worktrees_dir, agent.initial)
        branch = ctx.agent_branch(agent.initial)

        self._remove_path(path)
        # Stale branch from a crashed run; git refuses to delete it while checked out
        self._unlock_and_delete_branch(branch)

        try:
            self.git._run("worktree", "add", "-B", branch, str(path), sprint_branch)
        except GitOperationError as e:
            raise WorktreeError(
                f"git worktree add failed for {path}: {e.stderr or e.message}",
                worktree_path=str(path),
                command=e.command,
                exit_code=e.exit_code,
                stderr=e.stderr,
            ) from e

        logger.info(f"Created worktree for {agent.name} at {path} on {branch}")
        return Worktree(path=path, initial=agent.initial, name=agent.name, branch=branch)

    def create_worktrees_in(
        self,
        worktrees_dir: str | Path,
        assignments: Iterable[tuple[str, str]],
        sprint_branch: str,
        ctx: RunContext,
    ) -> list[Worktree]:
        """Create one fresh worktree per distinct agent in ``assignments``.

        Args:
            worktrees_dir: Directory holding agent worktrees
            assignments: (initial, task description) pairs
            sprint_branch: Branch every agent branch starts from
            ctx: Naming context of the sprint

        Returns:
            Created worktrees, in first-seen agent order

        Raises:
            WorktreeError: If any worktree could not be created; the caller
                should treat the whole batch as failed
        """
        directory = self._abs(worktrees_dir)

        def _create_all() -> list[Worktree]:
            if not self.git.has_head():
                raise WorktreeError("Repository has no commits", worktree_path=str(self.repo_path))
            directory.mkdir(parents=True, exist_ok=True)
            created: list[Worktree] = []
            seen: set[str] = set()
            for initial, _task in assignments:
                upper = initial.upper()
                if upper in seen:
                    continue
                seen.add(upper)
                created.append(self._create_agent(directory, upper, sprint_branch, ctx))
            return created

        return self.repo_ops.run(_create_all)

    def create_agent_worktree(
        self, worktrees_dir: str | Path, initial: str, sprint_branch: str, ctx: RunContext
    ) -> Worktree:
        """Create (or recreate) a single agent's worktree from ``sprint_branch``."""
        directory = self._abs(worktrees_dir)
        directory.mkdir(parents=True, exist_ok=True)
        return self.repo_ops.run(self._create_agent, directory, initial, sprint_branch, ctx)

    def create_feature_worktree_in(
        self, worktrees_dir: str | Path, feature_branch: str, base_branch: str
    ) -> Path:
        """Create the sprint (feature) branch from ``base_branch`` and a worktree for it.

        An existing worktree of the branch at the expected path is reused.

        Raises:
            WorktreeError: On empty names, an empty repository, or the branch
                being checked out somewhere else
        """
        feature = feature_branch.strip()
        base = base_branch.strip()
        if not feature:
            raise WorktreeError("feature branch name is empty")
        if not base:
            raise WorktreeError("target branch name is empty")

        path = self._abs(worktrees_dir) / feature

        def _create() -> Path:
            if not self.git.has_head():
                raise WorktreeError("Repository has no commits", worktree_path=str(self.repo_path))
            path.parent.mkdir(parents=True, exist_ok=True)

            if not self.git.branch_exists(feature):
                if not self.git.branch_exists(base):
                    raise WorktreeError(f"target branch '{base}' does not exist")
                self.git.create_branch(feature, base)

            existing = self.find_worktrees_with_branch(feature)
            if path in existing:
                return path
            if existing:
                raise WorktreeError(
                    f"feature branch '{feature}' already checked out in another worktree: "
                    f"{', '.join(str(p) for p in existing)}",
                    worktree_path=str(path),
                )
            if self.is_registered(path):
                raise WorktreeError(
                    f"worktree path '{path}' is already registered for another branch",
                    worktree_path=str(path),
                )
            if path.exists():
                shutil.rmtree(path)

            self.git._run("worktree", "add", str(path), feature)
            logger.info(f"Created feature worktree at {path} on {feature}")
            return path

        return self.repo_ops.run(_create)

    def create_branch_worktree(self, worktrees_dir: str | Path, branch: str, name: str) -> Path:
        """Check out an existing branch in a new worktree ``<dir>/<name>``."""
        path = self._abs(worktrees_dir) / name

        def _create() -> Path:
            self._remove_path(path)
            path.parent.mkdir(parents=True, exist_ok=True)
            self.git._run("worktree", "add", str(path), branch)
            logger.info(f"Checked out {branch} at {path}")
            return path

        return self.repo_ops.run(_create)

    # -- cleanup -----------------------------------------------------------

    def cleanup_agent_worktree(
        self,
        worktrees_dir: str | Path,
        initial: str,
        ctx: RunContext,
        delete_branch: bool = True,
    ) -> None:
        """Remove an agent's worktree and optionally its branch. Idempotent."""
        path = agent_worktree_path(self._abs(worktrees_dir), initial)

        def _cleanup() -> None:
            self._remove_path(path)
            if delete_branch:
                self._unlock_and_delete_branch(ctx.agent_branch(initial))

        self.repo_ops.run(_cleanup)

    def cleanup_agent_worktrees(
        self,
        worktrees_dir: str | Path,
        initials: Iterable[str],
        ctx: RunContext,
        delete_branch: bool = True,
    ) -> CleanupSummary:
        """Clean up several agents, collecting errors instead of stopping at the first."""
        summary = CleanupSummary()
        for initial in initials:
            try:
                self.cleanup_agent_worktree(worktrees_dir, initial, ctx, delete_branch)
                summary.cleaned.append(initial.upper())
            except (GitOperationError, OSError, ValueError) as e:
                logger.warning(f"Cleanup failed for agent {initial}: {e}")
                summary.errors.append(f"{initial.upper()}: {e}")
        return summary

    def cleanup_feature_worktree(
        self, worktrees_dir: str | Path, feature_branch: str, delete_branch: bool = True
    ) -> None:
        """Remove a sprint worktree and optionally its branch. Idempotent."""
        path = self._abs(worktrees_dir) / feature_branch

        def _cleanup() -> None:
            for wt_path in self.find_worktrees_with_branch(feature_branch):
                if wt_path != self.repo_path:
                    self._remove_path(wt_path)
            self._remove_path(path)
            if delete_branch:
                self._unlock_and_delete_branch(feature_branch)

        self.repo_ops.run(_cleanup)

    # -- commits -----------------------------------------------------------

    def commit_agent_work(self, worktree: Worktree, description: str) -> bool:
        """Commit everything in an agent's worktree as one commit by that agent.

        Returns:
            False if the agent left no changes
        """
        ops = GitOps(worktree.path)
        message = f"{worktree.name}: {description}"
        return self.repo_ops.run(ops.commit_all, message, agent_identity(worktree.agent))

    def commit_files_in(self, repo: str | Path, paths: list[str | Path], message: str) -> bool:
        """Commit only ``paths`` in ``repo`` as the scrum master.

        Returns:
            False if none of the paths had changes
        """
        ops = GitOps(repo)
        return self.repo_ops.run(ops.commit_paths, paths, message, SCRUM_MASTER)

    # -- merges ------------------------------------------------------------

    def merge_agent_branch_in_with_ctx(
        self, repo: str | Path, ctx: RunContext, initial: str, target: str
    ) -> MergeResult:
        """Merge an agent's branch into ``target`` inside the worktree ``repo``.

        The merge is always a real merge commit attributed to the agent. On
        conflict the agent's tip is kept under a dead-letter ref and the merge
        is aborted.
        """
        branch = ctx.agent_branch(initial)
        try:
            agent = AgentId.from_initial(initial)
        except ValueError as e:
            return MergeResult(MergeStatus.ERROR, branch, target, error=str(e))

        def _merge() -> MergeResult:
            ops = GitOps(repo)
            if not self.git.branch_exists(branch):
                return MergeResult(MergeStatus.NO_BRANCH, branch, target)
            try:
                ops.checkout(target)
                if ops.count_unique_commits(branch, target) == 0:
                    return MergeResult(MergeStatus.NO_CHANGES, branch, target)
                sha = ops.merge(
                    branch,
                    message=f"Merge {branch}",
                    no_ff=True,
                    identity=agent_identity(agent),
                    preserve_ref=dead_letter_ref(branch),
                )
            except MergeConflictError as e:
                return MergeResult(
                    MergeStatus.CONFLICT,
                    branch,
                    target,
                    conflicting_files=e.conflicting_files,
                    error=e.message,
                    preserved_ref=dead_letter_ref(branch),
                )
            except GitOperationError as e:
                return MergeResult(MergeStatus.ERROR, branch, target, error=e.stderr or e.message)
            return MergeResult(MergeStatus.SUCCESS, branch, target, commit=sha)

        result = self.repo_ops.run(_merge)
        logger.info(f"Agent {agent.name} merge: {result.describe()}")
        return result

    def _clear_blocking_state_files(self, ops: GitOps, feature_branch: str) -> list[str]:
        """Delete untracked state files that ``feature_branch`` tracks.

        Such files would make git refuse the merge ("untracked working tree
        files would be overwritten").
        """
        tracked = set(ops.tracked_files(feature_branch, self.state_dir))
        removed = []
        for rel in ops.untracked_files(self.state_dir):
            if rel in tracked:
                (ops.repo_path / rel).unlink(missing_ok=True)
                removed.append(rel)
        if removed:
            logger.info(f"Removed {len(removed)} untracked state file(s) blocking the merge")
        return removed

    def merge_feature_branch(self, repo: str | Path, feature_branch: str, target_branch: str) -> MergeResult:
        """Merge the sprint branch into the target branch inside the worktree ``repo``."""

        def _merge() -> MergeResult:
            ops = GitOps(repo)
            if not self.git.branch_exists(feature_branch):
                return MergeResult(MergeStatus.NO_BRANCH, feature_branch, target_branch)
            try:
                ops.checkout(target_branch)
                if ops.count_unique_commits(feature_branch, target_branch) == 0:
                    return MergeResult(MergeStatus.NO_CHANGES, feature_branch, target_branch)
                self._clear_blocking_state_files(ops, feature_branch)
                sha = ops.merge(
                    feature_branch,
                    message=f"Merge {feature_branch} into {target_branch}",
                    no_ff=True,
                    autostash=True,
                    identity=SCRUM_MASTER,
                )
            except MergeConflictError as e:
                return MergeResult(
                    MergeStatus.CONFLICT,
                    feature_branch,
                    target_branch,
                    conflicting_files=e.conflicting_files,
                    error=e.message,
                )
            except GitOperationError as e:
                return MergeResult(
                    MergeStatus.ERROR, feature_branch, target_branch, error=e.stderr or e.message
                )
            except OSError as e:
                return MergeResult(MergeStatus.ERROR, feature_branch, target_branch, error=str(e))
            return MergeResult(MergeStatus.SUCCESS, feature_branch, target_branch, commit=sha)

        result = self.repo_ops.run(_merge)
        logger.info(f"Feature merge: {result.describe()}")
        return result
