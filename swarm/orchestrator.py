"""Sprint orchestration: assign tasks, run agents in parallel, merge and land.

One sprint moves through these steps:

    SyncTarget -> LoadTasks -> AssignTasks -> StageSprintBranch ->
    StageAgentWorktrees -> ExecuteAgents -> Reconcile -> PostReview ->
    LandTarget -> Done

Each agent with work gets one thread that executes its tasks sequentially,
each task in a fresh worktree branched from the sprint branch. Git mutations
from all threads go through the shared ``RepoOps`` worker.
"""

from __future__ import annotations

import itertools
import math
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from swarm.agents import AgentId, get_initials
from swarm.config import SwarmConfig
from swarm.constants import (
    SHUTDOWN_ERROR,
    SPRINT_HISTORY_FILE,
    TASKS_FILE,
    MergeStatus,
)
from swarm.engine import Engine, EngineResult, StubEngine, create_engine
from swarm.events import (
    ChatLog,
    EventSink,
    write_merge_status,
    write_sprint_plan,
    write_sprint_status,
)
from swarm.exceptions import (
    EngineExecutionError,
    GitOperationError,
    PlanningError,
    SwarmError,
    WorktreeError,
)
from swarm.git import GitOps
from swarm.heartbeat import HeartbeatGuard
from swarm.lifecycle import LifecycleTracker
from swarm.logging import clear_agent_context, get_agent_logger, get_logger, set_agent_context
from swarm.merge import LandResult, MergeCoordinator
from swarm.merge_agent import EngineMergeAgent, GitMergeAgent, MergeAgent
from swarm.planner import DeterministicPlanner, EnginePlanner, Planner
from swarm.repo_ops import RepoOps
from swarm.run_context import RunContext, new_run_instance, percent_encode
from swarm.shutdown import ShutdownController
from swarm.state import SprintHistory, TeamState
from swarm.tasks import TaskList, TaskStatus
from swarm.types import MergeResult
from swarm.worktree import Worktree, WorktreeManager

logger = get_logger("orchestrator")


@dataclass
class TaskOutcome:
    """Result of one task in a sprint."""

    index: int
    description: str
    initial: str
    success: bool
    error: str | None = None
    merge: MergeResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "description": self.description,
            "initial": self.initial,
            "success": self.success,
            "error": self.error,
            "merge": self.merge.to_dict() if self.merge else None,
        }


@dataclass
class SprintResult:
    """Summary reported to the run loop."""

    tasks_assigned: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    sprint_number: int | None = None
    sprint_branch: str | None = None
    outcomes: list[TaskOutcome] = field(default_factory=list)
    land: LandResult | None = None

    def all_failed(self) -> bool:
        """True when tasks were assigned and every one of them failed."""
        return self.tasks_assigned > 0 and self.tasks_completed == 0 and self.tasks_failed > 0

    @property
    def landed(self) -> bool:
        return self.land is not None and self.land.success

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks_assigned": self.tasks_assigned,
            "tasks_completed": self.tasks_completed,
            "tasks_failed": self.tasks_failed,
            "sprint_number": self.sprint_number,
            "sprint_branch": self.sprint_branch,
            "all_failed": self.all_failed(),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "land": self.land.to_dict() if self.land else None,
        }


class SprintOrchestrator:
    """Run sprints for one team against one target branch."""

    def __init__(
        self,
        config: SwarmConfig | None = None,
        repo_path: str | Path = ".",
        engine: Engine | None = None,
        planner: Planner | None = None,
        merge_agent: MergeAgent | None = None,
        sink: EventSink | None = None,
        shutdown: ShutdownController | None = None,
        repo_ops: RepoOps | None = None,
        run_instance: str | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Swarm configuration
            repo_path: Main checkout of the repository
            engine: Executes tasks; defaults to a StubEngine
            planner: Assigns tasks and reviews sprints; defaults to deterministic
            merge_agent: Lands sprint branches; defaults to a git merge
            sink: Receives chat messages; defaults to the team chat log
            shutdown: Cancellation flag polled at checkpoints
            repo_ops: Worker that serializes git mutations
            run_instance: Token shared by all sprints of this invocation
        """
        self.config = config or SwarmConfig()
        self.repo_path = Path(repo_path).resolve()
        self.repo_ops = repo_ops or RepoOps()
        self.worktrees = WorktreeManager(self.repo_path, self.repo_ops, self.config.paths.state_dir)
        self.git = self.worktrees.git
        self.engine: Engine = engine or StubEngine()
        self.planner: Planner = planner or DeterministicPlanner()
        self.sink: EventSink = sink or ChatLog(self.repo_path / self.config.chat_file)
        self.merge_agent: MergeAgent = merge_agent or GitMergeAgent(self.worktrees)
        self.merger = MergeCoordinator(self.repo_path, self.merge_agent, self.sink)
        self.shutdown = shutdown or ShutdownController()
        self.run_instance = run_instance or new_run_instance()
        self.lifecycle = LifecycleTracker()

        self._turns = itertools.count(1)
        self._turn_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: SwarmConfig,
        repo_path: str | Path = ".",
        shutdown: ShutdownController | None = None,
    ) -> SprintOrchestrator:
        """Wire the engine, planner and merge agent named in ``config``."""
        shutdown = shutdown or ShutdownController()
        engine = create_engine(
            config.engine.type,
            config.engine.command,
            config.engine.timeout_seconds,
            shutdown=shutdown,
        )
        planner: Planner = DeterministicPlanner()
        if config.engine.planner == "engine":
            planner = EnginePlanner(engine, repo_path)
        orchestrator = cls(config, repo_path, engine=engine, planner=planner, shutdown=shutdown)
        if config.engine.merge_agent == "engine":
            orchestrator.merge_agent = EngineMergeAgent(engine, orchestrator.worktrees)
            orchestrator.merger.merge_agent = orchestrator.merge_agent
        return orchestrator

    # -- paths -------------------------------------------------------------

    @property
    def team(self) -> str:
        return self.config.project.team

    @property
    def target_branch(self) -> str:
        return self.config.project.target_branch

    @property
    def worktrees_dir(self) -> Path:
        path = Path(self.config.paths.worktrees_dir)
        return path if path.is_absolute() else self.repo_path / path

    def _team_dir(self, checkout: Path) -> Path:
        return checkout / self.config.team_dir

    def _next_turn(self) -> int:
        with self._turn_lock:
            return next(self._turns)

    # -- SyncTarget --------------------------------------------------------

    def _sync_target(self) -> tuple[Path, bool]:
        """Find (or materialize) a checkout of the target branch.

        Returns:
            (checkout path, whether a temporary worktree was created)
        """
        checkout = self.worktrees.find_checkout(self.target_branch)
        if checkout is not None:
            return checkout, False

        if not self.git.branch_exists(self.target_branch):
            raise WorktreeError(f"target branch '{self.target_branch}' does not exist")

        path = self.worktrees.create_branch_worktree(
            self.worktrees_dir, self.target_branch, f"target-{percent_encode(self.target_branch)}"
        )
        for name in (TASKS_FILE, SPRINT_HISTORY_FILE):
            src = self._team_dir(self.repo_path) / name
            dst = self._team_dir(path) / name
            if src.exists() and not dst.exists():
                dst.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(src, dst)
                logger.info(f"Copied {name} forward into {path}")
        return path, True

    # -- AssignTasks -------------------------------------------------------

    def _assign(self, tasks: TaskList, initials: list[str]) -> int:
        per_agent = self.config.sprint.tasks_per_agent
        try:
            pairs = self.planner.assign(tasks, initials, per_agent)
            assigned = tasks.apply_assignments(pairs, initials, per_agent)
        except (PlanningError, SwarmError, OSError, ValueError) as e:
            logger.warning(f"Planner failed, using deterministic assignment: {e}")
            return tasks.assign_sprint(initials, per_agent)

        if assigned == 0:
            logger.warning("Planner assigned no tasks, using deterministic assignment")
            return tasks.assign_sprint(initials, per_agent)
        return assigned

    # -- sprint ------------------------------------------------------------

    def run_sprint(self) -> SprintResult:
        """Run one sprint end to end.

        Returns:
            SprintResult; an empty result when there was nothing to do

        Raises:
            SwarmError: If sprint scaffolding (branch or worktree creation) fails
        """
        target_dir, temporary_target = self._sync_target()
        try:
            return self._run_sprint_in(target_dir)
        finally:
            if temporary_target:
                try:
                    self.worktrees.remove_worktree(target_dir)
                except (GitOperationError, OSError) as e:
                    logger.warning(f"Failed to remove temporary target worktree {target_dir}: {e}")

    def _run_sprint_in(self, target_dir: Path) -> SprintResult:
        config = self.config
        per_agent = config.sprint.tasks_per_agent

        # LoadTasks
        tasks = TaskList.load(self._team_dir(target_dir) / TASKS_FILE)
        reclaimed = tasks.unassign_all()
        if reclaimed:
            logger.info(f"Reclaimed {reclaimed} task(s) left assigned by a previous sprint")
        assignable = tasks.assignable_count()
        if assignable == 0:
            logger.info("No assignable tasks")
            return SprintResult()

        # AssignTasks
        agents_needed = min(math.ceil(assignable / per_agent), config.sprint.max_agents)
        initials = get_initials(agents_needed)
        assigned = self._assign(tasks, initials)
        if assigned == 0:
            logger.info("No tasks assigned")
            return SprintResult()

        queues: dict[AgentId, list[int]] = {}
        for idx, task in enumerate(tasks.tasks):
            if task.initial in initials and task.status == TaskStatus.ASSIGNED:
                queues.setdefault(AgentId.from_initial(task.initial), []).append(idx)

        # StageSprintBranch
        target_history = SprintHistory.load(self._team_dir(target_dir), self.team)
        ctx = RunContext.new(
            config.project.name,
            target_history.total_sprints + 1,
            self.target_branch,
            self.run_instance,
        )
        sprint_branch = ctx.sprint_branch()
        self.worktrees.cleanup_feature_worktree(self.worktrees_dir, sprint_branch)
        sprint_dir = self.worktrees.create_feature_worktree_in(
            self.worktrees_dir, sprint_branch, self.target_branch
        )
        sprint_git = GitOps(sprint_dir)
        sprint_start = sprint_git.current_commit()

        sprint_team_dir = self._team_dir(sprint_dir)
        history = SprintHistory.load(sprint_team_dir, self.team)
        history.total_sprints = max(history.total_sprints, target_history.total_sprints)
        sprint_number = history.next_sprint()
        history.save(sprint_team_dir)
        team_state = TeamState.load(sprint_team_dir, self.team)
        team_state.set_feature_branch(sprint_branch)
        team_state.save(sprint_team_dir)
        tasks_path = sprint_team_dir / TASKS_FILE
        tasks.save(tasks_path)
        state_paths = [
            self._rel(tasks_path, sprint_dir),
            self._rel(SprintHistory.path_in(sprint_team_dir), sprint_dir),
            self._rel(TeamState.path_in(sprint_team_dir), sprint_dir),
        ]
        team_name = history.formatted_team_name
        self.worktrees.commit_files_in(
            sprint_dir, state_paths, f"{team_name} Sprint {sprint_number}: task assignments"
        )

        set_agent_context(sprint=sprint_number)
        logger.info(
            f"Sprint {sprint_number}: {assigned} task(s) for {len(queues)} agent(s) on {sprint_branch}"
        )
        write_sprint_plan(
            self.sink,
            sprint_number,
            [(agent.name, tasks.tasks[idx].description) for agent, q in queues.items() for idx in q],
        )

        # StageAgentWorktrees
        agent_initials = [agent.initial for agent in queues]
        self.worktrees.cleanup_agent_worktrees(self.worktrees_dir, agent_initials, ctx)
        created = self.worktrees.create_worktrees_in(
            self.worktrees_dir,
            [(agent.initial, tasks.tasks[q[0]].description) for agent, q in queues.items()],
            sprint_branch,
            ctx,
        )
        by_initial = {wt.initial: wt for wt in created}

        # ExecuteAgents
        self.lifecycle = LifecycleTracker()
        for agent, q in queues.items():
            self.lifecycle.register(agent, tasks.tasks[q[0]].description, by_initial[agent.initial].path)

        results: dict[AgentId, list[TaskOutcome]] = {}
        results_lock = threading.Lock()

        def _worker(agent: AgentId, queue: list[int]) -> None:
            set_agent_context(agent=agent.name, sprint=sprint_number)
            try:
                outcomes = self._run_agent(
                    agent, queue, tasks, by_initial[agent.initial], ctx, sprint_dir, sprint_branch
                )
            finally:
                clear_agent_context()
            with results_lock:
                results[agent] = outcomes

        threads = [
            threading.Thread(target=_worker, args=(agent, q), name=f"agent-{agent.initial}")
            for agent, q in queues.items()
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        # Reconcile
        outcomes = sorted(
            (o for agent_outcomes in results.values() for o in agent_outcomes), key=lambda o: o.index
        )
        for outcome in outcomes:
            if outcome.success:
                tasks.complete(outcome.index, outcome.initial)
        completed = sum(1 for o in outcomes if o.success)
        failed = len(outcomes) - completed

        tasks.save(tasks_path)
        cleanup = self.worktrees.cleanup_agent_worktrees(self.worktrees_dir, agent_initials, ctx)
        logger.debug(f"Removed {cleanup.cleaned_count} agent worktree(s)")
        if cleanup.has_errors:
            logger.warning(f"Agent cleanup errors: {'; '.join(cleanup.errors)}")
        team_state.clear_feature_branch()
        team_state.save(sprint_team_dir)
        self.worktrees.commit_files_in(
            sprint_dir, state_paths, f"{team_name} Sprint {sprint_number}: completed"
        )
        write_sprint_status(
            self.sink,
            sprint_number,
            completed,
            failed,
            tasks.unassigned_count() + tasks.assigned_count(),
            len(tasks),
        )
        logger.info(
            f"Sprint {sprint_number} lifecycle (assigned, working, done, terminated): "
            f"{self.lifecycle.counts()}, {self.lifecycle.success_count()} task(s) succeeded, "
            f"{self.lifecycle.failure_count()} failed"
        )

        result = SprintResult(
            tasks_assigned=assigned,
            tasks_completed=completed,
            tasks_failed=failed,
            sprint_number=sprint_number,
            sprint_branch=sprint_branch,
            outcomes=outcomes,
        )

        # PostReview
        if not self.shutdown.requested and config.sprint.post_sprint_review:
            self._post_review(tasks, tasks_path, sprint_git, sprint_start, sprint_dir, team_name, sprint_number)

        # LandTarget
        if self.shutdown.requested:
            logger.info(f"Shutdown requested; leaving {sprint_branch} unmerged")
        elif sprint_branch == self.target_branch:
            logger.info("Sprint branch is the target branch; nothing to land")
        else:
            result.land = self.merger.land(sprint_branch, self.target_branch, target_dir)
            if result.land.success:
                self.worktrees.cleanup_feature_worktree(self.worktrees_dir, sprint_branch)
            else:
                logger.error(f"Sprint {sprint_number} branch {sprint_branch} kept: {result.land.error}")

        clear_agent_context()
        logger.info(
            f"Sprint {sprint_number} done: {completed} completed, {failed} failed of {assigned}"
        )
        return result

    @staticmethod
    def _rel(path: Path, root: Path) -> str:
        return str(path.relative_to(root))

    def _post_review(
        self,
        tasks: TaskList,
        tasks_path: Path,
        sprint_git: GitOps,
        sprint_start: str,
        sprint_dir: Path,
        team_name: str,
        sprint_number: int,
    ) -> None:
        git_log = sprint_git.log_range(sprint_start, "HEAD")
        try:
            followups = self.planner.review(tasks.to_string(), git_log)
        except (PlanningError, SwarmError, OSError, ValueError) as e:
            logger.warning(f"Post-sprint review failed: {e}")
            return
        if not followups:
            return

        numbers = tasks.append_tasks(followups)
        tasks.save(tasks_path)
        self.worktrees.commit_files_in(
            sprint_dir,
            [self._rel(tasks_path, sprint_dir)],
            f"{team_name} Sprint {sprint_number}: follow-up tasks",
        )
        self.sink.append(f"Review added {len(numbers)} follow-up task(s): #{', #'.join(map(str, numbers))}")

    # -- agent loop --------------------------------------------------------

    def _run_agent(
        self,
        agent: AgentId,
        queue: list[int],
        tasks: TaskList,
        first_worktree: Worktree,
        ctx: RunContext,
        sprint_dir: Path,
        sprint_branch: str,
    ) -> list[TaskOutcome]:
        """Execute one agent's tasks in order. Never raises."""
        log = get_agent_logger(agent.name, agent.initial)
        outcomes: list[TaskOutcome] = []
        worktree: Worktree | None = first_worktree
        blocking_error: str | None = None

        for position, idx in enumerate(queue):
            description = tasks.tasks[idx].description

            if blocking_error is not None:
                outcomes.append(TaskOutcome(idx, description, agent.initial, False, blocking_error))
                continue
            if self.shutdown.requested:
                log.info(f"Skipping task (shutdown): {description}")
                outcomes.append(TaskOutcome(idx, description, agent.initial, False, SHUTDOWN_ERROR))
                continue

            if worktree is None:
                try:
                    worktree = self.worktrees.create_agent_worktree(
                        self.worktrees_dir, agent.initial, sprint_branch, ctx
                    )
                except (SwarmError, OSError, ValueError) as e:
                    blocking_error = f"worktree creation failed: {e}"
                    log.error(blocking_error)
                    outcomes.append(TaskOutcome(idx, description, agent.initial, False, blocking_error))
                    continue

            if position > 0:
                self.lifecycle.register(agent, description, worktree.path)
            try:
                outcome = self._run_task(agent, idx, description, worktree, ctx, sprint_dir, sprint_branch)
            except Exception as e:  # noqa: BLE001 - a crashing task must not take down the agent thread
                log.exception(f"Unexpected error on task: {description}")
                self.lifecycle.fail(agent, str(e))
                self.lifecycle.terminate(agent)
                outcome = TaskOutcome(idx, description, agent.initial, False, f"internal error: {e}")
                blocking_error = outcome.error
            outcomes.append(outcome)

            if outcome.merge is not None and not outcome.merge.ok:
                blocking_error = outcome.error
            worktree = None

        return outcomes

    def _run_task(
        self,
        agent: AgentId,
        idx: int,
        description: str,
        worktree: Worktree,
        ctx: RunContext,
        sprint_dir: Path,
        sprint_branch: str,
    ) -> TaskOutcome:
        log = get_agent_logger(agent.name, agent.initial)
        self.lifecycle.start(agent)
        log.info(f"Starting task: {description}")

        with HeartbeatGuard(
            self.sink, agent.name, description, self.config.engine.heartbeat_interval_seconds
        ):
            try:
                result = self.engine.execute(
                    agent.name,
                    description,
                    worktree.path,
                    self._next_turn(),
                    str(self.config.team_dir),
                )
            except EngineExecutionError as e:
                result = EngineResult.failure(str(e), e.exit_code or 1)

        if not result.success:
            error = result.error or f"engine exited with code {result.exit_code}"
            self.lifecycle.fail(agent, error)
            self.lifecycle.terminate(agent)
            log.warning(f"Task failed: {error}")
            self.sink.append(f"Failed: {description} ({error})", sender=agent.name)
            self._discard_worktree(agent, ctx)
            return TaskOutcome(idx, description, agent.initial, False, error)

        self.lifecycle.complete(agent)
        try:
            self.worktrees.commit_agent_work(worktree, description)
            merge = self.worktrees.merge_agent_branch_in_with_ctx(
                sprint_dir, ctx, agent.initial, sprint_branch
            )
        except GitOperationError as e:
            merge = MergeResult(MergeStatus.ERROR, worktree.branch, sprint_branch, error=str(e))
        self.lifecycle.terminate(agent)

        if not merge.ok:
            error = f"merge failed: {merge.describe()}"
            if merge.preserved_ref:
                error += f" (work preserved at {merge.preserved_ref})"
            log.error(error)
            write_merge_status(self.sink, agent.name, "failed", merge.describe())
            return TaskOutcome(idx, description, agent.initial, False, error, merge)

        write_merge_status(self.sink, agent.name, "succeeded", merge.describe())
        self._discard_worktree(agent, ctx)
        self.sink.append(f"Completed: {description}", sender=agent.name)
        return TaskOutcome(idx, description, agent.initial, True, None, merge)

    def _discard_worktree(self, agent: AgentId, ctx: RunContext) -> None:
        try:
            self.worktrees.cleanup_agent_worktree(self.worktrees_dir, agent.initial, ctx, delete_branch=False)
        except (GitOperationError, OSError) as e:
            logger.warning(f"Failed to remove worktree for {agent.name}: {e}")
