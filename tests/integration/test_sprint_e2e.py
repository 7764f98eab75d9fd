"""End-to-end sprint tests against a real git repository with stub engines."""

from collections.abc import Callable, Generator
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from swarm.config import SwarmConfig
from swarm.constants import SHUTDOWN_ERROR, EngineType
from swarm.engine import EngineResult, StubEngine
from swarm.events import MemorySink
from swarm.exceptions import PlanningError
from swarm.orchestrator import SprintOrchestrator
from swarm.runner import StopReason, run_loop
from swarm.shutdown import ShutdownController
from swarm.state import SprintHistory, TeamState
from swarm.tasks import TaskList, TaskStatus

pytestmark = pytest.mark.integration


class SharedFileEngine:
    """Every agent writes its own name into the same file."""

    engine_type = EngineType.COMMAND

    def execute(
        self, agent_name: str, task: str, working_dir: Path, turn: int, team_dir: str | None = None
    ) -> EngineResult:
        (Path(working_dir) / "shared.txt").write_text(f"{agent_name}\n")
        return EngineResult.ok("done")


class ShutdownEngine(StubEngine):
    """Stub engine that requests shutdown while executing its first task."""

    def __init__(self, shutdown: ShutdownController) -> None:
        super().__init__()
        self.shutdown = shutdown

    def execute(
        self, agent_name: str, task: str, working_dir: Path, turn: int, team_dir: str | None = None
    ) -> EngineResult:
        self.shutdown.request()
        return super().execute(agent_name, task, working_dir, turn, team_dir)


@pytest.fixture
def make_orchestrator(
    seeded_repo: Path, sample_config: SwarmConfig
) -> Generator[Callable[..., SprintOrchestrator], None, None]:
    """Factory for orchestrators on the seeded repository; shuts their workers down afterwards."""
    created: list[SprintOrchestrator] = []

    def _make(config: SwarmConfig | None = None, **kwargs) -> SprintOrchestrator:
        kwargs.setdefault("sink", MemorySink())
        orchestrator = SprintOrchestrator(config or sample_config, seeded_repo, **kwargs)
        created.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in created:
        orchestrator.repo_ops.shutdown()


def _main_tasks(repo: Path) -> TaskList:
    return TaskList.load(repo / ".swarm-hug" / "alpha" / "tasks.md")


def _subjects(repo: Path, git: Callable[..., str]) -> list[str]:
    return git("log", "--format=%s", "main", cwd=repo).splitlines()


class TestSingleSprint:
    """One sprint from assignment to landing."""

    @pytest.mark.smoke
    def test_successful_sprint_lands(
        self, make_orchestrator: Callable[..., SprintOrchestrator], seeded_repo: Path, git: Callable[..., str]
    ) -> None:
        orchestrator = make_orchestrator()

        result = orchestrator.run_sprint()

        assert result.tasks_assigned == 3
        assert result.tasks_completed == 3
        assert result.tasks_failed == 0
        assert result.all_failed() is False
        assert result.landed is True
        assert result.sprint_branch.startswith("demo-sprint-1-")

        tasks = _main_tasks(seeded_repo)
        assert [(t.status, t.initial) for t in tasks.tasks] == [
            (TaskStatus.COMPLETED, "A"),
            (TaskStatus.COMPLETED, "A"),
            (TaskStatus.UNASSIGNED, None),
            (TaskStatus.COMPLETED, "B"),
        ]
        team_dir = seeded_repo / ".swarm-hug" / "alpha"
        assert SprintHistory.load(team_dir, "alpha").total_sprints == 1
        assert TeamState.load(team_dir, "alpha").feature_branch is None

        subjects = _subjects(seeded_repo, git)
        assert "Alpha Sprint 1: task assignments" in subjects
        assert "Alpha Sprint 1: completed" in subjects
        assert "Aaron: (#1) Add login endpoint" in subjects
        assert orchestrator.git.parent_count("main") == 2

        assert len(orchestrator.worktrees.list_worktrees()) == 1
        assert not orchestrator.git.branch_exists(result.sprint_branch)
        assert any(text.startswith("Completed: ") for text in orchestrator.sink.texts())

    def test_failing_engine_fails_every_task(
        self, make_orchestrator: Callable[..., SprintOrchestrator], seeded_repo: Path
    ) -> None:
        orchestrator = make_orchestrator(engine=StubEngine(succeed=False, error="engine down"))

        result = orchestrator.run_sprint()

        assert result.tasks_assigned == 3
        assert result.tasks_failed == 3
        assert result.all_failed() is True
        assert all(o.error == "engine down" for o in result.outcomes)
        # Failed tasks stay assigned and are reclaimed by the next sprint.
        assert _main_tasks(seeded_repo).assigned_count() == 3

    def test_conflicting_agents_preserve_work(
        self,
        make_orchestrator: Callable[..., SprintOrchestrator],
        sample_config: SwarmConfig,
        git: Callable[..., str],
        seeded_repo: Path,
    ) -> None:
        config = sample_config.model_copy(deep=True)
        config.sprint.tasks_per_agent = 1
        orchestrator = make_orchestrator(config, engine=SharedFileEngine())

        result = orchestrator.run_sprint()

        assert result.tasks_completed == 1
        assert result.tasks_failed == 1
        (failure,) = [o for o in result.outcomes if not o.success]
        assert failure.error.startswith("merge failed: ")
        assert "refs/swarm/dead-letter/" in failure.error
        assert failure.merge.conflicting_files == ["shared.txt"]
        assert git("for-each-ref", "refs/swarm/dead-letter/", cwd=seeded_repo).strip() != ""
        assert result.landed is True

    def test_planner_failure_falls_back_and_review_adds_tasks(
        self, make_orchestrator: Callable[..., SprintOrchestrator], seeded_repo: Path, git: Callable[..., str]
    ) -> None:
        planner = MagicMock()
        planner.assign.side_effect = PlanningError("no answer")
        planner.review.return_value = ["Add rate limiting"]
        orchestrator = make_orchestrator(planner=planner)

        result = orchestrator.run_sprint()

        assert result.tasks_completed == 3
        tasks = _main_tasks(seeded_repo)
        assert tasks.tasks[-1].description == "(#5) Add rate limiting"
        assert tasks.tasks[-1].status == TaskStatus.UNASSIGNED
        assert "Alpha Sprint 1: follow-up tasks" in _subjects(seeded_repo, git)
        assert "Aaron: (#1) Add login endpoint" in planner.review.call_args.args[1]

    def test_shutdown_during_sprint_skips_landing(
        self, make_orchestrator: Callable[..., SprintOrchestrator], seeded_repo: Path
    ) -> None:
        shutdown = ShutdownController()
        orchestrator = make_orchestrator(engine=ShutdownEngine(shutdown), shutdown=shutdown)

        result = orchestrator.run_sprint()

        assert result.land is None
        assert any(o.error == SHUTDOWN_ERROR for o in result.outcomes)
        assert _main_tasks(seeded_repo).completed_count() == 0
        assert orchestrator.git.branch_exists(result.sprint_branch)

    def test_nothing_to_do(self, make_orchestrator: Callable[..., SprintOrchestrator], seeded_repo: Path) -> None:
        path = seeded_repo / ".swarm-hug" / "alpha" / "tasks.md"
        path.write_text("- [x] done (A)\n- [ ] (#2) waiting (blocked by #9)\n")

        result = make_orchestrator().run_sprint()

        assert result.tasks_assigned == 0
        assert result.sprint_number is None


class TestRunLoop:
    """Several sprints driven by run_loop."""

    def test_runs_until_no_work(
        self, make_orchestrator: Callable[..., SprintOrchestrator], seeded_repo: Path
    ) -> None:
        orchestrator = make_orchestrator()

        summary = run_loop(orchestrator)

        assert summary.stop_reason == StopReason.NO_WORK
        assert summary.sprints_run == 2
        assert summary.tasks_completed == 4
        assert [s.sprint_number for s in summary.sprints] == [1, 2]
        assert _main_tasks(seeded_repo).completed_count() == 4
        assert SprintHistory.load(seeded_repo / ".swarm-hug" / "alpha", "alpha").total_sprints == 2

    def test_stops_after_consecutive_failures(self, make_orchestrator: Callable[..., SprintOrchestrator]) -> None:
        orchestrator = make_orchestrator(engine=StubEngine(succeed=False))

        summary = run_loop(orchestrator)

        assert summary.stop_reason == StopReason.CONSECUTIVE_FAILURES
        assert summary.sprints_run == 2
        assert summary.tasks_completed == 0

    def test_shutdown_before_start(self, make_orchestrator: Callable[..., SprintOrchestrator]) -> None:
        shutdown = ShutdownController()
        shutdown.request()

        summary = run_loop(make_orchestrator(shutdown=shutdown))

        assert summary.stop_reason == StopReason.SHUTDOWN
        assert summary.sprints_run == 0
