"""Tests for swarm.runner module."""

from unittest.mock import MagicMock

from swarm.config import SwarmConfig
from swarm.orchestrator import SprintResult
from swarm.runner import RunSummary, StopReason, run_loop
from swarm.shutdown import ShutdownController

DONE = SprintResult(tasks_assigned=2, tasks_completed=2, sprint_number=1)
FAILED = SprintResult(tasks_assigned=2, tasks_failed=2, sprint_number=1)
PARTIAL = SprintResult(tasks_assigned=2, tasks_completed=1, tasks_failed=1, sprint_number=1)
EMPTY = SprintResult()


def _orchestrator(*results: SprintResult, config: SwarmConfig | None = None) -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.config = config or SwarmConfig()
    orchestrator.shutdown = ShutdownController()
    orchestrator.run_sprint.side_effect = list(results)
    return orchestrator


class TestSprintResult:
    """Tests for SprintResult.all_failed."""

    def test_all_failed(self) -> None:
        assert FAILED.all_failed() is True
        assert PARTIAL.all_failed() is False
        assert DONE.all_failed() is False
        assert EMPTY.all_failed() is False


class TestRunLoop:
    """Tests for the stop conditions of run_loop."""

    def test_stops_when_no_work(self) -> None:
        orchestrator = _orchestrator(DONE, DONE, EMPTY)

        summary = run_loop(orchestrator)

        assert summary.stop_reason == StopReason.NO_WORK
        assert summary.sprints_run == 2
        assert summary.tasks_completed == 4

    def test_stops_at_max_sprints(self) -> None:
        orchestrator = _orchestrator(DONE, DONE, DONE)

        summary = run_loop(orchestrator, max_sprints=2)

        assert summary.stop_reason == StopReason.MAX_SPRINTS
        assert orchestrator.run_sprint.call_count == 2

    def test_max_sprints_from_config(self) -> None:
        config = SwarmConfig.from_dict({"sprint": {"max_sprints": 1}})
        orchestrator = _orchestrator(DONE, DONE, config=config)

        assert run_loop(orchestrator).stop_reason == StopReason.MAX_SPRINTS
        assert orchestrator.run_sprint.call_count == 1

    def test_consecutive_failures(self) -> None:
        orchestrator = _orchestrator(FAILED, FAILED, FAILED, DONE)

        summary = run_loop(orchestrator, max_consecutive_failed_sprints=3)

        assert summary.stop_reason == StopReason.CONSECUTIVE_FAILURES
        assert summary.sprints_run == 3
        assert summary.tasks_failed == 6

    def test_partial_success_resets_failure_count(self) -> None:
        orchestrator = _orchestrator(FAILED, PARTIAL, FAILED, EMPTY)

        summary = run_loop(orchestrator, max_consecutive_failed_sprints=2)

        assert summary.stop_reason == StopReason.NO_WORK
        assert summary.sprints_run == 3

    def test_shutdown_before_first_sprint(self) -> None:
        orchestrator = _orchestrator(DONE)
        orchestrator.shutdown.request()

        summary = run_loop(orchestrator)

        assert summary.stop_reason == StopReason.SHUTDOWN
        orchestrator.run_sprint.assert_not_called()

    def test_shutdown_during_sprint(self) -> None:
        orchestrator = _orchestrator()

        def _sprint() -> SprintResult:
            orchestrator.shutdown.request()
            return PARTIAL

        orchestrator.run_sprint.side_effect = _sprint

        summary = run_loop(orchestrator)

        assert summary.stop_reason == StopReason.SHUTDOWN
        assert summary.sprints_run == 1

    def test_summary_to_dict(self) -> None:
        data = RunSummary(StopReason.NO_WORK, [DONE]).to_dict()

        assert data["stop_reason"] == "no_work"
        assert data["sprints"][0]["all_failed"] is False
