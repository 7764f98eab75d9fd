"""Run loop: execute sprints until there is nothing left to do."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from swarm.logging import get_logger
from swarm.orchestrator import SprintOrchestrator, SprintResult

logger = get_logger("runner")


class StopReason(Enum):
    """Why the run loop stopped."""

    NO_WORK = "no_work"
    MAX_SPRINTS = "max_sprints"
    SHUTDOWN = "shutdown"
    CONSECUTIVE_FAILURES = "consecutive_failures"


@dataclass
class RunSummary:
    """Aggregate of all sprints in one run."""

    stop_reason: StopReason
    sprints: list[SprintResult] = field(default_factory=list)

    @property
    def sprints_run(self) -> int:
        return len(self.sprints)

    @property
    def tasks_completed(self) -> int:
        return sum(s.tasks_completed for s in self.sprints)

    @property
    def tasks_failed(self) -> int:
        return sum(s.tasks_failed for s in self.sprints)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stop_reason": self.stop_reason.value,
            "sprints_run": self.sprints_run,
            "tasks_completed": self.tasks_completed,
            "tasks_failed": self.tasks_failed,
            "sprints": [s.to_dict() for s in self.sprints],
        }


def run_loop(
    orchestrator: SprintOrchestrator,
    max_sprints: int | None = None,
    max_consecutive_failed_sprints: int | None = None,
) -> RunSummary:
    """Run sprints until a stop condition holds.

    Stops when ``max_sprints`` sprints have run (0 or None means unlimited),
    when a sprint assigns nothing, on shutdown, or after
    ``max_consecutive_failed_sprints`` sprints in a row in which every task
    failed.

    Args:
        orchestrator: Runs individual sprints
        max_sprints: Sprint limit; defaults to the orchestrator's config
        max_consecutive_failed_sprints: Failure limit; defaults to the config

    Returns:
        RunSummary with every sprint result and the reason for stopping
    """
    sprint_config = orchestrator.config.sprint
    if max_sprints is None:
        max_sprints = sprint_config.max_sprints
    if max_consecutive_failed_sprints is None:
        max_consecutive_failed_sprints = sprint_config.max_consecutive_failed_sprints

    results: list[SprintResult] = []
    consecutive_failures = 0

    while True:
        if orchestrator.shutdown.requested:
            return RunSummary(StopReason.SHUTDOWN, results)
        if max_sprints and len(results) >= max_sprints:
            logger.info(f"Reached sprint limit ({max_sprints})")
            return RunSummary(StopReason.MAX_SPRINTS, results)

        result = orchestrator.run_sprint()
        if result.tasks_assigned == 0:
            logger.info("No tasks to assign; stopping")
            return RunSummary(StopReason.NO_WORK, results)
        results.append(result)

        if orchestrator.shutdown.requested:
            return RunSummary(StopReason.SHUTDOWN, results)

        if result.all_failed():
            consecutive_failures += 1
            logger.warning(
                f"Sprint {result.sprint_number} failed every task "
                f"({consecutive_failures}/{max_consecutive_failed_sprints} in a row)"
            )
            if consecutive_failures >= max_consecutive_failed_sprints:
                logger.error("Too many consecutive failed sprints; stopping")
                return RunSummary(StopReason.CONSECUTIVE_FAILURES, results)
        else:
            consecutive_failures = 0
