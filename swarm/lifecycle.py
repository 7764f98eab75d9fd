"""Per-agent lifecycle tracking for one sprint.

Transitions are guarded: each one only fires from its expected source state
and is otherwise a no-op. The tracker is used for aggregation and reporting;
it never gates orchestrator control flow.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path

from swarm.agents import AgentId
from swarm.constants import AgentState
from swarm.logging import get_logger

logger = get_logger("lifecycle")


@dataclass
class AgentContext:
    """Lifecycle record for one agent."""

    initial: str
    name: str
    task: str
    worktree_path: Path | None = None
    state: AgentState = AgentState.ASSIGNED
    success: bool | None = None
    error: str | None = None

    @property
    def is_finished(self) -> bool:
        return self.state in (AgentState.DONE, AgentState.TERMINATED)

    @property
    def succeeded(self) -> bool:
        return self.success is True


class LifecycleTracker:
    """Thread-safe map of AgentId to AgentContext.

    An agent is re-registered for each task in its queue, so its context
    describes the current task only. Success and failure totals are kept per
    task and survive re-registration.
    """

    def __init__(self) -> None:
        self._agents: dict[AgentId, AgentContext] = {}
        self._succeeded = 0
        self._failed = 0
        self._lock = threading.Lock()

    def register(self, agent: AgentId, task: str, worktree_path: Path | None = None) -> None:
        """Register (or re-register for its next task) an agent in the ASSIGNED state."""
        with self._lock:
            self._agents[agent] = AgentContext(
                initial=agent.initial,
                name=agent.name,
                task=task,
                worktree_path=worktree_path,
            )

    def get(self, agent: AgentId) -> AgentContext | None:
        with self._lock:
            return self._agents.get(agent)

    def _transition(
        self,
        agent: AgentId,
        expected: AgentState,
        target: AgentState,
        success: bool | None = None,
        error: str | None = None,
    ) -> bool:
        with self._lock:
            ctx = self._agents.get(agent)
            if ctx is None or ctx.state != expected:
                logger.debug(
                    f"Ignoring {target.value} for {agent}: state is "
                    f"{ctx.state.value if ctx else 'unregistered'}"
                )
                return False
            ctx.state = target
            if target == AgentState.DONE:
                ctx.success = success
                ctx.error = error
                if success:
                    self._succeeded += 1
                else:
                    self._failed += 1
            return True

    def start(self, agent: AgentId) -> bool:
        return self._transition(agent, AgentState.ASSIGNED, AgentState.WORKING)

    def complete(self, agent: AgentId) -> bool:
        return self._transition(agent, AgentState.WORKING, AgentState.DONE, success=True)

    def fail(self, agent: AgentId, error: str) -> bool:
        return self._transition(agent, AgentState.WORKING, AgentState.DONE, success=False, error=error)

    def terminate(self, agent: AgentId) -> bool:
        return self._transition(agent, AgentState.DONE, AgentState.TERMINATED)

    def terminate_all_done(self) -> int:
        with self._lock:
            done = [a for a, ctx in self._agents.items() if ctx.state == AgentState.DONE]
        return sum(1 for agent in done if self.terminate(agent))

    def in_state(self, state: AgentState) -> list[AgentId]:
        with self._lock:
            return sorted(a for a, ctx in self._agents.items() if ctx.state == state)

    def counts(self) -> tuple[int, int, int, int]:
        """Return (assigned, working, done, terminated)."""
        with self._lock:
            states = [ctx.state for ctx in self._agents.values()]
        return (
            states.count(AgentState.ASSIGNED),
            states.count(AgentState.WORKING),
            states.count(AgentState.DONE),
            states.count(AgentState.TERMINATED),
        )

    def all_finished(self) -> bool:
        with self._lock:
            return all(ctx.is_finished for ctx in self._agents.values())

    def success_count(self) -> int:
        """Tasks finished successfully, across every registration."""
        with self._lock:
            return self._succeeded

    def failure_count(self) -> int:
        """Tasks that failed, across every registration."""
        with self._lock:
            return self._failed
