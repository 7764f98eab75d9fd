"""Sprint planning collaborators: task assignment and post-sprint review.

``DeterministicPlanner`` never fails. ``EnginePlanner`` asks an engine and
raises ``PlanningError`` when its answer cannot be used; the orchestrator
then falls back to deterministic assignment.
"""

from __future__ import annotations

import copy
import json
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

from swarm.engine import Engine
from swarm.exceptions import PlanningError
from swarm.logging import get_logger
from swarm.tasks import TaskList, TaskStatus

logger = get_logger("planner")

PLANNER_AGENT = "ScrumMaster"

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_JSON_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)


class Planner(Protocol):
    def assign(
        self, tasks: TaskList, agents: Sequence[str], tasks_per_agent: int
    ) -> list[tuple[int, str]]:
        """Return (line_number, initial) pairs for the tasks to assign."""
        ...

    def review(self, tasks_text: str, git_log: str) -> list[str]:
        """Return descriptions of follow-up tasks."""
        ...


class DeterministicPlanner:
    """Fill-first assignment with no follow-up review."""

    def assign(
        self, tasks: TaskList, agents: Sequence[str], tasks_per_agent: int
    ) -> list[tuple[int, str]]:
        scratch = copy.deepcopy(tasks)
        scratch.assign_sprint(agents, tasks_per_agent)
        return [
            (t.line_number, t.initial)
            for t in scratch.tasks
            if t.status == TaskStatus.ASSIGNED and t.initial is not None
        ]

    def review(self, tasks_text: str, git_log: str) -> list[str]:
        return []


def build_assign_prompt(tasks: TaskList, agents: Sequence[str], tasks_per_agent: int) -> str:
    assignable = [tasks.tasks[i] for i in tasks.assignable_indices()]
    listing = "\n".join(f"line {t.line_number}: {t.description}" for t in assignable)
    return (
        "Assign the following tasks to agents.\n"
        f"Agents: {', '.join(agents)}. Each agent may take at most {tasks_per_agent} task(s).\n"
        "Keep related tasks with the same agent.\n\n"
        f"{listing}\n\n"
        'Reply with JSON only: {"assignments": [{"agent": "A", "line": 3}]}\n'
    )


def build_review_prompt(tasks_text: str, git_log: str) -> str:
    return (
        "Review the sprint that just finished and list any follow-up tasks that are needed.\n\n"
        f"Current tasks:\n{tasks_text}\n\n"
        f"Git log of the sprint:\n{git_log}\n\n"
        'Reply with a JSON array of task descriptions, or [] if nothing is needed.\n'
    )


def parse_assignments(output: str) -> list[tuple[int, str]]:
    """Parse ``{"assignments": [{"agent": "A", "line": N}, ...]}`` from engine output.

    Raises:
        PlanningError: If no usable JSON object is found
    """
    match = _JSON_OBJECT_RE.search(output)
    if match is None:
        raise PlanningError("planner output contains no JSON object")
    try:
        data: Any = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise PlanningError(f"planner output is not valid JSON: {e}") from e

    entries = data.get("assignments") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        raise PlanningError("planner output has no assignments list")

    pairs = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        agent = str(entry.get("agent", "")).strip()
        line = entry.get("line")
        if len(agent) == 1 and agent.isalpha() and isinstance(line, int):
            pairs.append((line, agent.upper()))
    return pairs


def parse_followups(output: str) -> list[str]:
    """Parse follow-up descriptions from a JSON array or ``- [ ]`` lines."""
    match = _JSON_ARRAY_RE.search(output)
    if match is not None:
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            data = None
        if isinstance(data, list):
            return [str(item).strip() for item in data if str(item).strip()]

    followups = []
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("- [ ]"):
            description = line[5:].strip()
            if description:
                followups.append(description)
    return followups


class EnginePlanner:
    """Planner backed by an engine (typically an LLM CLI)."""

    def __init__(self, engine: Engine, working_dir: str | Path = ".") -> None:
        self.engine = engine
        self.working_dir = Path(working_dir)

    def assign(
        self, tasks: TaskList, agents: Sequence[str], tasks_per_agent: int
    ) -> list[tuple[int, str]]:
        prompt = build_assign_prompt(tasks, agents, tasks_per_agent)
        result = self.engine.execute(PLANNER_AGENT, prompt, self.working_dir, 0)
        if not result.success:
            raise PlanningError(f"planner engine failed: {result.error}")
        pairs = parse_assignments(result.output)
        if not pairs:
            raise PlanningError("planner returned no assignments")
        return pairs

    def review(self, tasks_text: str, git_log: str) -> list[str]:
        prompt = build_review_prompt(tasks_text, git_log)
        result = self.engine.execute(PLANNER_AGENT, prompt, self.working_dir, 0)
        if not result.success:
            raise PlanningError(f"review engine failed: {result.error}")
        return parse_followups(result.output)
