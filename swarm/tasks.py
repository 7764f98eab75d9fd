"""Checklist task model: parsing, serialization and dependency-aware assignment.

A tasks file is a markdown checklist::

    # Sprint backlog

    ## Backend
    - [ ] (#1) Add the login endpoint
    - [A] (#2) Write the session store (blocked by #1)
    - [x] (#3) Scaffold the project (B)

Non-task lines are kept verbatim: lines before the first task form the header,
later ones are attached to the task that follows them, and any left over at
the end form the footer. Serializing a parsed list reproduces the file.
"""

from __future__ import annotations

import os
import re
import tempfile
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from swarm.agents import is_valid_initial
from swarm.exceptions import TaskFileError
from swarm.logging import get_logger

logger = get_logger("tasks")

UNKNOWN_INITIAL = "?"

_TASK_NUMBER_RE = re.compile(r"^\(#(\d+)\)")
_BLOCKED_BY = "(blocked by "


class TaskStatus(Enum):
    """Checklist status of a task."""

    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    COMPLETED = "completed"


@dataclass
class Task:
    """A single checklist line.

    ``initial`` is the assigned agent for ASSIGNED tasks and the attributed
    agent (or ``"?"``) for COMPLETED tasks.
    """

    description: str
    status: TaskStatus = TaskStatus.UNASSIGNED
    initial: str | None = None
    line_number: int = 0
    prefix: list[str] = field(default_factory=list)

    def to_line(self) -> str:
        if self.status == TaskStatus.ASSIGNED:
            return f"- [{self.initial}] {self.description}"
        if self.status == TaskStatus.COMPLETED:
            return f"- [x] {self.description} ({self.initial or UNKNOWN_INITIAL})"
        return f"- [ ] {self.description}"

    def task_number(self) -> int | None:
        """Return N when the description starts with ``(#N)``."""
        match = _TASK_NUMBER_RE.match(self.description.lstrip())
        return int(match.group(1)) if match else None

    def blocking_task_numbers(self) -> list[int]:
        """Return the task numbers listed in ``(blocked by #a, #b)``."""
        start = self.description.find(_BLOCKED_BY)
        if start < 0:
            return []
        body = self.description[start + len(_BLOCKED_BY) :]
        end = body.find(")")
        if end < 0:
            return []

        numbers = []
        for token in body[:end].split(","):
            token = token.strip().lstrip("#").strip()
            if token.isdigit():
                numbers.append(int(token))
        return numbers

    def has_blockers(self) -> bool:
        return bool(self.blocking_task_numbers())

    def assign(self, initial: str) -> None:
        """Assign to an agent. Only applies to unassigned tasks."""
        if self.status == TaskStatus.UNASSIGNED:
            self.status = TaskStatus.ASSIGNED
            self.initial = initial.upper()

    def unassign(self) -> None:
        """Revert an assigned task to unassigned. Completed tasks are kept."""
        if self.status == TaskStatus.ASSIGNED:
            self.status = TaskStatus.UNASSIGNED
            self.initial = None

    def complete(self, initial: str) -> None:
        self.status = TaskStatus.COMPLETED
        self.initial = initial.upper()

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED


def parse_task_line(line: str, line_number: int = 0) -> Task | None:
    """Parse one checklist line, returning None for non-task lines."""
    trimmed = line.strip()
    if not trimmed.startswith("- ["):
        return None

    bracket_end = trimmed.find("]")
    if bracket_end < 4:
        return None

    marker = trimmed[3:bracket_end]
    rest = trimmed[bracket_end + 1 :].strip()

    if marker == " ":
        return Task(rest, TaskStatus.UNASSIGNED, None, line_number)

    if marker in ("x", "X"):
        agent_start = rest.rfind(" (")
        if agent_start >= 0 and rest.endswith(")"):
            agent = rest[agent_start + 2 : -1]
            if is_valid_initial(agent) or agent == UNKNOWN_INITIAL:
                return Task(rest[:agent_start], TaskStatus.COMPLETED, agent.upper(), line_number)
        return Task(rest, TaskStatus.COMPLETED, UNKNOWN_INITIAL, line_number)

    # Assigned markers are a single uppercase letter
    if is_valid_initial(marker) and marker.isupper():
        return Task(rest, TaskStatus.ASSIGNED, marker, line_number)

    return None


@dataclass
class TaskList:
    """Ordered tasks plus the raw lines surrounding them."""

    tasks: list[Task] = field(default_factory=list)
    header: list[str] = field(default_factory=list)
    footer: list[str] = field(default_factory=list)

    # -- parse / serialize -------------------------------------------------

    @classmethod
    def parse(cls, content: str) -> TaskList:
        """Parse tasks file content."""
        header: list[str] = []
        tasks: list[Task] = []
        pending: list[str] = []

        for line_number, line in enumerate(content.splitlines(), start=1):
            task = parse_task_line(line, line_number)
            if task is not None:
                task.prefix = pending
                pending = []
                tasks.append(task)
            elif not tasks:
                header.append(line)
            else:
                pending.append(line)

        return cls(tasks=tasks, header=header, footer=pending)

    def to_string(self) -> str:
        lines = list(self.header)
        for task in self.tasks:
            lines.extend(task.prefix)
            lines.append(task.to_line())
        lines.extend(self.footer)

        result = "\n".join(lines)
        if not result.endswith("\n"):
            result += "\n"
        return result

    def __str__(self) -> str:
        return self.to_string()

    @classmethod
    def load(cls, path: str | Path) -> TaskList:
        """Load a tasks file. A missing file yields an empty list.

        Raises:
            TaskFileError: If the file exists but cannot be read
        """
        path = Path(path)
        if not path.exists():
            return cls()
        try:
            return cls.parse(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            raise TaskFileError(f"Failed to read tasks file: {e}", path=str(path)) from e

    def save(self, path: str | Path) -> None:
        """Write the tasks file atomically (temp + rename).

        Raises:
            TaskFileError: If the file cannot be written
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(self.to_string())
            os.replace(tmp_path, str(path))
        except OSError as e:
            raise TaskFileError(f"Failed to write tasks file: {e}", path=str(path)) from e
        logger.debug(f"Saved {len(self.tasks)} tasks to {path}")

    # -- queries -----------------------------------------------------------

    def __len__(self) -> int:
        return len(self.tasks)

    def find_by_number(self, number: int) -> Task | None:
        for task in self.tasks:
            if task.task_number() == number:
                return task
        return None

    def index_of_line(self, line_number: int) -> int | None:
        for idx, task in enumerate(self.tasks):
            if task.line_number == line_number:
                return idx
        return None

    def is_task_number_completed(self, number: int) -> bool:
        task = self.find_by_number(number)
        return task is not None and task.is_completed

    def is_task_blocked(self, idx: int) -> bool:
        """Return True if any task this one is blocked by is not completed.

        Evaluated against current statuses on every call.
        """
        return any(
            not self.is_task_number_completed(n)
            for n in self.tasks[idx].blocking_task_numbers()
        )

    def is_assignable(self, idx: int) -> bool:
        task = self.tasks[idx]
        return task.status == TaskStatus.UNASSIGNED and not self.is_task_blocked(idx)

    def assignable_indices(self) -> list[int]:
        return [idx for idx in range(len(self.tasks)) if self.is_assignable(idx)]

    def assignable_count(self) -> int:
        return len(self.assignable_indices())

    def assign(self, idx: int, initial: str) -> None:
        self.tasks[idx].assign(initial)

    def unassign(self, idx: int) -> None:
        self.tasks[idx].unassign()

    def complete(self, idx: int, initial: str) -> None:
        self.tasks[idx].complete(initial)

    def tasks_for_agent(self, initial: str) -> list[Task]:
        """Tasks currently assigned to ``initial``, in file order."""
        initial = initial.upper()
        return [
            t for t in self.tasks if t.status == TaskStatus.ASSIGNED and t.initial == initial
        ]

    def unassigned_count(self) -> int:
        return sum(1 for t in self.tasks if t.status == TaskStatus.UNASSIGNED)

    def assigned_count(self) -> int:
        return sum(1 for t in self.tasks if t.status == TaskStatus.ASSIGNED)

    def completed_count(self) -> int:
        return sum(1 for t in self.tasks if t.status == TaskStatus.COMPLETED)

    def max_task_number(self) -> int:
        return max((n for t in self.tasks if (n := t.task_number()) is not None), default=0)

    # -- mutations ---------------------------------------------------------

    def unassign_all(self) -> int:
        """Revert every assigned task to unassigned.

        Returns:
            Number of tasks reverted
        """
        count = 0
        for task in self.tasks:
            if task.status == TaskStatus.ASSIGNED:
                task.unassign()
                count += 1
        return count

    def assign_sprint(self, agents: Sequence[str], tasks_per_agent: int) -> int:
        """Assign assignable tasks in file order, filling agents in order.

        Each task goes to the first agent still under ``tasks_per_agent``, so
        one agent is filled to capacity before the next receives work.

        Args:
            agents: Agent initials in priority order
            tasks_per_agent: Capacity per agent

        Returns:
            Number of tasks assigned
        """
        counts = {initial.upper(): 0 for initial in agents}
        for initial in counts:
            counts[initial] = len(self.tasks_for_agent(initial))

        assigned = 0
        for idx in range(len(self.tasks)):
            if not self.is_assignable(idx):
                continue
            agent = next((a for a, n in counts.items() if n < tasks_per_agent), None)
            if agent is None:
                break
            self.assign(idx, agent)
            counts[agent] += 1
            assigned += 1
        return assigned

    def apply_assignments(
        self, assignments: Iterable[tuple[int, str]], agents: Sequence[str], tasks_per_agent: int
    ) -> int:
        """Apply planner output of ``(line_number, initial)`` pairs.

        Pairs naming unknown lines, unlisted agents, non-assignable tasks or
        agents over capacity are skipped.

        Returns:
            Number of tasks assigned
        """
        allowed = {a.upper() for a in agents}
        counts = {a: len(self.tasks_for_agent(a)) for a in allowed}
        assigned = 0
        for line_number, initial in assignments:
            initial = initial.upper()
            idx = self.index_of_line(line_number)
            if idx is None or initial not in allowed or not self.is_assignable(idx):
                logger.debug(f"Skipping planner assignment line={line_number} agent={initial}")
                continue
            if counts[initial] >= tasks_per_agent:
                continue
            self.assign(idx, initial)
            counts[initial] += 1
            assigned += 1
        return assigned

    def append_tasks(self, descriptions: Iterable[str]) -> list[int]:
        """Append follow-up tasks numbered sequentially after the current max.

        Returns:
            The task numbers that were allocated
        """
        numbers = []
        next_number = self.max_task_number() + 1
        for description in descriptions:
            description = description.strip()
            if not description:
                continue
            # Drop any number the planner invented
            description = _TASK_NUMBER_RE.sub("", description).strip()
            self.tasks.append(Task(f"(#{next_number}) {description}"))
            numbers.append(next_number)
            next_number += 1

        # Footer lines now precede the new tasks
        if numbers and self.footer:
            self.tasks[-len(numbers)].prefix = self.footer
            self.footer = []
        return numbers
