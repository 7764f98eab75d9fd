"""Event sinks for human-readable sprint progress (the team chat log)."""

from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path
from typing import Protocol

from swarm.logging import get_logger

logger = get_logger("events")

SYSTEM_SENDER = "ScrumMaster"


class EventSink(Protocol):
    """Fire-and-forget message sink. Implementations must not raise."""

    def append(self, message: str, sender: str = SYSTEM_SENDER) -> None: ...


class NullSink:
    """Sink that drops every message."""

    def append(self, message: str, sender: str = SYSTEM_SENDER) -> None:
        pass


class MemorySink:
    """Sink that keeps messages in memory."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def append(self, message: str, sender: str = SYSTEM_SENDER) -> None:
        with self._lock:
            self.messages.append((sender, message))

    def texts(self) -> list[str]:
        with self._lock:
            return [m for _, m in self.messages]


def format_message(sender: str, message: str, timestamp: str | None = None) -> str:
    """Format a chat line as ``{timestamp} | {sender} | {message}``."""
    timestamp = timestamp or datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    return f"{timestamp} | {sender} | {message}"


def parse_line(line: str) -> tuple[str, str, str] | None:
    """Split a chat line into (timestamp, sender, message)."""
    parts = line.rstrip("\n").split(" | ", 2)
    if len(parts) != 3:
        return None
    return parts[0], parts[1], parts[2]


class ChatLog:
    """Append-only chat file shared by all agents of a team."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, message: str, sender: str = SYSTEM_SENDER) -> None:
        line = format_message(sender, message)
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            logger.warning(f"Failed to write chat message to {self.path}: {e}")

    def read_recent(self, count: int) -> list[str]:
        if not self.path.exists():
            return []
        lines = self.path.read_text(encoding="utf-8").splitlines()
        return lines[-count:] if count > 0 else []

    def read_from(self, sender: str) -> list[str]:
        if not self.path.exists():
            return []
        pattern = f"| {sender} |"
        return [line for line in self.path.read_text(encoding="utf-8").splitlines() if pattern in line]


def write_sprint_plan(sink: EventSink, sprint_number: int, assignments: list[tuple[str, str]]) -> None:
    """Announce a sprint's assignments as (agent name, task description) pairs."""
    agents = sorted({name for name, _ in assignments})
    sink.append(
        f"Sprint {sprint_number} plan: {len(assignments)} task(s) assigned to {len(agents)} agent(s)"
    )
    for name, description in assignments:
        sink.append(f"{name} assigned: {description}")


def write_sprint_status(
    sink: EventSink,
    sprint_number: int,
    completed: int,
    failed: int,
    remaining: int,
    total: int,
) -> None:
    sink.append(f"SPRINT STATUS: Sprint {sprint_number} complete")
    sink.append(f"SPRINT STATUS: Completed this sprint: {completed}")
    sink.append(f"SPRINT STATUS: Failed this sprint: {failed}")
    sink.append(f"SPRINT STATUS: Remaining tasks: {remaining}")
    sink.append(f"SPRINT STATUS: Total tasks: {total}")


def write_merge_status(sink: EventSink, agent_name: str, status: str, message: str) -> None:
    sink.append(f"Merge {status} for {agent_name}: {message}")
