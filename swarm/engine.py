"""Engines execute one task for one agent inside that agent's worktree.

The orchestrator treats engines as blocking black boxes. ``StubEngine`` is
deterministic and used for tests and dry runs; ``CommandEngine`` drives an
external coding-agent CLI in its own process group.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from swarm.agents import initial_from_name
from swarm.constants import EXIT_INTERRUPTED, EXIT_TIMEOUT, EngineType
from swarm.exceptions import EngineExecutionError
from swarm.logging import get_logger
from swarm.shutdown import ProcessRegistry, ShutdownController

logger = get_logger("engine")

STUB_OUTPUT_DIR = ".swarm-stub"


@dataclass
class EngineResult:
    """Outcome of one engine invocation."""

    success: bool
    output: str = ""
    error: str | None = None
    exit_code: int = 0

    @classmethod
    def ok(cls, output: str) -> EngineResult:
        return cls(success=True, output=output)

    @classmethod
    def failure(cls, error: str, exit_code: int = 1, output: str = "") -> EngineResult:
        return cls(success=False, output=output, error=error, exit_code=exit_code)

    @property
    def timed_out(self) -> bool:
        return self.exit_code == EXIT_TIMEOUT

    @property
    def interrupted(self) -> bool:
        return self.exit_code == EXIT_INTERRUPTED


class Engine(Protocol):
    """Blocking task executor."""

    engine_type: EngineType

    def execute(
        self,
        agent_name: str,
        task: str,
        working_dir: Path,
        turn: int,
        team_dir: str | None = None,
    ) -> EngineResult: ...


def build_agent_prompt(agent_name: str, task: str, team_dir: str | None = None) -> str:
    """Minimal instruction handed to a coding-agent CLI on stdin."""
    lines = [
        f"You are Agent {agent_name}, one member of a team of coding agents.",
        "Work only inside the current directory, which is your own git worktree.",
        "Do not commit; your changes are committed and merged for you.",
        "",
        f"Your task: {task}",
    ]
    if team_dir:
        lines.append(f"Team notes live under {team_dir}.")
    return "\n".join(lines) + "\n"


@dataclass
class StubEngine:
    """Deterministic engine that writes an output file instead of calling an LLM."""

    succeed: bool = True
    error: str = "stub engine failure"
    output_dir: str = STUB_OUTPUT_DIR
    engine_type: EngineType = EngineType.STUB
    calls: list[tuple[str, str, int]] = field(default_factory=list, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def output_path(self, working_dir: Path, turn: int, agent_name: str) -> Path:
        initial = initial_from_name(agent_name) or "?"
        return Path(working_dir) / self.output_dir / f"turn{turn}-agent{initial}.md"

    def execute(
        self,
        agent_name: str,
        task: str,
        working_dir: Path,
        turn: int,
        team_dir: str | None = None,
    ) -> EngineResult:
        with self._lock:
            self.calls.append((agent_name, task, turn))

        if not self.succeed:
            return EngineResult.failure(self.error)

        content = f"# Stub Output\n\nAgent: {agent_name}\nTask: {task}\nTurn: {turn}\n\nOK\n"
        path = self.output_path(working_dir, turn, agent_name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        except OSError as e:
            return EngineResult.failure(f"failed to write stub output: {e}")
        return EngineResult.ok(content)


class CommandEngine:
    """Run an external coding-agent CLI with the prompt on stdin.

    Each run gets its own process group (registered with the ProcessRegistry
    so repeated interrupts can kill it). A run exceeding ``timeout_seconds``
    is killed and reported with exit code 124; a run killed after shutdown
    was requested is reported with exit code 130.
    """

    engine_type = EngineType.COMMAND

    def __init__(
        self,
        command: list[str],
        timeout_seconds: int,
        shutdown: ShutdownController | None = None,
        registry: ProcessRegistry | None = None,
    ) -> None:
        if not command:
            raise EngineExecutionError("engine command is empty")
        self.command = command
        self.timeout_seconds = timeout_seconds
        self.shutdown = shutdown
        self.registry = registry or (shutdown.registry if shutdown else ProcessRegistry())

    def execute(
        self,
        agent_name: str,
        task: str,
        working_dir: Path,
        turn: int,
        team_dir: str | None = None,
    ) -> EngineResult:
        """Run the command to completion.

        Raises:
            EngineExecutionError: If the process cannot be spawned
        """
        prompt = build_agent_prompt(agent_name, task, team_dir)
        env = {**os.environ, "SWARM_AGENT": agent_name, "SWARM_TURN": str(turn)}
        try:
            process = subprocess.Popen(
                self.command,
                cwd=working_dir,
                env=env,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=True,
            )
        except OSError as e:
            raise EngineExecutionError(f"failed to spawn {self.command[0]}: {e}") from e

        self.registry.register(process.pid)
        logger.debug(f"Spawned engine for {agent_name} with PID {process.pid}")
        try:
            stdout, stderr = process.communicate(input=prompt, timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            self._kill(process)
            stdout, stderr = process.communicate()
            logger.warning(f"Engine for {agent_name} timed out after {self.timeout_seconds}s")
            return EngineResult.failure(
                f"timed out after {self.timeout_seconds}s", exit_code=EXIT_TIMEOUT, output=stdout
            )
        finally:
            self.registry.unregister(process.pid)

        if process.returncode == 0:
            return EngineResult.ok(stdout)
        if process.returncode < 0 and self.shutdown is not None and self.shutdown.requested:
            return EngineResult.failure("killed by shutdown", exit_code=EXIT_INTERRUPTED, output=stdout)
        detail = stderr.strip() or f"exit code {process.returncode}"
        return EngineResult.failure(detail, exit_code=process.returncode, output=stdout)

    @staticmethod
    def _kill(process: subprocess.Popen[str]) -> None:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            process.kill()


def create_engine(
    engine_type: str,
    command: list[str] | None = None,
    timeout_seconds: int = 3600,
    shutdown: ShutdownController | None = None,
) -> Engine:
    """Build the engine named in configuration."""
    if engine_type == EngineType.STUB.value:
        return StubEngine()
    if engine_type == EngineType.COMMAND.value:
        return CommandEngine(command or [], timeout_seconds, shutdown=shutdown)
    raise EngineExecutionError(f"unknown engine type: {engine_type}")
