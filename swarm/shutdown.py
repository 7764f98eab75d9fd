"""Cooperative shutdown: cancellation flag, interrupt counting and subprocess registry.

The orchestrator polls ``ShutdownController.requested`` at checkpoints (before
each task and before each sprint). In-flight engine calls are not preempted;
they end on their own timeout, or when repeated interrupts kill every
registered process group.
"""

from __future__ import annotations

import os
import signal
import sys
import threading
from collections.abc import Callable
from types import FrameType

from swarm.constants import EXIT_INTERRUPTED, MAX_INTERRUPTS
from swarm.logging import get_logger

logger = get_logger("shutdown")


class ProcessRegistry:
    """PIDs of running child processes, so they can be killed on shutdown."""

    def __init__(self) -> None:
        self._pids: set[int] = set()
        self._lock = threading.Lock()

    def register(self, pid: int) -> None:
        with self._lock:
            self._pids.add(pid)

    def unregister(self, pid: int) -> None:
        with self._lock:
            self._pids.discard(pid)

    def all_pids(self) -> list[int]:
        with self._lock:
            return sorted(self._pids)

    def kill_all(self) -> int:
        """SIGKILL every registered process group (or process).

        Children are started with ``start_new_session=True``, so each PID is
        also the ID of its process group.

        Returns:
            Number of processes signalled
        """
        killed = 0
        for pid in self.all_pids():
            try:
                os.killpg(pid, signal.SIGKILL)
                killed += 1
            except ProcessLookupError:
                pass
            except PermissionError:
                try:
                    os.kill(pid, signal.SIGKILL)
                    killed += 1
                except OSError as e:
                    logger.warning(f"Failed to kill process {pid}: {e}")
            self.unregister(pid)
        if killed:
            logger.info(f"Killed {killed} registered process(es)")
        return killed


class ShutdownController:
    """Process-wide cancellation flag plus interrupt counter.

    Passed explicitly through the orchestrator; only the signal adapter
    installed by ``install_signal_handlers`` feeds it from outside.
    """

    def __init__(
        self,
        registry: ProcessRegistry | None = None,
        max_interrupts: int = MAX_INTERRUPTS,
        exit_fn: Callable[[int], None] = sys.exit,
        notify: Callable[[str], None] | None = None,
    ) -> None:
        self.registry = registry or ProcessRegistry()
        self.max_interrupts = max_interrupts
        self._exit_fn = exit_fn
        self._notify = notify or (lambda msg: print(msg, file=sys.stderr))
        self._event = threading.Event()
        self._interrupts = 0
        self._lock = threading.Lock()

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    @property
    def interrupt_count(self) -> int:
        with self._lock:
            return self._interrupts

    def request(self) -> None:
        """Set the shutdown flag without counting an interrupt."""
        if not self._event.is_set():
            logger.info("Shutdown requested")
        self._event.set()

    def reset(self) -> None:
        with self._lock:
            self._interrupts = 0
        self._event.clear()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def handle_interrupt(self) -> None:
        """Record one interrupt (Ctrl+C / SIGTERM).

        The first interrupt requests shutdown and kills registered processes;
        the ``max_interrupts``-th exits the process with status 130.
        """
        with self._lock:
            self._interrupts += 1
            count = self._interrupts

        if count >= self.max_interrupts:
            self._notify("Forced exit.")
            self.registry.kill_all()
            self._exit_fn(EXIT_INTERRUPTED)
            return

        if count == 1:
            self._notify(
                "Shutdown requested: finishing current work. "
                f"Press Ctrl+C {self.max_interrupts - 1} more time(s) to force exit."
            )
            self.request()
            self.registry.kill_all()
        else:
            remaining = self.max_interrupts - count
            self._notify(f"Press Ctrl+C {remaining} more time(s) to force exit.")


def install_signal_handlers(controller: ShutdownController) -> None:
    """Route SIGINT and SIGTERM to ``controller.handle_interrupt``.

    Must be called from the main thread.
    """

    def _handler(signum: int, frame: FrameType | None) -> None:
        logger.debug(f"Received signal {signum}")
        controller.handle_interrupt()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
