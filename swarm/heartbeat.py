"""Progress heartbeat emitted while an agent's engine call is in flight."""

from __future__ import annotations

import threading
import time
from types import TracebackType

from swarm.constants import DEFAULT_HEARTBEAT_INTERVAL_SECONDS, HEARTBEAT_PREFIX
from swarm.events import EventSink
from swarm.logging import get_logger

logger = get_logger("heartbeat")

MAX_TICK_SECONDS = 0.1


def format_elapsed(seconds: float) -> str:
    """Render elapsed time as ``N ms``, ``N sec`` or ``N min``."""
    if seconds < 1:
        return f"{int(seconds * 1000)} ms"
    if seconds < 60:
        return f"{int(seconds)} sec"
    return f"{int(seconds // 60)} min"


def format_heartbeat(description: str, elapsed_seconds: float) -> str:
    return f'{HEARTBEAT_PREFIX} "{description}" ({format_elapsed(elapsed_seconds)} elapsed)'


class HeartbeatGuard:
    """Context manager that appends a "still working" message every ``interval``.

    The side thread is always stopped and joined on exit, including when the
    wrapped call raises. An interval of 0 disables the thread.
    """

    def __init__(
        self,
        sink: EventSink,
        agent_name: str,
        description: str,
        interval: float = DEFAULT_HEARTBEAT_INTERVAL_SECONDS,
    ) -> None:
        self.sink = sink
        self.agent_name = agent_name
        self.description = description
        self.interval = interval
        self.beats = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._started_at = 0.0

    def start(self) -> HeartbeatGuard:
        self._started_at = time.monotonic()
        if self.interval <= 0 or self._thread is not None:
            return self
        self._thread = threading.Thread(
            target=self._run, name=f"heartbeat-{self.agent_name}", daemon=True
        )
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self) -> None:
        tick = min(self.interval, MAX_TICK_SECONDS)
        next_beat = self._started_at + self.interval
        while not self._stop.wait(tick):
            now = time.monotonic()
            if now < next_beat:
                continue
            self.sink.append(
                format_heartbeat(self.description, now - self._started_at), sender=self.agent_name
            )
            self.beats += 1
            next_beat += self.interval

    def __enter__(self) -> HeartbeatGuard:
        return self.start()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()
