"""Logging for swarm runs.

Every module logs through ``get_logger(name)`` into the ``swarm.`` namespace.
``setup_logging`` routes that namespace to a colored console stream and, when
a log directory is configured, to rotating JSON-lines files that carry the
agent and sprint of the thread that emitted each record.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from collections.abc import Iterator, MutableMapping
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

LOGGER_NAMESPACE = "swarm"
LOG_FILE_NAME = "swarm.log"

# Record attributes copied into JSON output when a caller passes them as extra
RECORD_FIELDS = ("agent", "initial", "task", "sprint", "branch", "command")

_thread_state = threading.local()


def _thread_context() -> dict[str, Any]:
    context = getattr(_thread_state, "fields", None)
    if context is None:
        context = _thread_state.fields = {}
    return context


def _record_fields(record: logging.LogRecord) -> Iterator[tuple[str, Any]]:
    yield from _thread_context().items()
    for name in RECORD_FIELDS:
        if name in record.__dict__:
            yield name, record.__dict__[name]


class JsonFormatter(logging.Formatter):
    """One JSON object per line, tagged with the emitting agent's context."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        entry.update(_record_fields(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Short colored lines: ``12:00:01 WARNING  [Aaron] message``."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        fields = dict(_record_fields(record))
        tags = [str(fields[key]) for key in ("agent", "task") if fields.get(key)]
        prefix = f"[{':'.join(tags)}] " if tags else ""

        color = self.LEVEL_COLORS.get(record.levelno, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{color}{clock} {record.levelname:<8}{self.RESET} {prefix}{record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def set_agent_context(agent: str | None = None, sprint: int | None = None, **fields: Any) -> None:
    """Replace the logging context of the calling thread.

    Args:
        agent: Agent name attached to every record from this thread
        sprint: Sprint number attached to every record from this thread
        **fields: Any further fields to attach
    """
    context = _thread_context()
    context.clear()
    context.update({k: v for k, v in (("agent", agent), ("sprint", sprint)) if v is not None})
    context.update(fields)


def clear_agent_context() -> None:
    _thread_context().clear()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


def _level_from_name(level: str) -> int:
    name = level.strip().upper()
    if name == "WARN":
        name = "WARNING"
    return logging.getLevelNamesMapping().get(name, logging.INFO)


def setup_logging(
    level: str = "info",
    log_dir: str | Path | None = None,
    json_output: bool = True,
    console_output: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Configure the ``swarm`` logger tree. Safe to call repeatedly.

    Args:
        level: One of debug, info, warn, error
        log_dir: Directory for the rotating JSON log; no file log when None
        json_output: Write the JSON file log (requires ``log_dir``)
        console_output: Write colored lines to stderr
        max_bytes: Size at which the JSON log rotates
        backup_count: Rotated files to keep
    """
    log_level = _level_from_name(level)
    handlers: list[logging.Handler] = []

    if console_output:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(ConsoleFormatter())
        handlers.append(stream)

    if log_dir is not None and json_output:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(
            directory / LOG_FILE_NAME, maxBytes=max_bytes, backupCount=backup_count
        )
        rotating.setFormatter(JsonFormatter())
        handlers.append(rotating)

    swarm_logger = logging.getLogger(LOGGER_NAMESPACE)
    for old in swarm_logger.handlers:
        old.close()
    swarm_logger.handlers = []
    swarm_logger.setLevel(log_level)
    for handler in handlers:
        handler.setLevel(log_level)
        swarm_logger.addHandler(handler)
    swarm_logger.propagate = False


class AgentLoggerAdapter(logging.LoggerAdapter[logging.Logger]):
    """Stamps the agent's name and initial onto every record."""

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


def get_agent_logger(agent: str, initial: str | None = None) -> AgentLoggerAdapter:
    extra: dict[str, Any] = {"agent": agent}
    if initial is not None:
        extra["initial"] = initial
    return AgentLoggerAdapter(get_logger("agent"), extra)
