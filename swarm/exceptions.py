"""Errors raised by swarm.

Everything derives from ``SwarmError``; git failures (including worktree and
merge conflicts) share ``GitOperationError`` so callers can catch them as one.
"""

from typing import Any


class SwarmError(Exception):
    """Root of the swarm error tree, carrying optional structured details."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details) if details else {}

    def __str__(self) -> str:
        return f"{self.message}: {self.details}" if self.details else self.message


class ConfigurationError(SwarmError):
    """swarm.yaml or a command-line override is invalid."""


class TaskFileError(SwarmError):
    """A tasks file could not be read or written."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message, None if path is None else {"path": path})
        self.path = path


class StateError(SwarmError):
    """Team state or sprint history on disk is unreadable."""


class GitOperationError(SwarmError):
    """git exited non-zero or timed out; ``stderr`` holds its raw output."""

    def __init__(
        self,
        message: str,
        command: str | None = None,
        exit_code: int | None = None,
        stderr: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class WorktreeError(GitOperationError):
    """Creating, listing or removing a linked worktree failed."""

    def __init__(
        self,
        message: str,
        worktree_path: str | None = None,
        command: str | None = None,
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message, command, exit_code, stderr)
        self.worktree_path = worktree_path


class MergeConflictError(GitOperationError):
    """A merge stopped on conflicts and has already been aborted."""

    def __init__(
        self,
        message: str,
        source_branch: str,
        target_branch: str,
        conflicting_files: list[str] | None = None,
    ) -> None:
        self.source_branch = source_branch
        self.target_branch = target_branch
        self.conflicting_files = list(conflicting_files or [])
        super().__init__(
            message,
            details={
                "source_branch": source_branch,
                "target_branch": target_branch,
                "conflicting_files": self.conflicting_files,
            },
        )


class MergeIntegrityError(SwarmError):
    """The feature branch is not reachable from the target through a real merge commit."""

    def __init__(
        self,
        message: str,
        feature_branch: str | None = None,
        target_branch: str | None = None,
        parent_count: int | None = None,
    ) -> None:
        super().__init__(message)
        self.feature_branch = feature_branch
        self.target_branch = target_branch
        self.parent_count = parent_count


class EngineExecutionError(SwarmError):
    """The engine process could not be started or died abnormally."""

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message, None if exit_code is None else {"exit_code": exit_code})
        self.exit_code = exit_code


class PlanningError(SwarmError):
    """The planner gave no usable answer."""


class ShutdownInterrupt(SwarmError):
    """Raised at a checkpoint once shutdown has been requested."""

    def __init__(self, message: str = "Shutdown requested") -> None:
        super().__init__(message)
