"""Subprocess layer for git: one call per command, failures as GitOperationError."""

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from swarm.exceptions import GitOperationError
from swarm.logging import get_logger

logger = get_logger("git.base")

GIT_TIMEOUT_SECONDS = 60


@dataclass(frozen=True)
class Identity:
    """Author and committer for one git invocation, passed via the environment."""

    name: str
    email: str

    def env(self) -> dict[str, str]:
        env = {}
        for role in ("AUTHOR", "COMMITTER"):
            env[f"GIT_{role}_NAME"] = self.name
            env[f"GIT_{role}_EMAIL"] = self.email
        return env


class GitRunner:
    """Runs git against one checkout (the main one or a linked worktree).

    Every command is issued as ``git -C <repo_path> ...`` so several runners
    for different worktrees of the same repository can coexist.
    """

    def __init__(self, repo_path: str | Path = ".") -> None:
        """Bind the runner to a checkout.

        Raises:
            GitOperationError: If ``repo_path`` has no ``.git`` entry
        """
        self.repo_path = Path(repo_path).resolve()
        # .git is a directory in the main checkout and a file in linked worktrees
        if not (self.repo_path / ".git").exists():
            raise GitOperationError(
                f"Not a git repository: {self.repo_path}", details={"path": str(self.repo_path)}
            )

    def _run(
        self,
        *args: str,
        check: bool = True,
        timeout: int = GIT_TIMEOUT_SECONDS,
        env: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``git <args>`` and capture its output.

        Args:
            *args: Arguments after ``git -C <repo>``
            check: Raise on a non-zero exit status
            timeout: Seconds before the command is abandoned
            env: Variables layered over the current environment

        Raises:
            GitOperationError: On timeout, or on failure when ``check`` is set
        """
        argv = ["git", "-C", str(self.repo_path), *args]
        command = " ".join(argv)
        logger.debug(f"git {' '.join(args)} ({self.repo_path.name})")

        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
                env={**os.environ, **env} if env else None,
            )
        except subprocess.TimeoutExpired as e:
            raise GitOperationError(
                f"git {args[0] if args else ''} timed out after {timeout}s",
                command=command,
                exit_code=-1,
            ) from e

        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise GitOperationError(
                f"git {args[0] if args else ''} failed: {stderr or f'exit {result.returncode}'}",
                command=command,
                exit_code=result.returncode,
                stderr=stderr,
            )
        return result

    def _output(self, *args: str) -> str:
        return self._run(*args).stdout.strip()

    def current_branch(self) -> str:
        return self._output("rev-parse", "--abbrev-ref", "HEAD")

    def current_commit(self) -> str:
        return self._output("rev-parse", "HEAD")

    def has_changes(self) -> bool:
        """True when the checkout has staged, unstaged or untracked changes."""
        return bool(self._output("status", "--porcelain"))

    def has_head(self) -> bool:
        """True once the repository has at least one commit."""
        return self._run("rev-parse", "--verify", "--quiet", "HEAD", check=False).returncode == 0
