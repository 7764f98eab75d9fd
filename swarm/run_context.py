"""Per-sprint naming context: branch and worktree names scoped by a random run hash."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field

from swarm.agents import name_from_initial
from swarm.constants import DEFAULT_TARGET_BRANCH, RUN_HASH_ALPHABET, RUN_HASH_LENGTH

_UNRESERVED = frozenset(b"abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789._-")


def generate_run_hash(length: int = RUN_HASH_LENGTH) -> str:
    """Return a random lowercase alphanumeric token."""
    return "".join(secrets.choice(RUN_HASH_ALPHABET) for _ in range(length))


def new_run_instance() -> str:
    """Token shared by every sprint of one top-level invocation."""
    return secrets.token_hex(4)


def percent_encode(value: str) -> str:
    """Escape every byte outside ``[A-Za-z0-9._-]`` as ``%XX``."""
    return "".join(
        chr(byte) if byte in _UNRESERVED else f"%{byte:02X}" for byte in value.encode("utf-8")
    )


@dataclass(frozen=True)
class RunContext:
    """Names for one sprint's branches.

    Every name derived from one context ends in the same ``run_hash``, so two
    sprints (or two concurrent invocations) never produce the same branch.
    """

    project: str
    sprint_number: int
    target_branch: str = DEFAULT_TARGET_BRANCH
    run_instance: str = field(default_factory=new_run_instance)
    run_hash: str = field(default_factory=generate_run_hash)

    @classmethod
    def new(
        cls,
        project: str,
        sprint_number: int,
        target_branch: str = DEFAULT_TARGET_BRANCH,
        run_instance: str | None = None,
    ) -> RunContext:
        return cls(
            project=project,
            sprint_number=sprint_number,
            target_branch=target_branch,
            run_instance=run_instance or new_run_instance(),
        )

    @property
    def runtime_id(self) -> str:
        """Namespace key for persisted runtime state of this invocation."""
        return f"{self.project}::{percent_encode(self.target_branch)}::{self.run_instance}"

    def sprint_branch(self) -> str:
        return f"{self.project}-sprint-{self.sprint_number}-{self.run_hash}"

    def agent_branch(self, initial: str) -> str:
        name = name_from_initial(initial)
        label = name.lower() if name else "unknown"
        return f"{self.project}-agent-{label}-{self.run_hash}"
