"""Agent identities: one fixed name per initial A-Z."""

from __future__ import annotations

import string
from dataclasses import dataclass

from swarm.constants import AGENT_EMAIL_DOMAIN

AGENT_NAMES: tuple[str, ...] = (
    "Aaron",
    "Betty",
    "Carlos",
    "Diana",
    "Ethan",
    "Fiona",
    "George",
    "Hannah",
    "Ian",
    "Julia",
    "Kevin",
    "Laura",
    "Miguel",
    "Nadia",
    "Omar",
    "Priya",
    "Quinn",
    "Rosa",
    "Sam",
    "Tina",
    "Uma",
    "Victor",
    "Wendy",
    "Xavier",
    "Yara",
    "Zane",
)

_NAME_TO_INITIAL = {name.lower(): name[0] for name in AGENT_NAMES}


def is_valid_initial(initial: str) -> bool:
    """Return True if ``initial`` is a single ASCII letter."""
    return len(initial) == 1 and initial in string.ascii_letters


def name_from_initial(initial: str) -> str | None:
    """Look up the agent name for an initial (case-insensitive)."""
    if not is_valid_initial(initial):
        return None
    return AGENT_NAMES[ord(initial.upper()) - ord("A")]


def initial_from_name(name: str) -> str | None:
    """Look up the initial for an agent name (case-insensitive)."""
    return _NAME_TO_INITIAL.get(name.strip().lower())


def get_initials(count: int) -> list[str]:
    """Return the first ``count`` agent initials, capped at 26."""
    count = max(0, min(count, len(AGENT_NAMES)))
    return [name[0] for name in AGENT_NAMES[:count]]


@dataclass(frozen=True, order=True)
class AgentId:
    """Bounded agent identity used as a key for per-agent state."""

    initial: str
    name: str

    @classmethod
    def from_initial(cls, initial: str) -> AgentId:
        """Build an AgentId from an initial.

        Raises:
            ValueError: If the initial is not an ASCII letter
        """
        name = name_from_initial(initial)
        if name is None:
            raise ValueError(f"invalid agent initial: {initial!r}")
        return cls(initial=initial.upper(), name=name)

    @property
    def email(self) -> str:
        return f"agent-{self.initial}@{AGENT_EMAIL_DOMAIN}"

    @property
    def git_author(self) -> str:
        return f"Agent {self.name}"

    def __str__(self) -> str:
        return self.name
