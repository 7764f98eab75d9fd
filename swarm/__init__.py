"""Swarm - sprint execution engine for a team of coding agents.

Agents work in isolated git worktrees; their work is merged into a sprint
branch and landed on the target branch with a verified merge commit.
"""

__version__ = "0.1.0"

from swarm.agents import AgentId
from swarm.config import SwarmConfig
from swarm.constants import AgentState, MergeStatus
from swarm.exceptions import SwarmError
from swarm.orchestrator import SprintOrchestrator, SprintResult
from swarm.tasks import Task, TaskList, TaskStatus

__all__ = [
    "__version__",
    "AgentId",
    "AgentState",
    "MergeStatus",
    "SprintOrchestrator",
    "SprintResult",
    "SwarmConfig",
    "SwarmError",
    "Task",
    "TaskList",
    "TaskStatus",
]
