"""Swarm CLI commands."""

from swarm.commands.cleanup import cleanup
from swarm.commands.init import init
from swarm.commands.run import run
from swarm.commands.status import status

__all__ = [
    "cleanup",
    "init",
    "run",
    "status",
]
