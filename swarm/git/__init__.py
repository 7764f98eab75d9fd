"""Swarm git package -- subprocess-backed git operations.

Re-exports core classes for convenient access:
    from swarm.git import GitOps, GitRunner, Identity
"""

from swarm.git.base import GitRunner, Identity
from swarm.git.ops import GitOps

__all__ = [
    "GitRunner",
    "GitOps",
    "Identity",
]
