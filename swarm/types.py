"""Shared result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from swarm.constants import MergeStatus


@dataclass
class MergeResult:
    """Outcome of merging ``branch`` into ``target``."""

    status: MergeStatus
    branch: str
    target: str
    commit: str | None = None
    conflicting_files: list[str] = field(default_factory=list)
    error: str | None = None
    preserved_ref: str | None = None

    @property
    def ok(self) -> bool:
        """True for a landed merge or a no-op (nothing to merge)."""
        return self.status in (MergeStatus.SUCCESS, MergeStatus.NO_CHANGES)

    def describe(self) -> str:
        if self.status == MergeStatus.SUCCESS:
            return f"merged {self.branch} into {self.target}"
        if self.status == MergeStatus.NO_CHANGES:
            return f"no changes on {self.branch}"
        if self.status == MergeStatus.NO_BRANCH:
            return f"branch {self.branch} does not exist"
        if self.status == MergeStatus.CONFLICT:
            return f"merge conflict in: {', '.join(self.conflicting_files)}"
        return f"merge failed: {self.error}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "branch": self.branch,
            "target": self.target,
            "commit": self.commit,
            "conflicting_files": self.conflicting_files,
            "error": self.error,
            "preserved_ref": self.preserved_ref,
        }
