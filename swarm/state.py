"""Persisted per-team state: sprint history and team state.

Both files live under ``<state_dir>/<team>/`` inside whichever checkout the
sprint is working in, so they travel with the sprint branch and land on the
target branch together with the work they describe.

Legacy keys are migrated on read (``sprint_count``/``sprint`` become
``total_sprints``; ``sprint_branch`` becomes ``feature_branch``) and files
are always rewritten in the current schema.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from swarm.constants import SPRINT_HISTORY_FILE, STATE_SCHEMA_VERSION, TEAM_STATE_FILE
from swarm.exceptions import StateError
from swarm.logging import get_logger

logger = get_logger("state")


def _atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_path, str(path))
    except OSError as e:
        Path(tmp_path).unlink(missing_ok=True)
        raise StateError(f"Failed to write {path}: {e}") from e


def _read_json(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise StateError(f"Failed to read {path}: {e}", details={"path": str(path)}) from e
    if not isinstance(data, dict):
        raise StateError(f"Expected a JSON object in {path}", details={"path": str(path)})
    return data


def format_team_name(team: str) -> str:
    """Render ``team-name`` / ``team_name`` as ``Team Name`` for commit messages."""
    return " ".join(word[:1].upper() + word[1:] for word in team.replace("_", "-").split("-"))


class SprintHistory(BaseModel):
    """Total number of sprints ever run by a team."""

    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = STATE_SCHEMA_VERSION
    team: str = ""
    total_sprints: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("total_sprints", "sprint_count", "sprint"),
    )

    @classmethod
    def path_in(cls, team_dir: str | Path) -> Path:
        return Path(team_dir) / SPRINT_HISTORY_FILE

    @classmethod
    def load(cls, team_dir: str | Path, team: str) -> SprintHistory:
        """Load history from ``team_dir``; a missing file starts at zero sprints.

        Raises:
            StateError: If the file is unreadable or fails validation
        """
        data = _read_json(cls.path_in(team_dir))
        if data is None:
            return cls(team=team)
        try:
            history = cls.model_validate(data)
        except ValidationError as e:
            raise StateError(f"Invalid sprint history in {team_dir}", details={"errors": e.errors()}) from e
        if not history.team:
            history.team = team
        return history

    def save(self, team_dir: str | Path) -> Path:
        path = self.path_in(team_dir)
        _atomic_write_json(path, self.model_dump())
        return path

    def next_sprint(self) -> int:
        """Increment and return the sprint number to use for this sprint."""
        self.total_sprints += 1
        return self.total_sprints

    @property
    def formatted_team_name(self) -> str:
        return format_team_name(self.team)


class TeamState(BaseModel):
    """Which sprint (feature) branch a team currently has in flight."""

    model_config = ConfigDict(populate_by_name=True)

    schema_version: int = STATE_SCHEMA_VERSION
    team: str = ""
    feature_branch: str | None = Field(
        default=None,
        validation_alias=AliasChoices("feature_branch", "sprint_branch"),
    )

    @field_validator("feature_branch")
    @classmethod
    def _blank_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @classmethod
    def path_in(cls, team_dir: str | Path) -> Path:
        return Path(team_dir) / TEAM_STATE_FILE

    @classmethod
    def load(cls, team_dir: str | Path, team: str) -> TeamState:
        """Load team state from ``team_dir``; a missing file means no branch in flight.

        Raises:
            StateError: If the file is unreadable or fails validation
        """
        data = _read_json(cls.path_in(team_dir))
        if data is None:
            return cls(team=team)
        try:
            state = cls.model_validate(data)
        except ValidationError as e:
            raise StateError(f"Invalid team state in {team_dir}", details={"errors": e.errors()}) from e
        if not state.team:
            state.team = team
        return state

    def save(self, team_dir: str | Path) -> Path:
        path = self.path_in(team_dir)
        _atomic_write_json(path, self.model_dump())
        return path

    def set_feature_branch(self, branch: str) -> None:
        if not branch.strip():
            raise StateError("feature branch name is empty")
        self.feature_branch = branch.strip()

    def clear_feature_branch(self) -> None:
        self.feature_branch = None
