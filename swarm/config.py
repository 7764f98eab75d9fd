"""Swarm configuration management using Pydantic."""

from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, Field, ValidationError, field_validator

from swarm.constants import (
    CHAT_FILE,
    CONFIG_FILE,
    DEFAULT_ENGINE_TIMEOUT_SECONDS,
    DEFAULT_HEARTBEAT_INTERVAL_SECONDS,
    DEFAULT_MAX_AGENTS,
    DEFAULT_MAX_CONSECUTIVE_FAILED_SPRINTS,
    DEFAULT_PROJECT,
    DEFAULT_TARGET_BRANCH,
    DEFAULT_TASKS_PER_AGENT,
    LOGS_DIR,
    STATE_DIR,
    TASKS_FILE,
    WORKTREES_DIR,
)
from swarm.exceptions import ConfigurationError


class ProjectConfig(BaseModel):
    """Project identification configuration."""

    name: str = DEFAULT_PROJECT
    team: str = "default"
    target_branch: str = DEFAULT_TARGET_BRANCH

    @field_validator("name", "team", "target_branch")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class SprintConfig(BaseModel):
    """Sprint sizing and run-loop limits."""

    max_agents: int = Field(default=DEFAULT_MAX_AGENTS, ge=1, le=26)
    tasks_per_agent: int = Field(default=DEFAULT_TASKS_PER_AGENT, ge=1, le=50)
    max_sprints: int = Field(default=0, ge=0, description="0 runs until no work remains")
    max_consecutive_failed_sprints: int = Field(
        default=DEFAULT_MAX_CONSECUTIVE_FAILED_SPRINTS, ge=1, le=100
    )
    post_sprint_review: bool = True


class EngineConfig(BaseModel):
    """Engine selection and limits."""

    type: str = Field(default="stub", pattern="^(stub|command)$")
    command: list[str] = Field(default_factory=list)
    timeout_seconds: int = Field(default=DEFAULT_ENGINE_TIMEOUT_SECONDS, ge=1, le=86400)
    heartbeat_interval_seconds: int = Field(
        default=DEFAULT_HEARTBEAT_INTERVAL_SECONDS, ge=0, le=3600
    )
    planner: str = Field(default="deterministic", pattern="^(deterministic|engine)$")
    merge_agent: str = Field(default="git", pattern="^(git|engine)$")


class PathsConfig(BaseModel):
    """Locations of swarm state, relative to the repository root."""

    state_dir: str = STATE_DIR
    worktrees_dir: str = WORKTREES_DIR


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="info", pattern="^(debug|info|warn|error)$")
    directory: str = LOGS_DIR
    json_output: bool = True
    max_log_size_mb: int = Field(default=10, ge=1, le=1000)


class SwarmConfig(BaseModel):
    """Complete swarm configuration."""

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    sprint: SprintConfig = Field(default_factory=SprintConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "SwarmConfig":
        """Load configuration from YAML file.

        Args:
            config_path: Path to config file. Defaults to .swarm-hug/config.yaml

        Returns:
            SwarmConfig instance

        Raises:
            ConfigurationError: If the file is not valid YAML or fails validation
        """
        config_path = Path(CONFIG_FILE) if config_path is None else Path(config_path)

        if not config_path.exists():
            return cls()

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in {config_path}", details={"error": str(e)}
            ) from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config root must be a mapping: {config_path}")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SwarmConfig":
        """Create configuration from dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            SwarmConfig instance
        """
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError("Invalid configuration", details={"errors": e.errors()}) from e

    def save(self, config_path: str | Path | None = None) -> None:
        """Save configuration to YAML file.

        Args:
            config_path: Path to save config. Defaults to .swarm-hug/config.yaml
        """
        config_path = Path(CONFIG_FILE) if config_path is None else Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump()

    @property
    def team_dir(self) -> Path:
        """Team state directory, relative to any checkout of the repository."""
        return Path(self.paths.state_dir) / self.project.team

    @property
    def tasks_file(self) -> Path:
        return self.team_dir / TASKS_FILE

    @property
    def chat_file(self) -> Path:
        return self.team_dir / CHAT_FILE
