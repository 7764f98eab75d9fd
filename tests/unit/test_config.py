"""Tests for swarm configuration module."""

from pathlib import Path

import pytest

from swarm.config import SwarmConfig
from swarm.exceptions import ConfigurationError


class TestSwarmConfig:
    """Tests for SwarmConfig."""

    @pytest.mark.smoke
    def test_defaults(self) -> None:
        config = SwarmConfig()

        assert config.project.name == "swarm"
        assert config.project.team == "default"
        assert config.project.target_branch == "main"
        assert config.sprint.max_agents == 3
        assert config.sprint.tasks_per_agent == 2
        assert config.engine.type == "stub"
        assert config.paths.state_dir == ".swarm-hug"

    def test_team_paths(self) -> None:
        config = SwarmConfig.from_dict({"project": {"team": "backend"}})

        assert config.team_dir == Path(".swarm-hug/backend")
        assert config.tasks_file == Path(".swarm-hug/backend/tasks.md")
        assert config.chat_file == Path(".swarm-hug/backend/chat.md")

    def test_load_missing_returns_defaults(self, tmp_path: Path) -> None:
        config = SwarmConfig.load(tmp_path / "missing.yaml")

        assert config == SwarmConfig()

    def test_save_and_load(self, tmp_path: Path) -> None:
        path = tmp_path / "cfg" / "config.yaml"
        config = SwarmConfig.from_dict(
            {"project": {"name": "api", "team": "core"}, "sprint": {"max_agents": 5}}
        )

        config.save(path)
        loaded = SwarmConfig.load(path)

        assert loaded.project.name == "api"
        assert loaded.project.team == "core"
        assert loaded.sprint.max_agents == 5

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("project: [unclosed\n")

        with pytest.raises(ConfigurationError):
            SwarmConfig.load(path)

    def test_non_mapping_root(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError):
            SwarmConfig.load(path)

    @pytest.mark.parametrize(
        "data",
        [
            {"sprint": {"max_agents": 0}},
            {"sprint": {"max_agents": 27}},
            {"sprint": {"tasks_per_agent": 0}},
            {"engine": {"type": "llm"}},
            {"engine": {"planner": "random"}},
            {"project": {"team": "   "}},
            {"logging": {"level": "loud"}},
        ],
    )
    def test_validation_errors(self, data: dict) -> None:
        with pytest.raises(ConfigurationError):
            SwarmConfig.from_dict(data)

    def test_to_dict_round_trips(self) -> None:
        config = SwarmConfig.from_dict({"engine": {"type": "command", "command": ["agent", "--yes"]}})

        assert SwarmConfig.from_dict(config.to_dict()) == config
