"""Tests for swarm.state module."""

import json
from pathlib import Path

import pytest

from swarm.exceptions import StateError
from swarm.state import SprintHistory, TeamState, format_team_name


class TestSprintHistory:
    """Tests for SprintHistory persistence."""

    def test_missing_file_starts_at_zero(self, tmp_path: Path) -> None:
        history = SprintHistory.load(tmp_path, "alpha")

        assert history.total_sprints == 0
        assert history.team == "alpha"

    @pytest.mark.smoke
    def test_next_sprint_and_save(self, tmp_path: Path) -> None:
        history = SprintHistory.load(tmp_path, "alpha")

        assert history.next_sprint() == 1
        assert history.next_sprint() == 2
        history.save(tmp_path)

        data = json.loads((tmp_path / "sprint-history.json").read_text())
        assert data == {"schema_version": 1, "team": "alpha", "total_sprints": 2}
        assert SprintHistory.load(tmp_path, "alpha").total_sprints == 2

    @pytest.mark.parametrize("key", ["sprint_count", "sprint"])
    def test_legacy_keys_migrate(self, tmp_path: Path, key: str) -> None:
        (tmp_path / "sprint-history.json").write_text(json.dumps({key: 4}))

        history = SprintHistory.load(tmp_path, "alpha")
        history.save(tmp_path)

        assert history.total_sprints == 4
        data = json.loads((tmp_path / "sprint-history.json").read_text())
        assert key not in data
        assert data["total_sprints"] == 4

    def test_corrupt_file_raises(self, tmp_path: Path) -> None:
        (tmp_path / "sprint-history.json").write_text("{not json")

        with pytest.raises(StateError):
            SprintHistory.load(tmp_path, "alpha")

    def test_negative_count_raises(self, tmp_path: Path) -> None:
        (tmp_path / "sprint-history.json").write_text(json.dumps({"total_sprints": -1}))

        with pytest.raises(StateError):
            SprintHistory.load(tmp_path, "alpha")

    def test_formatted_team_name(self) -> None:
        assert SprintHistory(team="backend-api").formatted_team_name == "Backend Api"
        assert format_team_name("data_pipeline") == "Data Pipeline"


class TestTeamState:
    """Tests for TeamState persistence."""

    def test_set_and_clear(self, tmp_path: Path) -> None:
        state = TeamState.load(tmp_path, "alpha")
        state.set_feature_branch("  demo-sprint-1-abc  ")
        state.save(tmp_path)

        assert TeamState.load(tmp_path, "alpha").feature_branch == "demo-sprint-1-abc"

        state.clear_feature_branch()
        state.save(tmp_path)
        assert TeamState.load(tmp_path, "alpha").feature_branch is None

    def test_legacy_sprint_branch_key(self, tmp_path: Path) -> None:
        (tmp_path / "team-state.json").write_text(json.dumps({"sprint_branch": "old-sprint"}))

        assert TeamState.load(tmp_path, "alpha").feature_branch == "old-sprint"

    def test_blank_branch_is_none(self, tmp_path: Path) -> None:
        (tmp_path / "team-state.json").write_text(json.dumps({"feature_branch": "  "}))

        assert TeamState.load(tmp_path, "alpha").feature_branch is None

    def test_empty_branch_rejected(self) -> None:
        with pytest.raises(StateError):
            TeamState(team="alpha").set_feature_branch(" ")

    def test_non_object_raises(self, tmp_path: Path) -> None:
        (tmp_path / "team-state.json").write_text("[]")

        with pytest.raises(StateError):
            TeamState.load(tmp_path, "alpha")
