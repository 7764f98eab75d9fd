"""Pytest configuration and fixtures for swarm tests."""

import os
import subprocess
from collections.abc import Generator
from pathlib import Path

import pytest

from swarm.config import SwarmConfig
from swarm.repo_ops import RepoOps

SAMPLE_TASKS = """# Tasks

## Backend

- [ ] (#1) Add login endpoint
- [ ] (#2) Add logout endpoint
- [ ] (#3) Write session tests (blocked by #1)
- [ ] (#4) Document the API
"""


def _run_git(*args: str, cwd: Path | None = None) -> str:
    """Run git command safely without shell=True."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout


@pytest.fixture
def tmp_repo(tmp_path: Path) -> Generator[Path, None, None]:
    """Create a temporary git repository.

    Yields:
        Path to the temporary repository
    """
    orig_dir = os.getcwd()
    os.chdir(tmp_path)

    _run_git("init", "-q", "-b", "main", cwd=tmp_path)
    _run_git("config", "user.email", "test@test.com", cwd=tmp_path)
    _run_git("config", "user.name", "Test", cwd=tmp_path)

    # Create initial commit
    (tmp_path / "README.md").write_text("# Test Repo")
    _run_git("add", "-A", cwd=tmp_path)
    _run_git("commit", "-q", "-m", "Initial commit", cwd=tmp_path)

    yield tmp_path

    os.chdir(orig_dir)


@pytest.fixture
def git():
    """Run git in a directory and return stdout."""
    return _run_git


@pytest.fixture
def repo_ops() -> Generator[RepoOps, None, None]:
    """A RepoOps worker shut down after the test."""
    ops = RepoOps()
    yield ops
    ops.shutdown()


@pytest.fixture
def sample_config() -> SwarmConfig:
    """Configuration with small limits and no heartbeats.

    Returns:
        Sample SwarmConfig instance
    """
    return SwarmConfig.from_dict(
        {
            "project": {"name": "demo", "team": "alpha", "target_branch": "main"},
            "sprint": {"max_agents": 2, "tasks_per_agent": 2, "max_consecutive_failed_sprints": 2},
            "engine": {"heartbeat_interval_seconds": 0},
        }
    )


@pytest.fixture
def seeded_repo(tmp_repo: Path, sample_config: SwarmConfig) -> Path:
    """Temporary repository with a committed team task list.

    Returns:
        Path to the repository
    """
    tasks_path = tmp_repo / sample_config.tasks_file
    tasks_path.parent.mkdir(parents=True)
    tasks_path.write_text(SAMPLE_TASKS)
    _run_git("add", "-A", cwd=tmp_repo)
    _run_git("commit", "-q", "-m", "Add tasks", cwd=tmp_repo)
    return tmp_repo
