"""Tests for swarm.exceptions module."""

from swarm.exceptions import (
    EngineExecutionError,
    GitOperationError,
    MergeConflictError,
    MergeIntegrityError,
    ShutdownInterrupt,
    SwarmError,
    TaskFileError,
    WorktreeError,
)


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_str_includes_details(self) -> None:
        assert str(SwarmError("boom")) == "boom"
        assert str(SwarmError("boom", {"k": 1})) == "boom: {'k': 1}"

    def test_git_error_keeps_stderr(self) -> None:
        e = GitOperationError("failed", command="git merge x", exit_code=1, stderr="fatal: nope")

        assert e.stderr == "fatal: nope"
        assert e.exit_code == 1
        assert isinstance(e, SwarmError)

    def test_worktree_error_is_git_error(self) -> None:
        e = WorktreeError("bad", worktree_path="/tmp/wt")

        assert isinstance(e, GitOperationError)
        assert e.worktree_path == "/tmp/wt"

    def test_merge_conflict(self) -> None:
        e = MergeConflictError("conflict", "feature", "main", ["a.py"])

        assert e.conflicting_files == ["a.py"]
        assert e.details["source_branch"] == "feature"
        assert isinstance(e, GitOperationError)

    def test_merge_integrity_parent_count(self) -> None:
        e = MergeIntegrityError("squash", feature_branch="f", target_branch="t", parent_count=1)

        assert e.parent_count == 1
        assert str(e) == "squash"

    def test_misc(self) -> None:
        assert EngineExecutionError("spawn", exit_code=127).details == {"exit_code": 127}
        assert TaskFileError("x", path="tasks.md").path == "tasks.md"
        assert str(ShutdownInterrupt()) == "Shutdown requested"
