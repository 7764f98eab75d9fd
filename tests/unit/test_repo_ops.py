"""Tests for swarm.repo_ops module."""

import threading
import time

import pytest

from swarm.repo_ops import RepoOps


class TestRepoOps:
    """Tests for the single-writer worker."""

    def test_run_returns_result(self, repo_ops: RepoOps) -> None:
        assert repo_ops.run(lambda a, b=0: a + b, 2, b=3) == 5
        assert repo_ops.operations == 1

    def test_exceptions_propagate(self, repo_ops: RepoOps) -> None:
        def _fail() -> None:
            raise ValueError("bad op")

        with pytest.raises(ValueError, match="bad op"):
            repo_ops.run(_fail)

    def test_operations_never_overlap(self, repo_ops: RepoOps) -> None:
        active = 0
        peak = 0
        lock = threading.Lock()

        def _op() -> None:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.01)
            with lock:
                active -= 1

        threads = [threading.Thread(target=repo_ops.run, args=(_op,)) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert peak == 1
        assert repo_ops.operations == 8

    def test_nested_run_executes_inline(self, repo_ops: RepoOps) -> None:
        def _outer() -> str:
            return repo_ops.run(lambda: threading.current_thread().name)

        assert repo_ops.run(_outer).startswith("repo-ops")

    def test_submit_after_shutdown(self) -> None:
        ops = RepoOps()
        ops.shutdown()

        with pytest.raises(RuntimeError):
            ops.submit(lambda: None)

    def test_context_manager(self) -> None:
        with RepoOps() as ops:
            assert ops.run(lambda: 1) == 1
