"""Repository-operations worker: the single writer for git worktree mutations.

Git's refs, index and HEAD bookkeeping are shared by every worktree of one
repository and are not safe for uncoordinated concurrent mutation. All
worktree create/merge/cleanup calls are therefore submitted to one worker
thread and execute strictly one at a time, in submission order.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from types import TracebackType
from typing import Any, TypeVar

from swarm.logging import get_logger

logger = get_logger("repo_ops")

T = TypeVar("T")

WORKER_NAME = "repo-ops"


class RepoOps:
    """Serialize repository mutations on a dedicated worker thread.

    ``run`` blocks the caller until its operation has executed. Calls made
    from the worker thread itself (an operation that calls another
    operation) run inline instead of deadlocking on the queue.
    """

    def __init__(self) -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=WORKER_NAME)
        self._worker_ident: int | None = None
        self._closed = False
        self._lock = threading.Lock()
        self.operations = 0

    def _mark_worker(self) -> None:
        self._worker_ident = threading.get_ident()

    def _in_worker(self) -> bool:
        return self._worker_ident is not None and threading.get_ident() == self._worker_ident

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Future[T]:
        """Queue an operation and return its future."""
        with self._lock:
            if self._closed:
                raise RuntimeError("RepoOps worker is shut down")
            self.operations += 1

        def _call() -> T:
            self._mark_worker()
            return fn(*args, **kwargs)

        return self._executor.submit(_call)

    def run(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute an operation on the worker and return its result.

        Exceptions raised by the operation propagate to the caller.
        """
        if self._in_worker():
            return fn(*args, **kwargs)
        return self.submit(fn, *args, **kwargs).result()

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)
        logger.debug(f"Repository worker stopped after {self.operations} operation(s)")

    def __enter__(self) -> RepoOps:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.shutdown()
