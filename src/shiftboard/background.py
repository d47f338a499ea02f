"""Background runner for work that must not block the triggering call."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

LOGGER = logging.getLogger(__name__)


class BackgroundTasks:
    """Thread pool that runs submitted tasks to completion and logs their failures.

    Callers never wait on a submitted task; ``drain`` exists for shutdown and
    for tests that need to observe the side effects.
    """

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="shiftboard-bg")
        self._lock = threading.Lock()
        self._pending: set[Future[Any]] = set()

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future[Any]:
        future = self._executor.submit(self._run, name, fn, *args, **kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    @staticmethod
    def _run(name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            LOGGER.error("Background task %s failed: %s", name, exc, exc_info=True)
            raise

    def _forget(self, future: Future[Any]) -> None:
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: float | None = None) -> None:
        """Block until every task submitted so far has finished."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self, wait_for_tasks: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_tasks)
