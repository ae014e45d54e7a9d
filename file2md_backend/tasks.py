from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable


logger = logging.getLogger(__name__)


class BackgroundRunner:
    """Fire-and-forget work queue used for cleanup that must not block a response.

    With run_now=True the callable runs synchronously in the caller, which lets
    tests observe the side effects deterministically.
    """

    def __init__(self, max_workers: int = 2, run_now: bool = False) -> None:
        self.run_now = run_now
        self._max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="file2md-bg"
                )
            return self._executor

    def spawn(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future | None:
        name = getattr(fn, "__name__", repr(fn))
        if self.run_now:
            try:
                fn(*args, **kwargs)
            except Exception:
                logger.exception("Background task %s failed", name)
            return None

        future = self._get_executor().submit(fn, *args, **kwargs)
        self._pending.add(future)

        def _done(f: Future) -> None:
            self._pending.discard(f)
            if f.cancelled():
                return
            exc = f.exception()
            if exc is not None:
                logger.error("Background task %s failed: %s", name, exc)

        future.add_done_callback(_done)
        return future

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
