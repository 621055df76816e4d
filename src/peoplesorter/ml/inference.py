"""Inference concurrency layer.

Architecture:
    pipeline (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> decode + ONNX inference

Callers beyond the semaphore limit queue, by default with a 5s timeout. Each
call may additionally be bounded by its own execution timeout.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from peoplesorter.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Manages the semaphore and thread pool for ML inference."""

    def __init__(self, settings: Settings) -> None:
        self._max_concurrent = settings.max_concurrent
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="detector",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    @property
    def max_concurrent(self) -> int:
        """Number of worker threads, and so of calls that can run at once."""
        return self._max_concurrent

    async def run(
        self,
        func: Callable[..., T],
        *args: object,
        timeout: float | None = None,
        queue_timeout: float | None = SEMAPHORE_TIMEOUT_SECONDS,
    ) -> T:
        """Submit a synchronous function to the inference thread pool.

        Waits up to ``queue_timeout`` for a free slot (forever when None),
        then runs the function in the executor. The slot is held until the
        worker thread returns, even when the caller stops waiting, so the
        executor never queues work and ``timeout`` only measures running time.

        Raises:
            TimeoutError: If no slot frees up within ``queue_timeout``, or the
                function runs longer than ``timeout``.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=queue_timeout)
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            future = loop.run_in_executor(self._executor, func, *args)
        except BaseException:
            self._release_slot()
            raise
        future.add_done_callback(self._on_worker_done)
        # The worker thread keeps running after a timeout; only the wait is abandoned.
        return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)

    def _on_worker_done(self, _future: asyncio.Future[object]) -> None:
        self._release_slot()

    def _release_slot(self) -> None:
        self._semaphore.release()
        with self._counter_lock:
            self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running inference tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a semaphore slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True, cancel_futures=True)
