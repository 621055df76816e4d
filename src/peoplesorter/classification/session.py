"""Run controller tying the loader, pipeline and result store together.

Only one run is active at a time. Starting a new run cancels the one in
flight, clears every previous result and resets the counters.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from peoplesorter.classification.pipeline import ClassificationPipeline, RunStats, filter_images

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from peoplesorter.classification.pipeline import ImageInput
    from peoplesorter.classification.store import ResultStore
    from peoplesorter.config import Settings
    from peoplesorter.ml.detector import Detector
    from peoplesorter.ml.inference import InferencePool
    from peoplesorter.ml.loader import ModelLoader

logger = logging.getLogger(__name__)


class RunState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class RunStatus:
    run_id: int
    state: RunState
    stats: RunStats


class ClassificationSession:
    """Starts, cancels and tracks classification runs over one result store."""

    def __init__(
        self,
        loader: ModelLoader,
        pool: InferencePool,
        store: ResultStore,
        settings: Settings,
    ) -> None:
        self._loader = loader
        self._pool = pool
        self._store = store
        self._settings = settings

        self._run_id = 0
        self._state = RunState.IDLE
        self._stats = RunStats(total=0)
        self._task: asyncio.Task[None] | None = None
        self._start_lock = asyncio.Lock()

    @property
    def store(self) -> ResultStore:
        return self._store

    @property
    def status(self) -> RunStatus:
        return RunStatus(run_id=self._run_id, state=self._state, stats=self._stats.snapshot())

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, inputs: Iterable[ImageInput]) -> RunStatus:
        """Begin a new run over the image-typed subset of ``inputs``.

        Raises:
            ModelUnavailableError: If the detector is not loaded. Previous
                results are left untouched in that case.
        """
        detector = self._loader.detector()
        accepted = filter_images(inputs)

        async with self._start_lock:
            await self.cancel()
            self._store.clear()
            return self._launch(detector, accepted)

    def _launch(self, detector: Detector, accepted: list[ImageInput]) -> RunStatus:
        self._run_id += 1
        self._stats = RunStats(total=len(accepted))
        self._state = RunState.RUNNING

        pipeline = ClassificationPipeline(
            detector,
            self._pool,
            self._store.handles,
            max_file_size=self._settings.max_file_size,
            max_pixels=self._settings.max_image_pixels,
            detection_timeout=self._settings.detection_timeout,
            batch_concurrency=self._settings.batch_concurrency,
        )
        logger.info("Run %d started with %d images", self._run_id, len(accepted))
        self._task = asyncio.create_task(
            self._drive(pipeline, accepted, self._stats, self._run_id),
            name=f"classification-run-{self._run_id}",
        )
        return self.status

    async def cancel(self) -> RunStatus:
        """Stop the run in flight, keeping the results it already produced."""
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
            if self._state is RunState.RUNNING:
                self._state = RunState.CANCELLED
                logger.info("Run %d cancelled", self._run_id)
        return self.status

    async def wait(self) -> RunStatus:
        """Wait for the current run to end and return its final status."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})
        return self.status

    async def close(self) -> None:
        """Stop any run and release every stored result."""
        await self.cancel()
        self._store.clear()

    async def _drive(
        self,
        pipeline: ClassificationPipeline,
        images: Sequence[ImageInput],
        stats: RunStats,
        run_id: int,
    ) -> None:
        try:
            async for batch in pipeline.classify(images, stats):
                self._store.append(batch)
        except asyncio.CancelledError:
            self._state = RunState.CANCELLED
            logger.info("Run %d cancelled after %d of %d images", run_id, stats.finished, stats.total)
            raise
        except Exception:
            self._state = RunState.FAILED
            logger.exception("Run %d aborted", run_id)
            return

        self._state = RunState.COMPLETED
        logger.info(
            "Run %d finished: %d classified, %d failed, %d total",
            run_id,
            stats.processed,
            stats.failed,
            stats.total,
        )
