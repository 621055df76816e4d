"""Background acquisition of the detector.

The loader builds the detector once, off the event loop, when the
application starts. Until it succeeds (or after it fails) any request for
the detector raises ``ModelUnavailableError`` instead of waiting.
"""

from __future__ import annotations

import asyncio
import logging
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from peoplesorter.ml.detector import Detector

logger = logging.getLogger(__name__)


class ModelUnavailableError(RuntimeError):
    """Raised when classification is requested without a usable detector."""


class LoaderState(StrEnum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ModelLoader:
    """Owns the single detector instance used by the application."""

    def __init__(self, factory: Callable[[], Detector]) -> None:
        self._factory = factory
        self._detector: Detector | None = None
        self._state = LoaderState.LOADING
        self._error: str | None = None
        self._task: asyncio.Task[None] | None = None

    def start(self) -> asyncio.Task[None]:
        """Schedule loading on the running event loop and return the task."""
        if self._task is None:
            self._task = asyncio.create_task(self.load(), name="model-loader")
        return self._task

    async def load(self) -> None:
        """Build the detector in a worker thread, recording success or failure."""
        try:
            detector = await asyncio.to_thread(self._factory)
        except Exception as exc:
            self._state = LoaderState.FAILED
            self._error = f"{type(exc).__name__}: {exc}"
            logger.exception("Failed to load detector")
            return
        self._detector = detector
        self._state = LoaderState.READY
        logger.info("Detector %s loaded", detector.model_name)

    @property
    def state(self) -> LoaderState:
        return self._state

    @property
    def error(self) -> str | None:
        return self._error

    def is_ready(self) -> bool:
        return self._state is LoaderState.READY

    def detector(self) -> Detector:
        """Return the loaded detector.

        Raises:
            ModelUnavailableError: If the detector is still loading or failed to load.
        """
        if self._detector is not None:
            return self._detector
        if self._state is LoaderState.FAILED:
            raise ModelUnavailableError(f"Model unavailable: {self._error}")
        raise ModelUnavailableError("Model unavailable: still loading")

    async def close(self) -> None:
        """Cancel a load that is still in flight."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
