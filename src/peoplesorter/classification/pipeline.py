"""Batched person-count classification.

Images are processed in consecutive batches of ``BATCH_SIZE``. Each image
is decoded and run through the detector in the inference pool; the number
of ``person`` predictions decides its category. A failing image is counted
and dropped without affecting the rest of the run. Between batches the
pipeline hands control back to the event loop.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from peoplesorter.classification.categories import PERSON_LABEL, category_for_count
from peoplesorter.classification.store import ClassifiedImage
from peoplesorter.ml.preprocessing import decode_image

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable, Sequence

    from peoplesorter.classification.handles import HandleRegistry
    from peoplesorter.ml.detector import Detector
    from peoplesorter.ml.inference import InferencePool

logger = logging.getLogger(__name__)

BATCH_SIZE: int = 10


@dataclass(frozen=True)
class ImageInput:
    """One uploaded candidate file."""

    filename: str
    content_type: str
    data: bytes


def is_image(content_type: str | None) -> bool:
    return bool(content_type) and content_type.lower().startswith("image/")


def filter_images(inputs: Iterable[ImageInput]) -> list[ImageInput]:
    """Keep only inputs whose content type is an image type, in order."""
    return [item for item in inputs if is_image(item.content_type)]


@dataclass
class RunStats:
    """Progress counters for one run."""

    total: int
    processed: int = 0
    failed: int = 0

    @property
    def finished(self) -> int:
        return self.processed + self.failed

    @property
    def done(self) -> bool:
        return self.finished == self.total

    @property
    def percent(self) -> float:
        if self.total == 0:
            return 0.0
        return 100.0 * self.finished / self.total

    def record_success(self) -> None:
        self._check_room()
        self.processed += 1

    def record_failure(self) -> None:
        self._check_room()
        self.failed += 1

    def snapshot(self) -> RunStats:
        return dataclasses.replace(self)

    def _check_room(self) -> None:
        if self.finished >= self.total:
            raise RuntimeError(f"Run already accounted for all {self.total} images")


class ClassificationPipeline:
    """Classifies images into person-count categories, one batch at a time."""

    def __init__(
        self,
        detector: Detector,
        pool: InferencePool,
        handles: HandleRegistry,
        *,
        max_file_size: int,
        max_pixels: int,
        detection_timeout: float | None = None,
        batch_concurrency: int = 1,
        batch_size: int = BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        if batch_concurrency < 1:
            raise ValueError("batch_concurrency must be positive")
        self._detector = detector
        self._pool = pool
        self._handles = handles
        self._max_file_size = max_file_size
        self._max_pixels = max_pixels
        self._detection_timeout = detection_timeout
        self._batch_concurrency = min(batch_concurrency, pool.max_concurrent)
        self._batch_size = batch_size

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def count_people(self, image_bytes: bytes) -> int:
        """Decode an image and count the persons the detector finds in it.

        Blocking; runs in an inference pool worker thread.
        """
        image = decode_image(image_bytes, max_file_size=self._max_file_size, max_pixels=self._max_pixels)
        predictions = self._detector.detect(image)
        return sum(1 for prediction in predictions if prediction.label == PERSON_LABEL)

    async def classify(
        self,
        images: Sequence[ImageInput],
        stats: RunStats,
        on_progress: Callable[[RunStats], None] | None = None,
    ) -> AsyncIterator[list[ClassifiedImage]]:
        """Yield the classified images of each batch, in input order.

        ``images`` must already be filtered to image content types. ``stats``
        is updated after every image and ``on_progress`` called with it.
        """
        for start in range(0, len(images), self._batch_size):
            batch = images[start : start + self._batch_size]
            counts = await self._analyze_batch(batch, stats, on_progress)

            # Handles are created here, with no await before the yield, so a
            # cancelled run never strands one.
            results = [
                self._emit(image, count) for image, count in zip(batch, counts, strict=True) if count is not None
            ]
            logger.debug(
                "Batch %d done: %d classified, %d/%d images finished",
                start // self._batch_size + 1,
                len(results),
                stats.finished,
                stats.total,
            )
            yield results
            await asyncio.sleep(0)

    async def _analyze_batch(
        self,
        batch: Sequence[ImageInput],
        stats: RunStats,
        on_progress: Callable[[RunStats], None] | None,
    ) -> list[int | None]:
        if self._batch_concurrency == 1:
            return [await self._analyze(image, stats, on_progress) for image in batch]

        semaphore = asyncio.Semaphore(self._batch_concurrency)

        async def bounded(image: ImageInput) -> int | None:
            async with semaphore:
                return await self._analyze(image, stats, on_progress)

        return list(await asyncio.gather(*(bounded(image) for image in batch)))

    async def _analyze(
        self,
        image: ImageInput,
        stats: RunStats,
        on_progress: Callable[[RunStats], None] | None,
    ) -> int | None:
        try:
            count: int | None = await self._pool.run(
                self.count_people,
                image.data,
                timeout=self._detection_timeout,
                queue_timeout=None,
            )
        except TimeoutError:
            logger.warning("Timed out classifying %s", image.filename)
            count = None
        except Exception:
            logger.warning("Failed to classify %s", image.filename, exc_info=True)
            count = None

        if count is None:
            stats.record_failure()
        else:
            stats.record_success()
        if on_progress is not None:
            on_progress(stats)
        return count

    def _emit(self, image: ImageInput, person_count: int) -> ClassifiedImage:
        return ClassifiedImage(
            id=uuid.uuid4().hex,
            display_handle=self._handles.create(image.data, image.content_type),
            category=category_for_count(person_count),
            filename=image.filename,
            person_count=person_count,
        )
