"""Test doubles shared by the test modules."""

from __future__ import annotations

import io
import threading
import time

import numpy as np
from numpy.typing import NDArray
from PIL import Image

from peoplesorter.ml.detector import Prediction

# Images this wide make FakeDetector raise.
EXPLODING_WIDTH = 64


def make_png(person_count: int = 0, *, width: int | None = None, height: int = 8) -> bytes:
    """Encode a tiny PNG whose width tells FakeDetector how many people to report."""
    img = Image.new("RGB", (width if width is not None else person_count + 1, height), (200, 30, 30))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class FakeDetector:
    """Reports ``width - 1`` persons plus one unrelated object per image."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    @property
    def model_name(self) -> str:
        return "fake"

    def detect(self, image: NDArray[np.uint8]) -> list[Prediction]:
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        width = image.shape[1]
        if width == EXPLODING_WIDTH:
            raise RuntimeError("detector exploded")
        people = [Prediction(label="person", score=0.9, bbox=(0.0, 0.0, 1.0, 1.0)) for _ in range(width - 1)]
        return [*people, Prediction(label="dog", score=0.8, bbox=(0.0, 0.0, 1.0, 1.0))]
