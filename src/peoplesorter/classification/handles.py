"""In-memory registry of renderable image blobs.

Every classified image keeps its original bytes here so the browser can
display it. A handle lives until it is explicitly released; the result
store is the only owner that releases them.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageBlob:
    data: bytes
    content_type: str


class HandleRegistry:
    """Maps opaque handle tokens to image bytes."""

    def __init__(self) -> None:
        self._blobs: dict[str, ImageBlob] = {}

    def create(self, data: bytes, content_type: str) -> str:
        """Store ``data`` and return a new handle for it."""
        handle = secrets.token_urlsafe(16)
        while handle in self._blobs:
            handle = secrets.token_urlsafe(16)
        self._blobs[handle] = ImageBlob(data=data, content_type=content_type)
        return handle

    def get(self, handle: str) -> ImageBlob | None:
        return self._blobs.get(handle)

    def release(self, handle: str) -> bool:
        """Drop the blob behind ``handle``. Returns False if it was already gone."""
        return self._blobs.pop(handle, None) is not None

    def release_all(self) -> int:
        count = len(self._blobs)
        self._blobs.clear()
        if count:
            logger.info("Released %d image handles", count)
        return count

    def __len__(self) -> int:
        return len(self._blobs)

    def __contains__(self, handle: object) -> bool:
        return handle in self._blobs
