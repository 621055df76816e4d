"""Ordered in-memory store of classified images."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from peoplesorter.classification.categories import DISPLAY_ORDER, Category

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from peoplesorter.classification.handles import HandleRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassifiedImage:
    """One successfully processed input."""

    id: str
    display_handle: str
    category: Category
    filename: str
    person_count: int


class ResultStore:
    """Append-only (until removal) collection of classified images.

    The store owns the display handle of every entry it holds and releases
    it whenever the entry leaves, whether by ``remove`` or ``clear``.
    """

    def __init__(self, handles: HandleRegistry) -> None:
        self._handles = handles
        self._entries: dict[str, ClassifiedImage] = {}

    @property
    def handles(self) -> HandleRegistry:
        return self._handles

    def append(self, results: Iterable[ClassifiedImage]) -> None:
        """Add results at the end, keeping their order.

        Raises:
            ValueError: If an id is already present. Nothing is added in that case.
        """
        batch = list(results)
        seen: set[str] = set()
        for result in batch:
            if result.id in self._entries or result.id in seen:
                raise ValueError(f"Duplicate result id: {result.id}")
            seen.add(result.id)
        for result in batch:
            self._entries[result.id] = result

    def remove(self, image_id: str) -> bool:
        """Remove one entry and release its handle. Absent ids are a no-op."""
        entry = self._entries.pop(image_id, None)
        if entry is None:
            return False
        self._handles.release(entry.display_handle)
        return True

    def clear(self) -> None:
        for entry in self._entries.values():
            self._handles.release(entry.display_handle)
        if self._entries:
            logger.info("Cleared %d results", len(self._entries))
        self._entries.clear()

    def get(self, image_id: str) -> ClassifiedImage | None:
        return self._entries.get(image_id)

    def by_category(self, category: Category) -> list[ClassifiedImage]:
        return [entry for entry in self._entries.values() if entry.category is category]

    def grouped(self) -> list[tuple[Category, list[ClassifiedImage]]]:
        """Every category in display order with its entries."""
        return [(category, self.by_category(category)) for category in DISPLAY_ORDER]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ClassifiedImage]:
        return iter(list(self._entries.values()))
