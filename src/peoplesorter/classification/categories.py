"""The fixed person-count categories."""

from __future__ import annotations

from enum import StrEnum


class Category(StrEnum):
    NO_PEOPLE = "No people detected"
    SINGLE = "Single Person"
    TWO = "Two People"
    GROUP = "Group"


# Order in which the categories are rendered.
DISPLAY_ORDER: tuple[Category, ...] = (
    Category.SINGLE,
    Category.TWO,
    Category.GROUP,
    Category.NO_PEOPLE,
)

PERSON_LABEL = "person"


def category_for_count(person_count: int) -> Category:
    """Map a detected person count to its category."""
    if person_count < 0:
        raise ValueError(f"Person count cannot be negative: {person_count}")
    if person_count == 0:
        return Category.NO_PEOPLE
    if person_count == 1:
        return Category.SINGLE
    if person_count == 2:
        return Category.TWO
    return Category.GROUP
