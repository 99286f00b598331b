"""The one place the local cache key grammar lives.

    Course{course_id}Unidad{unit_id}   unit progress, "0".."100"
    Course{course_id}Quiz{unit_id}     unit quiz passed, "true"
    Course{course_id}isFinished        course finished, "true"
    Course{course_id}finishedDate      latest finish date, YYYY-MM-DD

Existing clients read these exact strings, so the grammar cannot change.
Everything else in the engine works with ``CacheKey`` values.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

NAMESPACE_PREFIX = "Course"

# UI state stored under the same prefix; never owned by the synchronizer
RESERVED_MARKER = "initialOpenIndex"

_KEY_RE = re.compile(
    r"^Course(?P<course>\d+)"
    r"(?:(?P<unit_kind>Unidad|Quiz)(?P<unit>\d+)|(?P<course_kind>isFinished|finishedDate))$"
)


class KeyKind(str, Enum):
    UNIT_PROGRESS = "Unidad"
    QUIZ_PASSED = "Quiz"
    FINISHED = "isFinished"
    FINISHED_DATE = "finishedDate"

    @property
    def per_unit(self) -> bool:
        return self in (KeyKind.UNIT_PROGRESS, KeyKind.QUIZ_PASSED)


@dataclass(frozen=True, slots=True)
class CacheKey:
    course_id: int
    kind: KeyKind
    unit_id: int | None = None

    def __post_init__(self) -> None:
        if self.kind.per_unit and self.unit_id is None:
            raise ValueError(f"{self.kind.name} keys need a unit_id")
        if not self.kind.per_unit and self.unit_id is not None:
            raise ValueError(f"{self.kind.name} keys take no unit_id")

    def encode(self) -> str:
        if self.kind.per_unit:
            return f"{NAMESPACE_PREFIX}{self.course_id}{self.kind.value}{self.unit_id}"
        return f"{NAMESPACE_PREFIX}{self.course_id}{self.kind.value}"

    @staticmethod
    def decode(raw: str) -> CacheKey | None:
        """Parse a raw key; None when it is not part of the grammar."""
        match = _KEY_RE.match(raw)
        if match is None:
            return None
        if match["unit_kind"]:
            return CacheKey(
                course_id=int(match["course"]),
                kind=KeyKind(match["unit_kind"]),
                unit_id=int(match["unit"]),
            )
        return CacheKey(course_id=int(match["course"]), kind=KeyKind(match["course_kind"]))


def in_namespace(raw: str) -> bool:
    """Keys the synchronizer owns: the Course prefix, minus reserved UI state."""
    return raw.startswith(NAMESPACE_PREFIX) and RESERVED_MARKER not in raw


def unit_progress_key(course_id: int, unit_id: int) -> CacheKey:
    return CacheKey(course_id=course_id, kind=KeyKind.UNIT_PROGRESS, unit_id=unit_id)


def quiz_key(course_id: int, unit_id: int) -> CacheKey:
    return CacheKey(course_id=course_id, kind=KeyKind.QUIZ_PASSED, unit_id=unit_id)


def finished_key(course_id: int) -> CacheKey:
    return CacheKey(course_id=course_id, kind=KeyKind.FINISHED)


def finished_date_key(course_id: int) -> CacheKey:
    return CacheKey(course_id=course_id, kind=KeyKind.FINISHED_DATE)
