from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    """One user's completion state for one course unit.

    The remote store is the source of truth; it may hand back several
    historical rows for the same (user_id, course_id, unit_id).  The
    aggregator keeps the most recently updated one.
    """

    user_id: str
    course_id: int
    unit_id: int
    progress: float  # fraction in [0, 1]
    completed: bool = False
    score: float = 0.0
    attempted: bool = False
    finish_date: date | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @staticmethod
    def new(
        *,
        user_id: str,
        course_id: int,
        unit_id: int,
        progress: float,
        completed: bool = False,
        score: float = 0.0,
        attempted: bool = False,
        finish_date: date | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> ProgressRecord:
        return ProgressRecord(
            user_id=user_id,
            course_id=course_id,
            unit_id=unit_id,
            progress=progress,
            completed=completed,
            score=score,
            attempted=attempted,
            finish_date=finish_date,
            created_at=created_at,
            updated_at=updated_at,
        )

    @property
    def key(self) -> tuple[str, int, int]:
        return (self.user_id, self.course_id, self.unit_id)

    @property
    def last_touched(self) -> datetime | None:
        return self.updated_at or self.created_at


@dataclass(frozen=True, slots=True)
class UnitProgress:
    """Per-unit view inside a course summary.  ``progress`` is 0-100."""

    unit_id: int
    unit_name: str
    progress: int = 0
    completed: bool = False
    score: float = 0.0
    attempted: bool = False
    finish_date: date | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    exists: bool = False

    @property
    def state(self) -> str:
        # not_started|in_progress|completed
        if self.completed:
            return "completed"
        if self.progress > 0:
            return "in_progress"
        return "not_started"


@dataclass(frozen=True, slots=True)
class CourseProgressSummary:
    """Derived statistics for one user/course pair.  Never persisted."""

    course_id: int
    course_name: str = ""
    total_units: int = 0
    completed_units: int = 0
    average_progress: int = 0
    average_score: int = 0
    is_completed: bool = False
    course_finish_date: date | None = None
    units: tuple[UnitProgress, ...] = ()
    has_started: bool = False
    next_unit: UnitProgress | None = None
    last_activity: datetime | None = None
    completion_rate: int = 0
    threshold_reached: bool = False

    @staticmethod
    def empty(course_id: int = 0, total_units: int = 0) -> CourseProgressSummary:
        return CourseProgressSummary(course_id=course_id, total_units=total_units)


@dataclass(frozen=True, slots=True)
class OverallProgressSummary:
    total_courses: int = 0
    completed_courses: int = 0
    in_progress_courses: int = 0
    not_started_courses: int = 0
    average_progress: int = 0
    total_units: int = 0
    completed_units: int = 0
    average_score: int = 0
    completion_rate: int = 0
    unit_completion_rate: int = 0
    has_started_learning: bool = False
    is_all_completed: bool = False
    last_activity: datetime | None = None
    courses_progress: tuple[CourseProgressSummary, ...] = ()


@dataclass(frozen=True, slots=True)
class PeriodStats:
    total_activities: int = 0
    units_completed: int = 0
    average_score: int = 0
    courses_active: int = 0
    first_activity: datetime | None = None
    last_activity: datetime | None = None
