"""Per-course progress aggregation.

Turns a user's raw progress records into a ``CourseProgressSummary``.

AVERAGES
--------
Two averages, deliberately asymmetric:

  average_progress  mean over ALL units of the course (a unit with no
                    record counts as 0%).  Measures how far through
                    the course the learner is.

  average_score     mean over units with a POSITIVE score only.  A unit
                    that was never graded says nothing about how well
                    the learner does, so it stays out of the denominator.

Both round half-up (72.5 -> 73), matching how scores are shown to
learners; Python's built-in round() would give 72.

FAILURE MODE
------------
These functions never raise.  Malformed input (a unit that is not a
``Unit``, a record with progress outside [0, 1], anything that breaks
the math itself) yields a zeroed summary inside
``Result(error=AGGREGATION)`` and a logged anomaly, so one bad course
cannot take down a dashboard showing ten good ones.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime

from progress_engine.core.errors import (
    AggregationError,
    ErrorKind,
    Result,
    ValidationError,
)
from progress_engine.core.metrics import AGGREGATION_ANOMALIES
from progress_engine.models.course import Course, Unit
from progress_engine.models.progress import (
    CourseProgressSummary,
    PeriodStats,
    ProgressRecord,
    UnitProgress,
)
from progress_engine.services.record_validation import record_warnings

logger = logging.getLogger(__name__)

DEFAULT_COMPLETION_THRESHOLD = 80

_EPOCH = datetime.min.replace(tzinfo=UTC)


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def as_utc(stamp: datetime) -> datetime:
    # Naive timestamps from the store are UTC
    if stamp.tzinfo is None:
        return stamp.replace(tzinfo=UTC)
    return stamp.astimezone(UTC)


def _recency(record: ProgressRecord) -> tuple:
    # Latest update wins; the remaining fields only break exact ties so
    # the winner never depends on the order rows arrived in.
    touched = record.last_touched
    stamp = as_utc(touched) if touched is not None else _EPOCH
    return (stamp, record.progress, record.completed, record.score)


def current_records(records: Iterable[ProgressRecord]) -> dict[tuple[str, int, int], ProgressRecord]:
    """Collapse duplicate rows to one record per (user, course, unit).

    Last-write-wins by updated_at (falling back to created_at).
    """
    current: dict[tuple[str, int, int], ProgressRecord] = {}
    for record in records:
        existing = current.get(record.key)
        if existing is None:
            current[record.key] = record
            continue
        AGGREGATION_ANOMALIES.labels(kind="duplicate_record").inc()
        if _recency(record) > _recency(existing):
            current[record.key] = record
    return current


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_input(course: object, records: object) -> None:
    if not isinstance(course, Course):
        raise AggregationError(f"expected a Course (got {type(course).__name__})")
    if not isinstance(course.units, (tuple, list)):
        raise AggregationError(f"course {course.id} has no unit list")
    for unit in course.units:
        if not isinstance(unit, Unit):
            raise AggregationError(
                f"course {course.id} has a malformed unit ({type(unit).__name__})"
            )
    if isinstance(records, (str, bytes)) or not isinstance(records, Sequence):
        raise AggregationError(
            f"records must be a sequence (got {type(records).__name__})"
        )
    for record in records:
        if not isinstance(record, ProgressRecord):
            raise AggregationError(
                f"unexpected record type {type(record).__name__}"
            )
        if record.course_id != course.id:
            continue
        # Same bounds parse_records enforces on store rows
        if not _is_number(record.progress) or not 0 <= record.progress <= 1:
            raise ValidationError(
                f"unit {record.unit_id} progress must be between 0 and 1 "
                f"(got {record.progress!r})"
            )
        if not _is_number(record.score) or record.score < 0:
            raise ValidationError(
                f"unit {record.unit_id} score must be a non-negative number "
                f"(got {record.score!r})"
            )


def _unit_view(unit_id: int, unit_name: str, record: ProgressRecord | None) -> UnitProgress:
    if record is None:
        return UnitProgress(unit_id=unit_id, unit_name=unit_name)
    return UnitProgress(
        unit_id=unit_id,
        unit_name=unit_name,
        progress=round_half_up(record.progress * 100),
        completed=record.completed,
        score=record.score,
        attempted=record.attempted,
        finish_date=record.finish_date,
        created_at=record.created_at,
        updated_at=record.updated_at,
        exists=True,
    )


def _latest_finish_date(units: Iterable[UnitProgress]) -> date | None:
    dates = [u.finish_date for u in units if u.completed and u.finish_date]
    return max(dates) if dates else None


def _last_activity(records: Iterable[ProgressRecord]) -> datetime | None:
    stamps = [as_utc(r.last_touched) for r in records if r.last_touched is not None]
    return max(stamps) if stamps else None


def compute_course_progress(
    course: Course,
    records: Sequence[ProgressRecord],
    *,
    completion_threshold: int = DEFAULT_COMPLETION_THRESHOLD,
) -> Result[CourseProgressSummary]:
    """Compute one course's summary from the user's unfiltered records."""
    try:
        _check_input(course, records)
        summary = _summarize(course, records, completion_threshold)
    except Exception as e:
        course_id = getattr(course, "id", 0) or 0
        units = getattr(course, "units", None)
        total_units = len(units) if isinstance(units, (tuple, list)) else 0
        AGGREGATION_ANOMALIES.labels(kind="malformed_input").inc()
        logger.warning(
            "Malformed aggregation input for course=%s: %s",
            course_id,
            e,
            extra={"course_id": course_id},
        )
        return Result(
            value=CourseProgressSummary.empty(course_id, total_units),
            error=ErrorKind.AGGREGATION,
            detail=str(e) or type(e).__name__,
        )
    return Result(value=summary)


def _summarize(
    course: Course, records: Sequence[ProgressRecord], completion_threshold: int
) -> CourseProgressSummary:
    course_records = [r for r in records if r.course_id == course.id]
    current: dict[int, ProgressRecord] = {}
    for record in current_records(course_records).values():
        existing = current.get(record.unit_id)
        if existing is None or _recency(record) > _recency(existing):
            current[record.unit_id] = record

    for record in current.values():
        for warning in record_warnings(record):
            AGGREGATION_ANOMALIES.labels(kind="inconsistent_record").inc()
            logger.warning(
                "Inconsistent record course=%d unit=%d: %s",
                record.course_id,
                record.unit_id,
                warning,
                extra={"course_id": record.course_id, "unit_id": record.unit_id},
            )

    units = tuple(
        _unit_view(unit.unit_id, unit.name or f"Unit {unit.unit_id}", current.get(unit.unit_id))
        for unit in course.units
    )

    total_units = len(units)
    completed_units = sum(1 for u in units if u.completed)
    average_progress = (
        round_half_up(sum(u.progress for u in units) / total_units) if total_units else 0
    )

    scored = [u.score for u in units if u.score > 0]
    average_score = round_half_up(sum(scored) / len(scored)) if scored else 0

    return CourseProgressSummary(
        course_id=course.id,
        course_name=course.title or f"Course {course.id}",
        total_units=total_units,
        completed_units=completed_units,
        average_progress=average_progress,
        average_score=average_score,
        is_completed=total_units > 0 and completed_units == total_units,
        course_finish_date=_latest_finish_date(units),
        units=units,
        has_started=any(u.progress > 0 for u in units),
        next_unit=next((u for u in units if not u.completed), None),
        last_activity=_last_activity(course_records),
        completion_rate=(
            round_half_up(completed_units / total_units * 100) if total_units else 0
        ),
        threshold_reached=total_units > 0 and average_progress >= completion_threshold,
    )


def compute_unit_progress(
    records: Iterable[ProgressRecord], course_id: int, unit_id: int
) -> UnitProgress:
    matching = [r for r in records if r.course_id == course_id and r.unit_id == unit_id]
    record = max(matching, key=_recency) if matching else None
    return _unit_view(unit_id, f"Unit {unit_id}", record)


def compute_period_stats(
    records: Iterable[ProgressRecord], start: datetime, end: datetime
) -> PeriodStats:
    """Activity statistics for records touched within [start, end]."""
    start, end = as_utc(start), as_utc(end)
    in_period = [
        r
        for r in records
        if r.last_touched is not None and start <= as_utc(r.last_touched) <= end
    ]
    if not in_period:
        return PeriodStats()

    created = [as_utc(r.created_at) for r in in_period if r.created_at is not None]
    return PeriodStats(
        total_activities=len(in_period),
        units_completed=sum(1 for r in in_period if r.completed),
        average_score=round_half_up(sum(r.score for r in in_period) / len(in_period)),
        courses_active=len({r.course_id for r in in_period}),
        first_activity=min(created) if created else None,
        last_activity=_last_activity(in_period),
    )
