"""Cross-course progress rollup.

The overall average is weighted by unit count: a 20-unit course at 50%
moves it more than a 2-unit course at 100%.  This is intentionally
different from the per-course average (unweighted over units) and must
stay that way, since learners compare the two numbers.

The result does not depend on the order of ``courses`` or ``records``:
every reduction is a sum, a count or a max, and the per-course list is
sorted by course id.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from progress_engine.core.errors import ErrorKind, Result
from progress_engine.core.metrics import AGGREGATION_ANOMALIES
from progress_engine.models.course import Course
from progress_engine.models.progress import OverallProgressSummary, ProgressRecord
from progress_engine.services.aggregator import (
    DEFAULT_COMPLETION_THRESHOLD,
    compute_course_progress,
    round_half_up,
)

logger = logging.getLogger(__name__)


def _is_sequence(value: object) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def compute_overall_progress(
    courses: Sequence[Course],
    records: Sequence[ProgressRecord],
    *,
    completion_threshold: int = DEFAULT_COMPLETION_THRESHOLD,
) -> Result[OverallProgressSummary]:
    if not _is_sequence(courses) or not _is_sequence(records):
        AGGREGATION_ANOMALIES.labels(kind="malformed_input").inc()
        logger.warning(
            "Malformed overall aggregation input: courses=%s records=%s",
            type(courses).__name__,
            type(records).__name__,
        )
        return Result(
            value=OverallProgressSummary(),
            error=ErrorKind.AGGREGATION,
            detail="courses and records must be sequences",
        )

    results = [
        compute_course_progress(c, records, completion_threshold=completion_threshold)
        for c in courses
    ]
    failures = sorted(r.detail or "" for r in results if not r.ok)
    summaries = sorted((r.value for r in results), key=lambda s: s.course_id)

    total_courses = len(summaries)
    completed_courses = sum(1 for s in summaries if s.is_completed)
    total_units = sum(s.total_units for s in summaries)
    completed_units = sum(s.completed_units for s in summaries)

    weighted_progress = sum(s.average_progress * s.total_units for s in summaries)
    scored = [s.average_score for s in summaries if s.average_score > 0]
    activity = [s.last_activity for s in summaries if s.last_activity is not None]

    summary = OverallProgressSummary(
        total_courses=total_courses,
        completed_courses=completed_courses,
        in_progress_courses=sum(
            1 for s in summaries if s.has_started and not s.is_completed
        ),
        not_started_courses=sum(1 for s in summaries if not s.has_started),
        average_progress=(
            round_half_up(weighted_progress / total_units) if total_units else 0
        ),
        total_units=total_units,
        completed_units=completed_units,
        average_score=round_half_up(sum(scored) / len(scored)) if scored else 0,
        completion_rate=(
            round_half_up(completed_courses / total_courses * 100)
            if total_courses
            else 0
        ),
        unit_completion_rate=(
            round_half_up(completed_units / total_units * 100) if total_units else 0
        ),
        has_started_learning=any(s.has_started for s in summaries),
        is_all_completed=total_courses > 0 and completed_courses == total_courses,
        last_activity=max(activity) if activity else None,
        courses_progress=tuple(summaries),
    )

    if failures:
        # Partial result: the well-formed courses still count
        return Result(
            value=summary, error=ErrorKind.AGGREGATION, detail="; ".join(failures)
        )
    return Result(value=summary)
