from __future__ import annotations

import random

from progress_engine.core.errors import ErrorKind
from progress_engine.services.overall import compute_overall_progress
from tests.conftest import at, make_course, make_record


def _fixture():
    courses = [make_course(1, units=2), make_course(2, units=4), make_course(3, units=1)]
    records = [
        make_record(1, 1, 1.0, completed=True, score=90, updated_at=at(1)),
        make_record(1, 2, 1.0, completed=True, score=70, updated_at=at(2)),
        make_record(2, 1, 0.5, updated_at=at(3)),
        make_record(2, 2, 0.25, updated_at=at(4)),
    ]
    return courses, records


def test_overall_rollup() -> None:
    courses, records = _fixture()
    result = compute_overall_progress(courses, records)

    assert result.ok
    s = result.value
    assert s.total_courses == 3
    assert s.completed_courses == 1
    assert s.in_progress_courses == 1
    assert s.not_started_courses == 1
    assert s.total_units == 7
    assert s.completed_units == 2
    # course averages 100 (2 units), 19 (4 units), 0 (1 unit): (200 + 76) / 7
    assert s.average_progress == 39
    assert s.average_score == 80
    assert s.completion_rate == 33
    assert s.unit_completion_rate == 29
    assert s.has_started_learning is True
    assert s.is_all_completed is False
    assert s.last_activity == at(4)
    assert [c.course_id for c in s.courses_progress] == [1, 2, 3]


def test_overall_is_invariant_under_input_permutation() -> None:
    courses, records = _fixture()
    expected = compute_overall_progress(courses, records)

    rng = random.Random(7)
    for _ in range(10):
        shuffled_courses = list(courses)
        shuffled_records = list(records)
        rng.shuffle(shuffled_courses)
        rng.shuffle(shuffled_records)
        assert compute_overall_progress(shuffled_courses, shuffled_records) == expected


def test_overall_empty_inputs() -> None:
    s = compute_overall_progress([], []).value
    assert s.total_courses == 0
    assert s.average_progress == 0
    assert s.is_all_completed is False
    assert s.has_started_learning is False


def test_all_courses_completed() -> None:
    courses = [make_course(1, units=1), make_course(2, units=1)]
    records = [
        make_record(1, 1, 1.0, completed=True),
        make_record(2, 1, 1.0, completed=True),
    ]
    s = compute_overall_progress(courses, records).value
    assert s.is_all_completed is True
    assert s.completion_rate == 100


def test_one_malformed_course_yields_partial_result() -> None:
    courses = [make_course(1, units=1), "not-a-course"]
    records = [make_record(1, 1, 1.0, completed=True)]

    result = compute_overall_progress(courses, records)  # type: ignore[arg-type]

    assert result.error is ErrorKind.AGGREGATION
    assert result.detail
    assert result.value.completed_courses == 1


def test_non_sequence_input_returns_zeroed_result() -> None:
    result = compute_overall_progress(None, [])  # type: ignore[arg-type]
    assert result.error is ErrorKind.AGGREGATION
    assert result.value.total_courses == 0
