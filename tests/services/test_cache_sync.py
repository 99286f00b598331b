"""Cache mirror rebuild: contents, idempotence and failure tolerance."""

from __future__ import annotations

from datetime import date

from progress_engine.core.errors import ErrorKind
from progress_engine.services.cache import InMemoryCacheStore
from progress_engine.services.cache_sync import (
    clear_cache,
    desired_entries,
    floor_percent,
    read_course_progress,
    read_unit_progress,
    sync_cache,
)
from tests.conftest import make_course, make_record


class FlakyCache(InMemoryCacheStore):
    """Fails every write to the given keys."""

    def __init__(self, failing: set[str], initial: dict[str, str] | None = None) -> None:
        super().__init__(initial)
        self.failing = failing

    def set_item(self, key: str, value: str) -> None:
        if key in self.failing:
            raise OSError("quota exceeded")
        super().set_item(key, value)


def test_sync_writes_progress_quiz_and_finished_keys() -> None:
    courses = [make_course(1, units=2), make_course(2, units=2)]
    records = [
        make_record(1, 1, 1.0, completed=True, finish_date=date(2024, 3, 1)),
        make_record(1, 2, 1.0, completed=True, finish_date=date(2024, 3, 9)),
        make_record(2, 1, 0.25),
    ]
    cache = InMemoryCacheStore()

    result = sync_cache(records, courses, cache)

    assert result.ok
    assert cache.snapshot() == {
        "Course1Unidad1": "100",
        "Course1Unidad2": "100",
        "Course1Quiz1": "true",
        "Course1Quiz2": "true",
        "Course1isFinished": "true",
        "Course1finishedDate": "2024-03-09",
        "Course2Unidad1": "25",
    }


def test_unit_progress_is_floored() -> None:
    entries = desired_entries([make_record(1, 1, 0.999)], [make_course(1, units=1)])
    assert entries == {"Course1Unidad1": "99"}


def test_floor_ignores_float_noise() -> None:
    assert floor_percent(0.57) == 57
    assert floor_percent(0.29) == 29
    assert floor_percent(0.999) == 99
    entries = desired_entries([make_record(1, 1, 0.57)], [make_course(1, units=1)])
    assert entries == {"Course1Unidad1": "57"}


def test_finished_date_omitted_when_unknown() -> None:
    entries = desired_entries(
        [make_record(1, 1, 1.0, completed=True)], [make_course(1, units=1)]
    )
    assert entries["Course1isFinished"] == "true"
    assert "Course1finishedDate" not in entries


def test_sync_removes_stale_keys_but_keeps_foreign_and_reserved() -> None:
    cache = InMemoryCacheStore(
        {
            "Course1Unidad9": "50",
            "Course1isFinished": "true",
            "Course1initialOpenIndex": "2",
            "theme": "dark",
        }
    )
    sync_cache([make_record(1, 1, 0.5)], [make_course(1, units=2)], cache)

    assert cache.snapshot() == {
        "Course1Unidad1": "50",
        "Course1initialOpenIndex": "2",
        "theme": "dark",
    }


def test_records_for_removed_units_are_not_written() -> None:
    cache = InMemoryCacheStore()
    sync_cache([make_record(1, 5, 1.0, completed=True)], [make_course(1, units=2)], cache)
    assert cache.snapshot() == {}


def test_sync_is_idempotent() -> None:
    courses = [make_course(1, units=3)]
    records = [make_record(1, 1, 1.0, completed=True), make_record(1, 2, 0.4)]
    cache = InMemoryCacheStore({"Course1Unidad3": "80"})

    sync_cache(records, courses, cache)
    first = cache.snapshot()
    sync_cache(records, courses, cache)
    assert cache.snapshot() == first


def test_reset_course_removes_all_its_keys() -> None:
    courses = [make_course(1, units=1), make_course(2, units=1)]
    cache = InMemoryCacheStore()
    sync_cache(
        [make_record(1, 1, 1.0, completed=True), make_record(2, 1, 0.5)], courses, cache
    )

    sync_cache([make_record(2, 1, 0.5)], courses, cache)

    assert not [k for k in cache.keys() if k.startswith("Course1")]
    assert cache.get_item("Course2Unidad1") == "50"


def test_failed_writes_are_skipped_and_reported() -> None:
    cache = FlakyCache({"Course1Quiz1"})
    result = sync_cache(
        [make_record(1, 1, 1.0, completed=True), make_record(1, 2, 0.2)],
        [make_course(1, units=2)],
        cache,
    )

    assert result.error is ErrorKind.SYNC
    assert result.value.failed == 1
    assert cache.get_item("Course1Unidad1") == "100"
    assert cache.get_item("Course1Unidad2") == "20"
    assert cache.get_item("Course1Quiz1") is None


def test_underivable_input_leaves_cache_untouched() -> None:
    cache = InMemoryCacheStore({"Course1Unidad1": "30"})
    result = sync_cache(["not a record"], [make_course(1, units=1)], cache)  # type: ignore[list-item]

    assert result.error is ErrorKind.SYNC
    assert result.value.failed == 1
    assert cache.snapshot() == {"Course1Unidad1": "30"}


def test_clear_cache_removes_only_owned_keys() -> None:
    cache = InMemoryCacheStore(
        {"Course1Unidad1": "10", "Course1initialOpenIndex": "0", "lang": "es"}
    )
    report = clear_cache(cache)
    assert report.removed == 1
    assert cache.snapshot() == {"Course1initialOpenIndex": "0", "lang": "es"}


def test_fallback_reads() -> None:
    cache = InMemoryCacheStore(
        {"Course1Unidad1": "100", "Course1Unidad2": "45", "Course1Quiz1": "true"}
    )
    assert read_unit_progress(cache, 1, 2) == 45
    assert read_unit_progress(cache, 1, 3) == 0
    # (100 + 45) / 2 = 72.5 -> 73
    assert read_course_progress(cache, 1) == 73
    assert read_course_progress(cache, 9) == 0


def test_fallback_read_tolerates_garbage() -> None:
    cache = InMemoryCacheStore({"Course1Unidad1": "lots"})
    assert read_unit_progress(cache, 1, 1) == 0
