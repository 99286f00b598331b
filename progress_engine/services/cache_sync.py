"""Wholesale rebuild of the local cache mirror from authoritative records.

  1. Remove every key the synchronizer owns (Course prefix, minus the
     reserved UI key).  Nothing is merged, so a key for a unit that no
     longer exists cannot survive a course-structure change.
  2. Write unit progress (floor of percent) and quiz-passed flags for
     every current record whose unit is in the current structure.
  3. Write the finished flag, plus the latest finish date when known,
     for every course whose units are all completed.

Running it twice on the same input leaves the same cache contents.

A failing cache call is logged, counted and skipped; the loop carries
on with the remaining keys and nothing is raised to the caller.  Stores
that support batching (Redis) receive all removals and writes as one
pipeline, with each command's outcome tallied separately.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from progress_engine.core.errors import ErrorKind, Result
from progress_engine.core.metrics import CACHE_SYNC_OPERATIONS
from progress_engine.models.course import Course
from progress_engine.models.progress import ProgressRecord
from progress_engine.services.aggregator import current_records, round_half_up
from progress_engine.services.cache import BatchCacheStore, CacheOp, CacheStore
from progress_engine.services.cache_keys import (
    CacheKey,
    KeyKind,
    finished_date_key,
    finished_key,
    in_namespace,
    quiz_key,
    unit_progress_key,
)

logger = logging.getLogger(__name__)

TRUE = "true"


@dataclass(frozen=True, slots=True)
class SyncReport:
    removed: int = 0
    written: int = 0
    failed: int = 0

    @property
    def ok(self) -> bool:
        return self.failed == 0


class _Tally:
    def __init__(self) -> None:
        self.removed = 0
        self.written = 0
        self.failed = 0

    def record(self, action: str, key: str, error: Exception | None) -> None:
        if error is not None:
            self.failed += 1
            CACHE_SYNC_OPERATIONS.labels(result="failed").inc()
            logger.warning("Cache %s failed for key=%s: %s", action, key, error)
        elif action == "remove":
            self.removed += 1
            CACHE_SYNC_OPERATIONS.labels(result="removed").inc()
        else:
            self.written += 1
            CACHE_SYNC_OPERATIONS.labels(result="written").inc()

    def attempt(self, action: str, key: str, op: Callable[[], None]) -> None:
        try:
            op()
        except Exception as e:  # backend-specific: quota, connection, ...
            self.record(action, key, e)
            return
        self.record(action, key, None)

    def report(self) -> SyncReport:
        return SyncReport(removed=self.removed, written=self.written, failed=self.failed)


def _owned_keys(cache: CacheStore, tally: _Tally) -> list[str]:
    try:
        return sorted(k for k in cache.keys() if in_namespace(k))
    except Exception as e:
        tally.failed += 1
        CACHE_SYNC_OPERATIONS.labels(result="failed").inc()
        logger.warning("Cache key listing failed: %s", e)
        return []


def _run(cache: CacheStore, ops: list[CacheOp], tally: _Tally) -> None:
    if isinstance(cache, BatchCacheStore):
        for (action, key, _), error in zip(ops, cache.apply(ops)):
            tally.record(action, key, error)
        return

    for action, key, value in ops:
        if action == "remove":
            tally.attempt(action, key, lambda k=key: cache.remove_item(k))
        else:
            tally.attempt(action, key, lambda k=key, v=value: cache.set_item(k, v))


def floor_percent(progress: float) -> int:
    """Unit progress as a whole percent, rounded down.

    The product is rounded to 6 places first so that float noise
    (0.57 * 100 == 56.99999999999999) does not cost a whole point.
    """
    return math.floor(round(progress * 100, 6))


def desired_entries(
    records: Sequence[ProgressRecord], courses: Sequence[Course]
) -> dict[str, str]:
    """The exact cache contents the records imply, keyed by encoded key."""
    structure = {c.id: c.unit_ids for c in courses}
    entries: dict[CacheKey, str] = {}

    completed_units: dict[int, set[int]] = {}
    finish_dates: dict[int, list] = {}

    for record in current_records(records).values():
        if record.unit_id not in structure.get(record.course_id, frozenset()):
            continue

        entries[unit_progress_key(record.course_id, record.unit_id)] = str(
            floor_percent(record.progress)
        )
        if record.completed:
            entries[quiz_key(record.course_id, record.unit_id)] = TRUE
            completed_units.setdefault(record.course_id, set()).add(record.unit_id)
            if record.finish_date is not None:
                finish_dates.setdefault(record.course_id, []).append(record.finish_date)

    for course_id, unit_ids in structure.items():
        if unit_ids and completed_units.get(course_id, set()) == unit_ids:
            entries[finished_key(course_id)] = TRUE
            dates = finish_dates.get(course_id)
            if dates:
                entries[finished_date_key(course_id)] = max(dates).isoformat()

    return {key.encode(): value for key, value in entries.items()}


def sync_cache(
    records: Sequence[ProgressRecord],
    courses: Sequence[Course],
    cache: CacheStore,
) -> Result[SyncReport]:
    try:
        desired = desired_entries(records, courses)
    except Exception as e:
        # Leave the mirror as it was rather than wiping it for nothing
        CACHE_SYNC_OPERATIONS.labels(result="failed").inc()
        logger.warning("Cache sync skipped, malformed input: %s", e)
        return Result(
            value=SyncReport(failed=1),
            error=ErrorKind.SYNC,
            detail=f"cannot derive cache entries: {e}",
        )

    tally = _Tally()
    ops: list[CacheOp] = [("remove", k, None) for k in _owned_keys(cache, tally)]
    ops.extend(("write", k, v) for k, v in sorted(desired.items()))
    _run(cache, ops, tally)

    report = tally.report()
    if not report.ok:
        logger.warning(
            "Cache sync finished with %d failure(s) (written=%d removed=%d)",
            report.failed,
            report.written,
            report.removed,
        )
        return Result(
            value=report,
            error=ErrorKind.SYNC,
            detail=f"{report.failed} cache operation(s) failed",
        )

    logger.info(
        "Cache synchronized (written=%d removed=%d)", report.written, report.removed
    )
    return Result(value=report)


def clear_cache(cache: CacheStore) -> SyncReport:
    """Remove every owned key; used when a session signs out."""
    tally = _Tally()
    _run(cache, [("remove", k, None) for k in _owned_keys(cache, tally)], tally)
    return tally.report()


def _read_int(cache: CacheStore, key: str) -> int:
    try:
        raw = cache.get_item(key)
    except Exception as e:
        logger.warning("Cache read failed for key=%s: %s", key, e)
        return 0
    try:
        return int(raw) if raw else 0
    except ValueError:
        logger.warning("Non-integer cache value for key=%s: %r", key, raw)
        return 0


def read_unit_progress(cache: CacheStore, course_id: int, unit_id: int) -> int:
    """Offline fallback: a unit's cached progress percent, 0 when unknown."""
    return _read_int(cache, unit_progress_key(course_id, unit_id).encode())


def read_course_progress(cache: CacheStore, course_id: int) -> int:
    """Offline fallback: mean of the course's cached unit percentages."""
    try:
        keys = cache.keys()
    except Exception as e:
        logger.warning("Cache key listing failed: %s", e)
        return 0

    unit_keys = []
    for raw in keys:
        decoded = CacheKey.decode(raw)
        if (
            decoded is not None
            and decoded.course_id == course_id
            and decoded.kind is KeyKind.UNIT_PROGRESS
        ):
            unit_keys.append(raw)

    if not unit_keys:
        return 0
    total = sum(_read_int(cache, k) for k in unit_keys)
    return round_half_up(total / len(unit_keys))
