"""Progress mutations and reconciliation for one learner session.

This is the only component that changes state.  Every mutation follows
the same sequence:

  1. Take the per-(user, course) lock (overlapping calls queue up)
  2. Write to the remote store
  3. Optionally write the equivalent cache key, tagged as PENDING
  4. Reload the full authoritative record set and rebuild everything:
     summaries, overall rollup and the cache mirror (which CONFIRMS
     the pending write by replacing it)
  5. Release the lock

Certificate evaluation takes the same lock, and holds it across the
eligibility decision and the issuance write, so it always sees the
course as left by the mutations queued ahead of it.

FAILURE SEMANTICS
-----------------
Nothing raises past this class.  Each operation returns an
``OperationResult``; the HTTP layer decides what the learner sees.

  remote write fails   no cache change at all; the store never
                       accepted the data, so nothing optimistic is shown
  reload fails         pending cache writes are rolled back to their
                       previous values, so the cache always matches the
                       last successful reload
  sign_out() mid-way   the in-flight result is discarded (generation
                       check) and all derived state is cleared

RELOAD ORDERING
---------------
Mutations on different courses run concurrently, so their reloads can
finish out of order.  Each reload takes a sequence number when it
starts; one that finishes after a newer reload has been applied is
dropped rather than overwriting fresher state with older data.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from progress_engine.core.config import ThresholdConfig
from progress_engine.core.errors import (
    ErrorKind,
    OrchestratorError,
    ProgressError,
    ValidationError,
)
from progress_engine.core.metrics import MUTATION_DURATION, PROGRESS_MUTATIONS
from progress_engine.models.course import Course
from progress_engine.models.credential import CertificateEligibility
from progress_engine.models.progress import (
    CourseProgressSummary,
    OverallProgressSummary,
    ProgressRecord,
    UnitProgress,
)
from progress_engine.repos.course_catalog import CourseCatalog
from progress_engine.repos.progress_store import ProgressStore
from progress_engine.services.aggregator import (
    DEFAULT_COMPLETION_THRESHOLD,
    compute_unit_progress,
)
from progress_engine.services.cache import CacheStore
from progress_engine.services.cache_keys import unit_progress_key
from progress_engine.services.cache_sync import (
    clear_cache,
    floor_percent,
    read_course_progress,
    read_unit_progress,
    sync_cache,
)
from progress_engine.services.certification import (
    newly_granted,
    reevaluate_certificate,
)
from progress_engine.services.keyed_lock import KeyedLock
from progress_engine.services.overall import compute_overall_progress
from progress_engine.services.record_validation import parse_records

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OperationResult:
    success: bool
    error: str | None = None
    error_kind: ErrorKind | None = None
    data: Any = None

    @staticmethod
    def ok(data: Any = None) -> OperationResult:
        return OperationResult(success=True, data=data)

    @staticmethod
    def failed(kind: ErrorKind, error: str, data: Any = None) -> OperationResult:
        return OperationResult(success=False, error=error, error_kind=kind, data=data)

    @staticmethod
    def from_error(exc: ProgressError) -> OperationResult:
        return OperationResult.failed(exc.kind, str(exc))


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    """Derived state as of the last applied reload."""

    records: tuple[ProgressRecord, ...] = ()
    courses: tuple[Course, ...] = ()
    course_progress: dict[int, CourseProgressSummary] = field(default_factory=dict)
    overall: OverallProgressSummary = field(default_factory=OverallProgressSummary)
    loaded: bool = False


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_id(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class ProgressOrchestrator:
    def __init__(
        self,
        *,
        user_id: str,
        store: ProgressStore,
        catalog: CourseCatalog,
        cache: CacheStore,
        thresholds: ThresholdConfig | None = None,
        completion_threshold: int = DEFAULT_COMPLETION_THRESHOLD,
        locks: KeyedLock | None = None,
    ) -> None:
        self.user_id = user_id
        self._store = store
        self._catalog = catalog
        self._cache = cache
        self._thresholds = thresholds or ThresholdConfig()
        self._completion_threshold = completion_threshold
        self._locks = locks or KeyedLock()

        self._snapshot = ProgressSnapshot()
        self._generation = 0
        self._reload_seq = 0
        self._applied_seq = 0
        # key -> value before the tentative write (None = key was absent)
        self._pending: dict[str, str | None] = {}
        self._evaluations: dict[int, CertificateEligibility] = {}
        self._active = 0

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> ProgressSnapshot:
        return self._snapshot

    @property
    def is_loaded(self) -> bool:
        return self._snapshot.loaded

    @property
    def overall_progress(self) -> OverallProgressSummary:
        return self._snapshot.overall

    @property
    def is_busy(self) -> bool:
        """True while a mutation, reload or evaluation is in flight."""
        return self._active > 0

    @property
    def pending_keys(self) -> frozenset[str]:
        return frozenset(self._pending)

    def get_course_progress(self, course_id: int) -> CourseProgressSummary:
        return self._snapshot.course_progress.get(
            course_id, CourseProgressSummary.empty(course_id)
        )

    def get_unit_progress(self, course_id: int, unit_id: int) -> UnitProgress:
        for unit in self.get_course_progress(course_id).units:
            if unit.unit_id == unit_id:
                return unit
        return compute_unit_progress(self._snapshot.records, course_id, unit_id)

    def is_unit_completed(self, course_id: int, unit_id: int) -> bool:
        return self.get_unit_progress(course_id, unit_id).completed

    def is_course_completed(self, course_id: int) -> bool:
        return self.get_course_progress(course_id).is_completed

    def cached_progress(self, course_id: int, unit_id: int | None = None) -> int:
        """Offline fallback read straight from the cache mirror."""
        if unit_id is None:
            return read_course_progress(self._cache, course_id)
        return read_unit_progress(self._cache, course_id, unit_id)

    def certificate_for(self, course_id: int) -> CertificateEligibility | None:
        return self._evaluations.get(course_id)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    @contextmanager
    def _activity(self) -> Iterator[None]:
        self._active += 1
        try:
            yield
        finally:
            self._active -= 1

    async def load_progress(self) -> OperationResult:
        with self._activity():
            return await self._reload(self._generation)

    async def _reload(self, generation: int) -> OperationResult:
        self._reload_seq += 1
        seq = self._reload_seq
        log_extra = {"user_id": self.user_id, "operation": "reload"}

        try:
            rows, courses = await asyncio.gather(
                self._store.get_user_progress(self.user_id),
                self._catalog.get_courses(),
            )
            batch = parse_records(rows)
        except Exception as e:
            if generation != self._generation:
                logger.info("Reload failed after sign-out: %s", _describe(e), extra=log_extra)
                return OperationResult.failed(ErrorKind.CANCELLED, "session signed out")
            logger.warning("Progress reload failed: %s", _describe(e), extra=log_extra)
            return OperationResult.from_error(
                OrchestratorError(f"reload failed: {_describe(e)}")
            )

        if generation != self._generation:
            logger.info("Discarding reload for signed-out session", extra=log_extra)
            return OperationResult.failed(ErrorKind.CANCELLED, "session signed out")

        if seq < self._applied_seq:
            logger.debug("Discarding reload %d; %d already applied", seq, self._applied_seq)
            return OperationResult.ok()

        records = tuple(r for r in batch.records if r.user_id == self.user_id)
        courses = tuple(courses)
        overall = compute_overall_progress(
            courses, records, completion_threshold=self._completion_threshold
        )
        sync = sync_cache(records, courses, self._cache)

        self._applied_seq = seq
        self._pending.clear()
        self._snapshot = ProgressSnapshot(
            records=records,
            courses=courses,
            course_progress={s.course_id: s for s in overall.value.courses_progress},
            overall=overall.value,
            loaded=True,
        )

        logger.info(
            "Progress reloaded: %d record(s), %d course(s)",
            len(records),
            len(courses),
            extra=log_extra,
        )
        return OperationResult.ok(
            data={
                "rejected_rows": len(batch.rejected),
                "aggregation_error": overall.detail,
                "cache_failures": sync.value.failed,
            }
        )

    # ------------------------------------------------------------------
    # Tentative cache writes
    # ------------------------------------------------------------------

    def _write_pending(self, entries: dict[str, str]) -> None:
        for key, value in entries.items():
            try:
                if key not in self._pending:
                    self._pending[key] = self._cache.get_item(key)
                self._cache.set_item(key, value)
            except Exception as e:
                logger.warning("Tentative cache write failed for key=%s: %s", key, e)

    def _rollback_pending(self) -> None:
        for key, previous in self._pending.items():
            try:
                if previous is None:
                    self._cache.remove_item(key)
                else:
                    self._cache.set_item(key, previous)
            except Exception as e:
                logger.warning("Cache rollback failed for key=%s: %s", key, e)
        self._pending.clear()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _invalid(self, operation: str, error: str) -> OperationResult:
        PROGRESS_MUTATIONS.labels(operation=operation, result="invalid").inc()
        logger.warning("Rejected %s: %s", operation, error, extra={"user_id": self.user_id})
        return OperationResult.failed(ErrorKind.VALIDATION, error)

    def _check_target(self, course_id: object, unit_id: object = None) -> str | None:
        """Problem with the ids of a mutation, or None when they are usable.

        Ids must be positive integers.  Once the session has loaded, the
        course must exist and the unit must be part of its structure:
        anything else would be stored remotely and then dropped by the
        next reload.
        """
        if not _is_id(course_id):
            return f"course_id must be a positive integer (got {course_id!r})"
        if unit_id is not None and not _is_id(unit_id):
            return f"unit_id must be a positive integer (got {unit_id!r})"
        if not self.is_loaded:
            return None

        course = next((c for c in self._snapshot.courses if c.id == course_id), None)
        if course is None:
            return f"unknown course {course_id}"
        if unit_id is not None and unit_id not in course.unit_ids:
            return f"course {course_id} has no unit {unit_id}"
        return None

    async def _mutate(
        self,
        operation: str,
        course_id: int,
        write: Callable[[], Awaitable[Any]],
        *,
        tentative: dict[str, str] | None = None,
    ) -> OperationResult:
        generation = self._generation
        with self._activity():
            async with self._locks.hold((self.user_id, course_id)):
                return await self._apply(
                    operation, course_id, write, generation, tentative=tentative
                )

    async def _apply(
        self,
        operation: str,
        course_id: int,
        write: Callable[[], Awaitable[Any]],
        generation: int,
        *,
        tentative: dict[str, str] | None = None,
    ) -> OperationResult:
        # Caller holds the (user, course) lock.
        log_extra = {"user_id": self.user_id, "course_id": course_id, "operation": operation}
        start = time.monotonic()

        if generation != self._generation:
            PROGRESS_MUTATIONS.labels(operation=operation, result="cancelled").inc()
            return OperationResult.failed(ErrorKind.CANCELLED, "session signed out")

        try:
            data = await write()
        except Exception as e:
            PROGRESS_MUTATIONS.labels(operation=operation, result="failure").inc()
            logger.warning(
                "Remote %s failed: %s", operation, _describe(e), extra=log_extra
            )
            return OperationResult.from_error(OrchestratorError(_describe(e)))

        if generation != self._generation:
            PROGRESS_MUTATIONS.labels(operation=operation, result="cancelled").inc()
            logger.info("Discarding %s result after sign-out", operation, extra=log_extra)
            return OperationResult.failed(ErrorKind.CANCELLED, "session signed out")

        if tentative:
            self._write_pending(tentative)

        reloaded = await self._reload(generation)
        if not reloaded.success:
            if reloaded.error_kind is not ErrorKind.CANCELLED:
                self._rollback_pending()
            result = "cancelled" if reloaded.error_kind is ErrorKind.CANCELLED else "failure"
            PROGRESS_MUTATIONS.labels(operation=operation, result=result).inc()
            return reloaded

        MUTATION_DURATION.labels(operation=operation).observe(time.monotonic() - start)
        PROGRESS_MUTATIONS.labels(operation=operation, result="success").inc()
        logger.info("%s succeeded", operation, extra=log_extra)
        return OperationResult.ok(data=data)

    async def update_unit_progress(
        self, course_id: int, unit_id: int, percent: float
    ) -> OperationResult:
        problem = self._check_target(course_id, unit_id)
        if problem is None and (not _is_number(percent) or not 0 <= percent <= 100):
            problem = f"percent must be a number between 0 and 100 (got {percent!r})"
        if problem is not None:
            return self._invalid("update_unit_progress", problem)

        progress = percent / 100
        row = {
            "user_id": self.user_id,
            "course_id": course_id,
            "unit_id": unit_id,
            "progress": progress,
            "completed": percent >= 100,
        }
        key = unit_progress_key(course_id, unit_id).encode()
        return await self._mutate(
            "update_unit_progress",
            course_id,
            lambda: self._store.upsert_progress(row),
            tentative={key: str(floor_percent(progress))},
        )

    async def complete_quiz(
        self, course_id: int, unit_id: int, score: float
    ) -> OperationResult:
        problem = self._check_target(course_id, unit_id)
        if problem is None and (not _is_number(score) or score < 0):
            problem = f"score must be a non-negative number (got {score!r})"
        if problem is not None:
            return self._invalid("complete_quiz", problem)

        return await self._mutate(
            "complete_quiz",
            course_id,
            lambda: self._store.complete_quiz(
                user_id=self.user_id, course_id=course_id, unit_id=unit_id, score=score
            ),
        )

    async def reset_course_progress(self, course_id: int) -> OperationResult:
        problem = self._check_target(course_id)
        if problem is not None:
            return self._invalid("reset_course_progress", problem)

        generation = self._generation
        with self._activity():
            async with self._locks.hold((self.user_id, course_id)):
                result = await self._apply(
                    "reset_course_progress",
                    course_id,
                    lambda: self._store.delete_progress(self.user_id, course_id),
                    generation,
                )
                if result.success:
                    self._evaluations.pop(course_id, None)
        return result

    async def _issue(self, course_id: int) -> Any:
        return await self._store.update_certificate(
            user_id=self.user_id, course_id=course_id, certificate=1
        )

    async def update_certificate(self, course_id: int) -> OperationResult:
        problem = self._check_target(course_id)
        if problem is not None:
            return self._invalid("update_certificate", problem)

        return await self._mutate(
            "update_certificate", course_id, lambda: self._issue(course_id)
        )

    async def evaluate_certificate(
        self, course_id: int, activities_score: float
    ) -> OperationResult:
        """Decide certificate eligibility, issuing it when auto_generate is on.

        The decision and the issuance happen under the course lock, after
        any queued mutation of that course (a reset, say) has reloaded, so
        the eligibility always reflects the current records.

        ``data`` carries ``eligibility`` (CertificateEligibility) and
        ``issued`` (whether update_certificate was called and succeeded).
        """
        generation = self._generation
        with self._activity():
            if not self.is_loaded:
                loaded = await self._reload(generation)
                if not loaded.success:
                    return loaded

            async with self._locks.hold((self.user_id, course_id)):
                if generation != self._generation:
                    return OperationResult.failed(ErrorKind.CANCELLED, "session signed out")
                return await self._evaluate_locked(course_id, activities_score, generation)

    async def _evaluate_locked(
        self, course_id: int, activities_score: float, generation: int
    ) -> OperationResult:
        if course_id not in self._snapshot.course_progress:
            return self._invalid("evaluate_certificate", f"unknown course {course_id}")

        previous = self._evaluations.get(course_id)
        try:
            eligibility = reevaluate_certificate(
                previous,
                self.get_course_progress(course_id),
                activities_score,
                self._thresholds,
            )
        except ValidationError as e:
            return self._invalid("evaluate_certificate", str(e))

        self._evaluations[course_id] = eligibility

        if not (self._thresholds.auto_generate and newly_granted(previous, eligibility)):
            return OperationResult.ok(data={"eligibility": eligibility, "issued": False})

        issued = await self._apply(
            "update_certificate", course_id, lambda: self._issue(course_id), generation
        )
        if not issued.success:
            return OperationResult.failed(
                issued.error_kind or ErrorKind.ORCHESTRATOR,
                issued.error or "certificate issuance failed",
                data={"eligibility": eligibility, "issued": False},
            )
        return OperationResult.ok(data={"eligibility": eligibility, "issued": True})

    # ------------------------------------------------------------------
    # Session end
    # ------------------------------------------------------------------

    def sign_out(self) -> None:
        """Cancel in-flight work and drop every piece of derived state."""
        self._generation += 1
        self._snapshot = ProgressSnapshot()
        self._pending.clear()
        self._evaluations.clear()
        report = clear_cache(self._cache)
        logger.info(
            "Session signed out; %d cache key(s) cleared",
            report.removed,
            extra={"user_id": self.user_id},
        )
