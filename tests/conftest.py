from __future__ import annotations

import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from progress_engine.main import app
from progress_engine.models.course import Course
from progress_engine.models.progress import ProgressRecord
from progress_engine.services import sessions

# Ensure repo root is on sys.path so `import progress_engine` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_sessions() -> None:
    """Drop open sessions and empty the shared in-memory store and catalog."""
    registry = sessions.session_registry
    registry.reset()
    if hasattr(registry.store, "_rows"):
        registry.store._rows.clear()  # type: ignore[union-attr]
        registry.store._certificates.clear()  # type: ignore[union-attr]
    if hasattr(registry.catalog, "_by_id"):
        registry.catalog._by_id.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def at(day: int, hour: int = 12) -> datetime:
    """A UTC timestamp in January 2024; keeps recency comparisons readable."""
    return datetime(2024, 1, day, hour, tzinfo=UTC)


def make_course(course_id: int = 1, units: int = 3, title: str = "") -> Course:
    return Course.new(
        id=course_id,
        title=title or f"Course {course_id}",
        unit_names=[f"Lesson {i}" for i in range(1, units + 1)],
    )


def make_record(
    course_id: int = 1,
    unit_id: int = 1,
    progress: float = 0.0,
    *,
    user_id: str = "learner-1",
    completed: bool = False,
    score: float = 0.0,
    updated_at: datetime | None = None,
    **kwargs,
) -> ProgressRecord:
    return ProgressRecord.new(
        user_id=user_id,
        course_id=course_id,
        unit_id=unit_id,
        progress=progress,
        completed=completed,
        score=score,
        updated_at=updated_at,
        **kwargs,
    )
