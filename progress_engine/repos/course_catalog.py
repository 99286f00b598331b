from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import httpx

from progress_engine.models.course import Course


@runtime_checkable
class CourseCatalog(Protocol):
    async def get_courses(self) -> list[Course]: ...


class InMemoryCourseCatalog:
    def __init__(self, courses: list[Course] | None = None) -> None:
        self._by_id: dict[int, Course] = {c.id: c for c in courses or []}

    async def get_courses(self) -> list[Course]:
        return list(self._by_id.values())

    def add(self, course: Course) -> None:
        self._by_id[course.id] = course


def course_from_json(data: dict[str, Any]) -> Course:
    # Units arrive ordered; a unit's position is its id.
    # Each unit is either {"unit": "<name>"} or a bare name.
    names = [
        (u.get("unit") or u.get("name") or "") if isinstance(u, dict) else str(u)
        for u in data.get("units") or []
    ]
    return Course.new(id=int(data["id"]), title=data.get("title") or "", unit_names=names)


class HttpCourseCatalog:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def get_courses(self) -> list[Course]:
        resp = await self._client.get("/courses")
        resp.raise_for_status()
        return [course_from_json(c) for c in resp.json()]
