from __future__ import annotations

import asyncio

import httpx

from progress_engine.repos.course_catalog import (
    HttpCourseCatalog,
    InMemoryCourseCatalog,
    course_from_json,
)
from tests.conftest import make_course


def test_course_from_json_numbers_units_by_position() -> None:
    course = course_from_json(
        {"id": "5", "title": "Python", "units": [{"unit": "Intro"}, "Loops", {"name": "Files"}]}
    )
    assert course.id == 5
    assert [(u.unit_id, u.name) for u in course.units] == [
        (1, "Intro"),
        (2, "Loops"),
        (3, "Files"),
    ]
    assert course.unit_ids == frozenset({1, 2, 3})


def test_course_from_json_without_units() -> None:
    course = course_from_json({"id": 2, "title": "Empty", "units": None})
    assert course.units == ()


def test_http_catalog_parses_courses() -> None:
    payload = [{"id": 1, "title": "A", "units": ["x", "y"]}]
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json=payload)),
        base_url="http://store.test",
    )
    courses = asyncio.run(HttpCourseCatalog(client).get_courses())
    assert [c.id for c in courses] == [1]
    assert len(courses[0].units) == 2


def test_in_memory_catalog_add_replaces_by_id() -> None:
    catalog = InMemoryCourseCatalog([make_course(1, units=1)])
    catalog.add(make_course(1, units=3))
    courses = asyncio.run(catalog.get_courses())
    assert len(courses) == 1
    assert len(courses[0].units) == 3
