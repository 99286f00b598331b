"""HttpProgressStore wire format, exercised against httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from progress_engine.repos.progress_store import HttpProgressStore, InMemoryProgressStore


def _store(handler, seen: list[httpx.Request]) -> HttpProgressStore:
    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(
        transport=httpx.MockTransport(recording), base_url="http://store.test"
    )
    return HttpProgressStore(client)


def test_get_user_progress() -> None:
    seen: list[httpx.Request] = []
    rows = [{"user_id": "u1", "course_id": 1, "unit_id": 1, "progress": 0.5}]
    store = _store(lambda r: httpx.Response(200, json=rows), seen)

    result = asyncio.run(store.get_user_progress("u1"))

    assert result == rows
    assert seen[0].method == "GET"
    assert seen[0].url.path == "/progress/u1"


def test_upsert_sends_row_as_json() -> None:
    seen: list[httpx.Request] = []
    store = _store(lambda r: httpx.Response(204), seen)
    row = {"user_id": "u1", "course_id": 2, "unit_id": 3, "progress": 0.4, "completed": False}

    asyncio.run(store.upsert_progress(row))

    assert seen[0].method == "PUT"
    assert seen[0].url.path == "/progress"
    assert json.loads(seen[0].content) == row


def test_complete_quiz_payload() -> None:
    seen: list[httpx.Request] = []
    store = _store(lambda r: httpx.Response(200, json={"ok": True}), seen)

    result = asyncio.run(store.complete_quiz(user_id="u1", course_id=2, unit_id=3, score=88))

    assert result == {"ok": True}
    assert seen[0].url.path == "/progress/quiz"
    assert json.loads(seen[0].content) == {
        "userId": "u1",
        "courseId": 2,
        "unitId": 3,
        "score": 88,
    }


def test_update_certificate_and_delete() -> None:
    seen: list[httpx.Request] = []
    store = _store(lambda r: httpx.Response(204), seen)

    async def scenario() -> None:
        await store.update_certificate(user_id="u1", course_id=4, certificate=1)
        await store.delete_progress("u1", 4)

    asyncio.run(scenario())

    assert seen[0].url.path == "/progress/certificate"
    assert json.loads(seen[0].content) == {"user_id": "u1", "course_id": 4, "certificate": 1}
    assert seen[1].method == "DELETE"
    assert seen[1].url.path == "/progress/u1/4"


def test_non_2xx_raises() -> None:
    store = _store(lambda r: httpx.Response(503), [])
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(store.upsert_progress({"user_id": "u1", "course_id": 1, "unit_id": 1}))


# ---- in-memory store ----


def test_in_memory_upsert_replaces_row_and_keeps_created_at() -> None:
    async def scenario():
        store = InMemoryProgressStore()
        base = {"user_id": "u1", "course_id": 1, "unit_id": 1}
        await store.upsert_progress({**base, "progress": 0.2})
        first = (await store.get_user_progress("u1"))[0]
        await store.upsert_progress({**base, "progress": 0.6})
        return first, await store.get_user_progress("u1")

    first, rows = asyncio.run(scenario())
    assert len(rows) == 1
    assert rows[0]["progress"] == 0.6
    assert rows[0]["created_at"] == first["created_at"]


def test_in_memory_delete_is_scoped_to_user_and_course() -> None:
    async def scenario():
        store = InMemoryProgressStore()
        for user, course in [("u1", 1), ("u1", 2), ("u2", 1)]:
            await store.upsert_progress(
                {"user_id": user, "course_id": course, "unit_id": 1, "progress": 0.5}
            )
        await store.delete_progress("u1", 1)
        return await store.get_user_progress("u1"), await store.get_user_progress("u2")

    mine, theirs = asyncio.run(scenario())
    assert [r["course_id"] for r in mine] == [2]
    assert len(theirs) == 1
