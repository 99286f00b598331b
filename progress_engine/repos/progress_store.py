"""Remote progress store: the authoritative record set.

The engine only knows this Protocol.  Rows travel as plain mappings
(the store's JSON) and are validated by record_validation.parse_records
on the way in, so a store that returns junk can never corrupt the math.

Every method may raise; the orchestrator turns failures into results.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)


@runtime_checkable
class ProgressStore(Protocol):
    async def get_user_progress(self, user_id: str) -> list[dict[str, Any]]: ...

    async def upsert_progress(self, row: dict[str, Any]) -> None: ...

    async def delete_progress(self, user_id: str, course_id: int) -> None: ...

    async def complete_quiz(
        self, *, user_id: str, course_id: int, unit_id: int, score: float
    ) -> dict[str, Any]: ...

    async def update_certificate(
        self, *, user_id: str, course_id: int, certificate: int
    ) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InMemoryProgressStore:
    """Single-process store for dev and tests.

    Behaves like the real backend: upsert replaces the row for
    (user_id, course_id, unit_id) and stamps updated_at.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._rows: dict[tuple[str, int, int], dict[str, Any]] = {}
        self._certificates: dict[tuple[str, int], int] = {}

    def _key(self, row: dict[str, Any]) -> tuple[str, int, int]:
        return (str(row["user_id"]), int(row["course_id"]), int(row["unit_id"]))

    async def get_user_progress(self, user_id: str) -> list[dict[str, Any]]:
        return [dict(r) for k, r in self._rows.items() if k[0] == user_id]

    async def upsert_progress(self, row: dict[str, Any]) -> None:
        key = self._key(row)
        now = self._clock().isoformat()
        existing = self._rows.get(key, {"created_at": now})
        self._rows[key] = {**existing, **row, "updated_at": now}

    async def delete_progress(self, user_id: str, course_id: int) -> None:
        for key in [k for k in self._rows if k[0] == user_id and k[1] == course_id]:
            del self._rows[key]

    async def complete_quiz(
        self, *, user_id: str, course_id: int, unit_id: int, score: float
    ) -> dict[str, Any]:
        now = self._clock()
        await self.upsert_progress(
            {
                "user_id": user_id,
                "course_id": course_id,
                "unit_id": unit_id,
                "progress": 1.0,
                "completed": True,
                "attempted": True,
                "score": score,
                "finish_date": now.date().isoformat(),
            }
        )
        return dict(self._rows[(user_id, course_id, unit_id)])

    async def update_certificate(
        self, *, user_id: str, course_id: int, certificate: int
    ) -> None:
        self._certificates[(user_id, course_id)] = certificate

    def certificate_for(self, user_id: str, course_id: int) -> int | None:
        return self._certificates.get((user_id, course_id))


class HttpProgressStore:
    """Progress store reached over HTTP.

    Timeouts live here, on the httpx client; the engine itself owns none.
    Non-2xx responses raise httpx.HTTPStatusError.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @staticmethod
    def from_url(base_url: str, *, timeout: float = 10.0) -> HttpProgressStore:
        return HttpProgressStore(httpx.AsyncClient(base_url=base_url, timeout=timeout))

    async def get_user_progress(self, user_id: str) -> list[dict[str, Any]]:
        resp = await self._client.get(f"/progress/{user_id}")
        resp.raise_for_status()
        return resp.json()

    async def upsert_progress(self, row: dict[str, Any]) -> None:
        resp = await self._client.put("/progress", json=row)
        resp.raise_for_status()

    async def delete_progress(self, user_id: str, course_id: int) -> None:
        resp = await self._client.delete(f"/progress/{user_id}/{course_id}")
        resp.raise_for_status()

    async def complete_quiz(
        self, *, user_id: str, course_id: int, unit_id: int, score: float
    ) -> dict[str, Any]:
        resp = await self._client.post(
            "/progress/quiz",
            json={
                "userId": user_id,
                "courseId": course_id,
                "unitId": unit_id,
                "score": score,
            },
        )
        resp.raise_for_status()
        return resp.json() if resp.content else {}

    async def update_certificate(
        self, *, user_id: str, course_id: int, certificate: int
    ) -> None:
        resp = await self._client.post(
            "/progress/certificate",
            json={"user_id": user_id, "course_id": course_id, "certificate": certificate},
        )
        resp.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()
