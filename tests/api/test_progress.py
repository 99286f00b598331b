"""HTTP surface for learner progress."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from progress_engine.services import sessions
from tests.conftest import make_course

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}


@pytest.fixture(autouse=True)
def catalog() -> None:
    sessions.session_registry.catalog.add(make_course(1, units=2, title="Intro"))  # type: ignore[attr-defined]
    sessions.session_registry.catalog.add(make_course(2, units=1, title="Advanced"))  # type: ignore[attr-defined]


# ---- 401: missing identity ----


def test_requests_without_user_are_rejected(client: TestClient) -> None:
    assert client.get("/v1/progress/summary").status_code == 401
    assert client.put("/v1/progress/courses/1/units/1", json={"percent": 10}).status_code == 401
    assert client.post("/v1/session/logout").status_code == 401


def test_blank_user_header_is_rejected(client: TestClient) -> None:
    resp = client.get("/v1/progress/summary", headers={"X-User-Id": "  "})
    assert resp.status_code == 401


# ---- reads ----


def test_summary_for_new_learner(client: TestClient) -> None:
    resp = client.get("/v1/progress/summary", headers=ALICE)
    assert resp.status_code == 200
    body = resp.json()
    assert body["total_courses"] == 2
    assert body["total_units"] == 3
    assert body["average_progress"] == 0
    assert body["has_started_learning"] is False
    assert [c["course_id"] for c in body["courses_progress"]] == [1, 2]


def test_unknown_course_is_404(client: TestClient) -> None:
    resp = client.get("/v1/progress/courses/42", headers=ALICE)
    assert resp.status_code == 404


# ---- mutations ----


def test_update_unit_progress_returns_course_summary(client: TestClient) -> None:
    resp = client.put("/v1/progress/courses/1/units/1", json={"percent": 60}, headers=ALICE)
    assert resp.status_code == 200
    body = resp.json()
    assert body["course_id"] == 1
    assert body["course_name"] == "Intro"
    assert body["average_progress"] == 30
    assert body["units"][0]["progress"] == 60
    assert body["next_unit"]["unit_id"] == 1

    summary = client.get("/v1/progress/summary", headers=ALICE).json()
    assert summary["has_started_learning"] is True
    assert summary["in_progress_courses"] == 1


def test_out_of_range_percent_is_422(client: TestClient) -> None:
    resp = client.put("/v1/progress/courses/1/units/1", json={"percent": 150}, headers=ALICE)
    assert resp.status_code == 422
    assert resp.json()["detail"]["kind"] == "validation"


def test_invalid_unit_is_422_and_not_stored(client: TestClient) -> None:
    resp = client.put("/v1/progress/courses/1/units/0", json={"percent": 50}, headers=ALICE)
    assert resp.status_code == 422
    assert resp.json()["detail"]["kind"] == "validation"

    client.get("/v1/progress/summary", headers=ALICE)
    resp = client.put("/v1/progress/courses/1/units/7", json={"percent": 50}, headers=ALICE)
    assert resp.status_code == 422
    assert sessions.session_registry.store._rows == {}  # type: ignore[attr-defined]


def test_missing_body_field_is_422(client: TestClient) -> None:
    resp = client.put("/v1/progress/courses/1/units/1", json={}, headers=ALICE)
    assert resp.status_code == 422


def test_complete_quiz_finishes_course(client: TestClient) -> None:
    resp = client.post(
        "/v1/progress/courses/2/units/1/quiz", json={"score": 95}, headers=ALICE
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["is_completed"] is True
    assert body["average_score"] == 95
    assert body["course_finish_date"] is not None


def test_reset_course(client: TestClient) -> None:
    client.post("/v1/progress/courses/2/units/1/quiz", json={"score": 80}, headers=ALICE)

    resp = client.delete("/v1/progress/courses/2", headers=ALICE)

    assert resp.status_code == 200
    body = resp.json()
    assert body["is_completed"] is False
    assert body["average_progress"] == 0


def test_learners_are_isolated(client: TestClient) -> None:
    client.put("/v1/progress/courses/1/units/1", json={"percent": 100}, headers=ALICE)

    bob = client.get("/v1/progress/courses/1", headers=BOB).json()
    assert bob["completed_units"] == 0
    alice = client.get("/v1/progress/courses/1", headers=ALICE).json()
    assert alice["completed_units"] == 1


def test_remote_failure_is_502(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    async def broken(row):
        raise ConnectionError("store down")

    monkeypatch.setattr(sessions.session_registry.store, "upsert_progress", broken)

    resp = client.put("/v1/progress/courses/1/units/1", json={"percent": 10}, headers=ALICE)

    assert resp.status_code == 502
    assert resp.json()["detail"]["kind"] == "orchestrator"


# ---- certificates ----


def test_certificate_evaluation_issues_certificate(client: TestClient) -> None:
    client.put("/v1/progress/courses/2/units/1", json={"percent": 85}, headers=ALICE)

    resp = client.post(
        "/v1/progress/courses/2/certificate/evaluate",
        json={"activities_score": 60},
        headers=ALICE,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["eligibility"] == {
        "virtual": True,
        "complete": True,
        "final_score": 73,
        "tier": "complete",
    }
    assert body["issued"] is True
    store = sessions.session_registry.store
    assert store.certificate_for("alice", 2) == 1  # type: ignore[attr-defined]


def test_certificate_evaluation_below_threshold(client: TestClient) -> None:
    client.put("/v1/progress/courses/2/units/1", json={"percent": 75}, headers=ALICE)
    resp = client.post(
        "/v1/progress/courses/2/certificate/evaluate",
        json={"activities_score": 100},
        headers=ALICE,
    )
    assert resp.json()["eligibility"]["tier"] == "none"
    assert resp.json()["issued"] is False


def test_certificate_evaluation_rejects_bad_score(client: TestClient) -> None:
    resp = client.post(
        "/v1/progress/courses/2/certificate/evaluate",
        json={"activities_score": 101},
        headers=ALICE,
    )
    assert resp.status_code == 422


def test_issue_certificate_directly(client: TestClient) -> None:
    resp = client.post("/v1/progress/courses/1/certificate", headers=ALICE)
    assert resp.status_code == 200
    assert resp.json() == {"course_id": 1, "certificate": 1}


# ---- logout ----


def test_logout_ends_session(client: TestClient) -> None:
    client.put("/v1/progress/courses/1/units/1", json={"percent": 40}, headers=ALICE)
    assert len(sessions.session_registry) == 1

    resp = client.post("/v1/session/logout", headers=ALICE)

    assert resp.status_code == 204
    assert len(sessions.session_registry) == 0
    # Progress is remote; a new session sees it again
    body = client.get("/v1/progress/courses/1", headers=ALICE).json()
    assert body["average_progress"] == 20


def test_logout_without_session_is_204(client: TestClient) -> None:
    assert client.post("/v1/session/logout", headers=BOB).status_code == 204
