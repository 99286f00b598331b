"""Learner progress endpoints.

Every handler delegates to the caller's ProgressOrchestrator and turns
its OperationResult into a response:

  success             200 with the recomputed course (or overall) summary
  validation failure  422
  session signed out  409 (the request raced a logout)
  remote failure      502 (progress store or catalog unreachable)

Summaries are served from the session's last reload; the first read of
a session loads them, and ``?refresh=true`` forces a reload.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from progress_engine.api.dependencies import get_orchestrator, raise_for_result
from progress_engine.models.credential import CertificateEligibility
from progress_engine.services.orchestrator import ProgressOrchestrator

router = APIRouter(prefix="/v1/progress", tags=["progress"])

Orchestrator = Annotated[ProgressOrchestrator, Depends(get_orchestrator)]


class UnitProgressIn(BaseModel):
    percent: float


class QuizIn(BaseModel):
    score: float


class CertificateEvaluationIn(BaseModel):
    activities_score: float


def _eligibility_out(eligibility: CertificateEligibility) -> dict[str, Any]:
    return {**asdict(eligibility), "tier": eligibility.tier}


async def _ensure_loaded(orchestrator: ProgressOrchestrator, refresh: bool) -> None:
    if refresh or not orchestrator.is_loaded:
        raise_for_result(await orchestrator.load_progress())


def _course_out(orchestrator: ProgressOrchestrator, course_id: int) -> dict[str, Any]:
    return asdict(orchestrator.get_course_progress(course_id))


@router.get("/summary")
async def get_overall_summary(
    orchestrator: Orchestrator, refresh: bool = False
) -> dict[str, Any]:
    await _ensure_loaded(orchestrator, refresh)
    return asdict(orchestrator.overall_progress)


@router.get("/courses/{course_id}")
async def get_course_summary(
    course_id: int, orchestrator: Orchestrator, refresh: bool = False
) -> dict[str, Any]:
    await _ensure_loaded(orchestrator, refresh)
    if course_id not in orchestrator.snapshot.course_progress:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Course not found"
        )
    return _course_out(orchestrator, course_id)


@router.put("/courses/{course_id}/units/{unit_id}")
async def update_unit_progress(
    course_id: int, unit_id: int, body: UnitProgressIn, orchestrator: Orchestrator
) -> dict[str, Any]:
    result = await orchestrator.update_unit_progress(course_id, unit_id, body.percent)
    raise_for_result(result)
    return _course_out(orchestrator, course_id)


@router.post("/courses/{course_id}/units/{unit_id}/quiz")
async def complete_quiz(
    course_id: int, unit_id: int, body: QuizIn, orchestrator: Orchestrator
) -> dict[str, Any]:
    result = await orchestrator.complete_quiz(course_id, unit_id, body.score)
    raise_for_result(result)
    return _course_out(orchestrator, course_id)


@router.delete("/courses/{course_id}")
async def reset_course_progress(
    course_id: int, orchestrator: Orchestrator
) -> dict[str, Any]:
    raise_for_result(await orchestrator.reset_course_progress(course_id))
    return _course_out(orchestrator, course_id)


@router.post("/courses/{course_id}/certificate/evaluate")
async def evaluate_certificate(
    course_id: int, body: CertificateEvaluationIn, orchestrator: Orchestrator
) -> dict[str, Any]:
    result = await orchestrator.evaluate_certificate(course_id, body.activities_score)
    raise_for_result(result)
    return {
        "eligibility": _eligibility_out(result.data["eligibility"]),
        "issued": result.data["issued"],
    }


@router.post("/courses/{course_id}/certificate")
async def issue_certificate(
    course_id: int, orchestrator: Orchestrator
) -> dict[str, Any]:
    raise_for_result(await orchestrator.update_certificate(course_id))
    return {"course_id": course_id, "certificate": 1}
