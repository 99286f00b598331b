"""Health and readiness endpoints.

  /health (liveness):  "is this process alive?"  Always 200; the
                       ``status`` field says whether a dependency is
                       impaired.  A 503 here would get the container
                       restarted, which is too aggressive when only
                       the cache mirror is down.

  /ready (readiness):  "can this instance take traffic?"  Redis is
                       optional (the remote store stays authoritative
                       and cache failures are skipped), so readiness
                       does not depend on it.
"""

from __future__ import annotations

import redis
from fastapi import APIRouter, Response

from progress_engine.db import redis as redis_db
from progress_engine.services import sessions

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict:
    # Plain def: FastAPI runs it in the threadpool, off the event loop,
    # since the ping is a blocking call.
    checks: dict[str, str] = {}
    overall = "ok"

    if redis_db.redis_client is not None:
        try:
            redis_db.redis_client.ping()
            checks["redis"] = "ok"
        except redis.RedisError:
            checks["redis"] = "degraded"
            overall = "degraded"
    else:
        checks["redis"] = "not_configured"

    return {
        "status": overall,
        "checks": checks,
        "sessions": len(sessions.session_registry),
    }


@router.get("/ready")
async def ready() -> Response:
    return Response(status_code=200)
