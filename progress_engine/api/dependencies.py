from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from progress_engine.core.errors import ErrorKind
from progress_engine.models.principal import Principal
from progress_engine.services import sessions
from progress_engine.services.orchestrator import OperationResult, ProgressOrchestrator

logger = logging.getLogger(__name__)


def require_user(
    x_user_id: Annotated[str | None, Header()] = None,
) -> Principal:
    """Resolve the calling learner from the X-User-Id header, else 401."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        logger.warning("Request rejected: missing X-User-Id")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return Principal(user_id=user_id)


def get_orchestrator(
    principal: Annotated[Principal, Depends(require_user)],
) -> ProgressOrchestrator:
    return sessions.session_registry.get(principal.user_id)


_STATUS_FOR_KIND = {
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_CONTENT,
    ErrorKind.CANCELLED: status.HTTP_409_CONFLICT,
    ErrorKind.ORCHESTRATOR: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.AGGREGATION: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.SYNC: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def raise_for_result(result: OperationResult) -> None:
    """Translate a failed OperationResult into the matching HTTP error."""
    if result.success:
        return
    kind = result.error_kind or ErrorKind.ORCHESTRATOR
    raise HTTPException(
        status_code=_STATUS_FOR_KIND[kind],
        detail={"error": result.error, "kind": kind.value},
    )
