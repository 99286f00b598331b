from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from progress_engine.api.dependencies import require_user
from progress_engine.models.principal import Principal
from progress_engine.services import sessions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/session", tags=["session"])


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(principal: Annotated[Principal, Depends(require_user)]) -> Response:
    """Sign the learner out.

    In-flight mutations for this user finish their remote write but
    their results are discarded; derived state and the user's cache
    namespace are cleared.  Idempotent: logging out twice is a 204 too.
    """
    had_session = sessions.session_registry.sign_out(principal.user_id)
    logger.info(
        "Logout (session_open=%s)", had_session, extra={"user_id": principal.user_id}
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
