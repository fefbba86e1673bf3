"""
FlowGate API - task status callback.

Backends call this endpoint when a job changes state, e.g.
``GET /api/v1/task-status?jobId=1292&status=Finished``. Callbacks may be
lost or duplicated; polling remains the backstop.
"""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from flowgate.api.dependencies import get_orchestrator
from flowgate.api.models import CallbackResponse
from flowgate.core.orchestrator import Orchestrator
from flowgate.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _check_token(expected: Optional[str], supplied: Optional[str]) -> None:
    if not expected:
        return
    if not supplied or not hmac.compare_digest(expected, supplied):
        raise HTTPException(status_code=401, detail="Invalid callback token")


@router.api_route("/task-status", methods=["GET", "POST"], response_model=CallbackResponse)
def task_status(
    jobId: Optional[str] = None,
    status: Optional[str] = None,
    token: Optional[str] = None,
    x_callback_token: Optional[str] = Header(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Apply a backend status callback."""
    _check_token(orchestrator.callback_token, x_callback_token or token)

    outcome = orchestrator.tracker.handle_callback(jobId, status)
    logger.info(f"Callback jobId={jobId} status={status}: {outcome.reason or 'ignored'}")
    return CallbackResponse(msg=outcome.message)
