"""Handlers for usage reports of the caller."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends

from app.dependencies import get_caller, get_gate
from models.responses import SessionResetResponse, UsageResponse
from quota.gate import AdmissionGate
from utils.caller import CallerContext

logger = logging.getLogger("app.endpoints.handlers")
router = APIRouter(tags=["usage"])


get_usage_responses: dict[int | str, dict[str, Any]] = {
    200: {
        "description": "Token and request usage of the caller",
        "model": UsageResponse,
    },
}


@router.get("/usage", responses=get_usage_responses)
async def usage_endpoint_handler(
    caller: Annotated[CallerContext, Depends(get_caller)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
) -> UsageResponse:
    """
    Handle request to the /usage endpoint.

    Returns token usage in the session, day and month horizons together
    with request counts in the rate windows of the caller's tier.
    """
    logger.info("Usage requested by %s", caller.caller_id)
    return UsageResponse(
        caller_id=caller.caller_id,
        session_id=caller.session_id,
        tier=caller.tier,
        tokens=gate.quota_tracker.get_usage_stats(caller.caller_id, caller.session_id),
        rate_limit=gate.rate_limiter.get_stats(caller.caller_id, caller.tier),
    )


@router.delete("/usage/session")
async def reset_session_endpoint_handler(
    caller: Annotated[CallerContext, Depends(get_caller)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
) -> SessionResetResponse:
    """Zero session counters of the caller and cancel its queued OCR jobs."""
    cancelled = gate.job_queue.reset_session(caller.session_id)
    logger.info("Session %s reset by %s", caller.session_id, caller.caller_id)
    return SessionResetResponse(session_id=caller.session_id, cancelled_jobs=cancelled)
