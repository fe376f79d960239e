"""Handlers for admission of chat completions."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response

import constants
from app.dependencies import get_caller, get_gate
from models.requests import ChatAdmissionRequest, ChatUsageRequest
from models.responses import (
    AdmissionResponse,
    LimitExceededResponse,
    UsageCommitResponse,
)
from quota.gate import AdmissionGate
from utils.caller import CallerContext
from utils.quota import raise_for_denial
from utils.token_estimation import estimate_request_tokens

logger = logging.getLogger("app.endpoints.handlers")
router = APIRouter(tags=["chat"])


chat_admission_responses: dict[int | str, dict[str, Any]] = {
    200: {
        "description": "Chat completion can be started",
        "model": AdmissionResponse,
    },
    429: {
        "description": "Rate or token limit has been reached",
        "model": LimitExceededResponse,
    },
}

chat_usage_responses: dict[int | str, dict[str, Any]] = {
    200: {
        "description": "Tokens have been committed",
        "model": UsageCommitResponse,
    },
}


def estimated_tokens(admission_request: ChatAdmissionRequest) -> int:
    """Return tokens sent by the client or estimated from the request text."""
    if admission_request.estimated_tokens is not None:
        return admission_request.estimated_tokens
    return estimate_request_tokens(
        message=admission_request.message,
        messages=[message.content for message in admission_request.messages],
        history=[
            message.content for message in admission_request.conversation_history
        ],
    )


@router.post("/chat/admission", responses=chat_admission_responses)
async def chat_admission_endpoint_handler(
    admission_request: ChatAdmissionRequest,
    response: Response,
    caller: Annotated[CallerContext, Depends(get_caller)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
) -> AdmissionResponse:
    """
    Decide whether a chat completion may be started.

    The request counts against the rate limits of the caller's tier; the
    estimated tokens are checked against the per-request, session, daily
    and monthly ceilings. Nothing is committed: the client reports actual
    usage through `/chat/usage` once the completion finishes.

    Raises:
        HTTPException: 429 when a rate or token limit has been reached.
    """
    tokens = estimated_tokens(admission_request)
    logger.debug(
        "Admission of %d tokens requested by %s (tier %s)",
        tokens,
        caller.caller_id,
        caller.tier.value,
    )
    decision = gate.admit_completion(
        caller.caller_id,
        caller.session_id,
        caller.tier,
        tokens,
        caller.override_key,
    )
    denial = decision.denial
    if denial is not None:
        raise_for_denial(denial)

    rate_limit = decision.rate_limit
    if rate_limit.limit is not None:
        response.headers[constants.HEADER_RATE_LIMIT_LIMIT] = str(rate_limit.limit)
        response.headers[constants.HEADER_RATE_LIMIT_REMAINING] = str(
            rate_limit.remaining or 0
        )

    return AdmissionResponse(
        caller_id=caller.caller_id,
        session_id=caller.session_id,
        tier=caller.tier,
        estimated_tokens=tokens,
        is_override=decision.quota is not None and decision.quota.is_override,
        quota=decision.quota,
        rate_limit=rate_limit,
    )


@router.post("/chat/usage", responses=chat_usage_responses)
async def chat_usage_endpoint_handler(
    usage_request: ChatUsageRequest,
    caller: Annotated[CallerContext, Depends(get_caller)],
    gate: Annotated[AdmissionGate, Depends(get_gate)],
) -> UsageCommitResponse:
    """Commit tokens consumed by a finished chat completion."""
    gate.commit_completion(caller.caller_id, caller.session_id, usage_request.tokens_used)
    return UsageCommitResponse(
        caller_id=caller.caller_id,
        session_id=caller.session_id,
        tokens_committed=usage_request.tokens_used,
        usage=gate.quota_tracker.get_usage_stats(caller.caller_id, caller.session_id),
    )
