"""FastAPI dependencies shared by endpoint handlers."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from models.responses import ForbiddenResponse
from quota.gate import AdmissionGate
from utils.caller import CallerContext, extract_caller_context


def get_gate(request: Request) -> AdmissionGate:
    """Return admission gate created when the application started."""
    gate = getattr(request.app.state, "gate", None)
    if gate is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "response": "Service is not ready",
                "cause": "Admission components are not initialized",
            },
        )
    return gate


def get_caller(
    request: Request, gate: Annotated[AdmissionGate, Depends(get_gate)]
) -> CallerContext:
    """Return identity, session and tier of the caller."""
    return extract_caller_context(request, gate.quota_tracker.is_override, gate.clock())


def require_admin(
    caller: Annotated[CallerContext, Depends(get_caller)],
) -> CallerContext:
    """Reject callers that did not send a valid admin key."""
    if not caller.claims.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=ForbiddenResponse().dump_detail(),
        )
    return caller
