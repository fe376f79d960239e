"""Handlers for health REST API endpoints.

These endpoints are used to check if service is live and prepared to accept
requests. Note that these endpoints can be accessed using GET or HEAD HTTP
methods. For HEAD HTTP method, just the HTTP response code is used.
"""

import logging
from typing import Any

from fastapi import APIRouter, Request, Response, status

from configuration import configuration
from models.responses import LivenessResponse, ReadinessResponse

logger = logging.getLogger("app.endpoints.handlers")
router = APIRouter(tags=["health"])


get_readiness_responses: dict[int | str, dict[str, Any]] = {
    200: {
        "description": "Service is ready",
        "model": ReadinessResponse,
    },
    503: {
        "description": "Service is not ready",
        "model": ReadinessResponse,
    },
}


@router.get("/readiness", responses=get_readiness_responses)
@router.head("/readiness", responses=get_readiness_responses)
async def readiness_probe_get_method(
    request: Request,
    response: Response,
) -> ReadinessResponse:
    """
    Handle the readiness probe endpoint.

    The service is ready once configuration is loaded and the admission
    components have been created. Returns 503 otherwise.
    """
    logger.info("Response to /readiness endpoint")

    if not configuration.is_loaded():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return ReadinessResponse(ready=False, reason="Configuration is not loaded")

    if getattr(request.app.state, "gate", None) is None:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return ReadinessResponse(
            ready=False, reason="Admission components are not initialized"
        )

    return ReadinessResponse(ready=True, reason="Service is ready")


get_liveness_responses: dict[int | str, dict[str, Any]] = {
    200: {
        "description": "Service is alive",
        "model": LivenessResponse,
    },
}


@router.get("/liveness", responses=get_liveness_responses)
@router.head("/liveness", responses=get_liveness_responses)
async def liveness_probe_get_method() -> LivenessResponse:
    """
    Return the liveness status of the service.

    Returns:
        LivenessResponse: Indicates that the service is alive.
    """
    logger.info("Response to /liveness endpoint")

    return LivenessResponse(alive=True)
