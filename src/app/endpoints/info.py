"""Handler for REST API call to provide info."""

import logging
from typing import Any

from fastapi import APIRouter

from configuration import configuration
from models.responses import InfoResponse
from version import __version__

logger = logging.getLogger("app.endpoints.handlers")
router = APIRouter(tags=["info"])


get_info_responses: dict[int | str, dict[str, Any]] = {
    200: {
        "name": "Service name",
        "service_version": "Service version",
        "features": "Feature flags",
    },
}


@router.get("/info", responses=get_info_responses)
async def info_endpoint_handler() -> InfoResponse:
    """
    Handle request to the /info endpoint.

    Process GET requests to the /info endpoint, returning the
    service name, version and feature flags.

    Returns:
        InfoResponse: An object containing the service's name and version.
    """
    logger.info("Response to /v1/info endpoint")
    logger.debug("Service version: %s", __version__)

    return InfoResponse(
        name=configuration.configuration.name,
        service_version=__version__,
        features=configuration.features,
    )
