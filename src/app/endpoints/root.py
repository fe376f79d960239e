"""Handler for the / endpoint."""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from configuration import configuration

logger = logging.getLogger(__name__)
router = APIRouter(tags=["root"])

index_page = """
<html>
    <head>
        <title>{name}</title>
    </head>
    <body style='font-family: sans-serif;text-align:center;'>
        <h1>{name}</h1>
        <div>Usage quota and admission control service</div>
        <div><a href="docs">Swagger UI</a></div>
        <div><a href="redoc">ReDoc</a></div>
    </body>
</html>
"""


@router.get("/", response_class=HTMLResponse)
def root_endpoint_handler(request: Request) -> HTMLResponse:
    """Handle request to the / endpoint."""
    # Nothing interesting in the request
    _ = request
    logger.debug("Root page requested")
    return HTMLResponse(index_page.format(name=configuration.configuration.name))
