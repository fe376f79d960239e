"""REST API routers."""

from fastapi import FastAPI

from app.endpoints import (
    admin,
    chat,
    health,
    info,
    metrics,
    ocr,
    root,
    usage,
)


def include_routers(app: FastAPI) -> None:
    """Include FastAPI routers for different endpoints.

    Args:
        app: The `FastAPI` app instance.
    """
    app.include_router(root.router)

    app.include_router(info.router, prefix="/v1")
    app.include_router(chat.router, prefix="/v1")
    app.include_router(usage.router, prefix="/v1")
    app.include_router(ocr.router, prefix="/v1")
    app.include_router(admin.router, prefix="/v1")

    # probes and metrics are not versioned
    app.include_router(health.router)
    app.include_router(metrics.router)
