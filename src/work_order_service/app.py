"""FastAPI application factory."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from work_order_service.config import get_settings
from work_order_service.core.exceptions import register_exception_handlers
from work_order_service.core.lifespan import lifespan
from work_order_service.core.middleware import RequestValidationMiddleware
from work_order_service.routers import health, payments, projects, submissions, work_items
from work_order_service.schemas import ErrorResponse

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    status: {"model": ErrorResponse} for status in (400, 401, 403, 404, 409, 413, 502)
}


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI instance with all routers registered.
    """
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.service.name} Service",
        version=settings.service.version,
        lifespan=lifespan,
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["Operations"])
    app.include_router(projects.router, tags=["Projects"], responses=_ERROR_RESPONSES)
    app.include_router(work_items.router, tags=["Work Items"], responses=_ERROR_RESPONSES)
    app.include_router(submissions.router, tags=["Submissions"], responses=_ERROR_RESPONSES)
    app.include_router(payments.router, tags=["Payments"], responses=_ERROR_RESPONSES)

    app.add_middleware(
        RequestValidationMiddleware,
        max_body_size=settings.request.max_body_size,
    )

    return app
