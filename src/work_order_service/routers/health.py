"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from work_order_service.core.state import get_app_state
from work_order_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return statistics."""
    state = get_app_state()
    projects_by_status: dict[str, int] = {}
    if state.store is not None:
        projects_by_status = state.store.count_projects_by_status()
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_projects=sum(projects_by_status.values()),
        projects_by_status=projects_by_status,
        scheduler_running=state.scheduler_running,
    )
