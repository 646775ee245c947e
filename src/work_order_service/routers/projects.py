"""Project lifecycle endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from work_order_service.core.state import get_app_state
from work_order_service.routers.validation import read_json_body, resolve_actor
from work_order_service.services.work_order_manager import WorkOrderManager

router = APIRouter()


def _manager() -> WorkOrderManager:
    state = get_app_state()
    if state.work_order_manager is None:
        msg = "WorkOrderManager not initialized"
        raise RuntimeError(msg)
    return state.work_order_manager


# ---------------------------------------------------------------------------
# POST /projects: create project
# ---------------------------------------------------------------------------


@router.post("/projects", status_code=201)
async def create_project(request: Request) -> JSONResponse:
    """Create a project awaiting acceptance."""
    data = await read_json_body(request)
    actor = await resolve_actor(request)
    result = await _manager().create_project(actor, data)
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /projects/{project_id}: project detail with work items
# ---------------------------------------------------------------------------


@router.get("/projects/{project_id}")
async def get_project(project_id: str, request: Request) -> JSONResponse:
    """Return a project and its work items."""
    actor = await resolve_actor(request)
    result = await _manager().get_project(actor, project_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# PATCH /projects/{project_id}: edit project details
# ---------------------------------------------------------------------------


@router.patch("/projects/{project_id}")
async def update_project(project_id: str, request: Request) -> JSONResponse:
    """Edit title, description, deadline or client amount."""
    data = await read_json_body(request)
    actor = await resolve_actor(request)
    result = await _manager().update_project(actor, project_id, data)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# POST /projects/{project_id}/accept: accept and split into work items
# ---------------------------------------------------------------------------


@router.post("/projects/{project_id}/accept")
async def accept_project(project_id: str, request: Request) -> JSONResponse:
    """Accept a project and create its work items."""
    data = await read_json_body(request)
    actor = await resolve_actor(request)
    result = await _manager().accept_project(actor, project_id, data)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# POST /projects/{project_id}/approve: set caller's approval flag
# ---------------------------------------------------------------------------


@router.post("/projects/{project_id}/approve")
async def approve_project(project_id: str, request: Request) -> JSONResponse:
    """Record the admin or client approval of a project."""
    actor = await resolve_actor(request)
    result = await _manager().set_project_approval(actor, project_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# POST /projects/{project_id}/close: close and settle
# ---------------------------------------------------------------------------


@router.post("/projects/{project_id}/close")
async def close_project(project_id: str, request: Request) -> JSONResponse:
    """Close a fully approved project and settle the client charge."""
    actor = await resolve_actor(request)
    result = await _manager().close_project(actor, project_id)
    return JSONResponse(status_code=200, content=result)
