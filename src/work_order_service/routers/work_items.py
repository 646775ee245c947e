"""Work item lifecycle endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from work_order_service.core.state import get_app_state
from work_order_service.routers.validation import (
    read_form_file,
    read_form_text,
    read_json_body,
    resolve_actor,
)
from work_order_service.services.work_item_manager import WorkItemManager

router = APIRouter()


def _manager() -> WorkItemManager:
    state = get_app_state()
    if state.work_item_manager is None:
        msg = "WorkItemManager not initialized"
        raise RuntimeError(msg)
    return state.work_item_manager


# ---------------------------------------------------------------------------
# GET /work-items/{work_item_id}: detail with submissions
# ---------------------------------------------------------------------------


@router.get("/work-items/{work_item_id}")
async def get_work_item(work_item_id: str, request: Request) -> JSONResponse:
    """Return a work item with its submissions and corrections."""
    actor = await resolve_actor(request)
    result = await _manager().get_work_item(actor, work_item_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# PATCH /work-items/{work_item_id}: edit assignment details
# ---------------------------------------------------------------------------


@router.patch("/work-items/{work_item_id}")
async def update_work_item(work_item_id: str, request: Request) -> JSONResponse:
    """Edit deadline, amount, links or share details."""
    data = await read_json_body(request)
    actor = await resolve_actor(request)
    result = await _manager().update_work_item(actor, work_item_id, data)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# POST /work-items/{work_item_id}/assign: reassign worker
# ---------------------------------------------------------------------------


@router.post("/work-items/{work_item_id}/assign")
async def assign_worker(work_item_id: str, request: Request) -> JSONResponse:
    """Reassign a work item to another worker."""
    data = await read_json_body(request)
    actor = await resolve_actor(request)
    result = await _manager().assign_worker(actor, work_item_id, data)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# POST /work-items/{work_item_id}/start and /decline: assignee actions
# ---------------------------------------------------------------------------


@router.post("/work-items/{work_item_id}/start")
async def start_work(work_item_id: str, request: Request) -> JSONResponse:
    """Start a pending work item."""
    actor = await resolve_actor(request)
    result = await _manager().start_work(actor, work_item_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/work-items/{work_item_id}/decline")
async def decline_work(work_item_id: str, request: Request) -> JSONResponse:
    """Decline a work item early in its window."""
    actor = await resolve_actor(request)
    result = await _manager().decline_work(actor, work_item_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# POST /work-items/{work_item_id}/approve: set caller's approval flag
# ---------------------------------------------------------------------------


@router.post("/work-items/{work_item_id}/approve")
async def approve_work_item(work_item_id: str, request: Request) -> JSONResponse:
    """Record the admin or client approval of a work item."""
    actor = await resolve_actor(request)
    result = await _manager().set_approval(actor, work_item_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# POST /work-items/{work_item_id}/submissions: submit work (multipart)
# ---------------------------------------------------------------------------


@router.post("/work-items/{work_item_id}/submissions", status_code=201)
async def submit_work(work_item_id: str, request: Request) -> JSONResponse:
    """Submit a file and/or link for review."""
    actor = await resolve_actor(request)
    form = await request.form()
    upload = await read_form_file(form, "file")
    link_url = read_form_text(form, "link_url")
    message = read_form_text(form, "message") or ""
    result = await _manager().submit_work(
        actor,
        work_item_id,
        file=upload,
        link_url=link_url,
        message=message.strip(),
    )
    return JSONResponse(status_code=201, content=result)
