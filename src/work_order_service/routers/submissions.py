"""Correction endpoints on submitted work."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from work_order_service.core.state import get_app_state
from work_order_service.routers.validation import read_json_body, resolve_actor
from work_order_service.services.work_item_manager import WorkItemManager

router = APIRouter()


def _manager() -> WorkItemManager:
    state = get_app_state()
    if state.work_item_manager is None:
        msg = "WorkItemManager not initialized"
        raise RuntimeError(msg)
    return state.work_item_manager


# ---------------------------------------------------------------------------
# POST /submissions/{submission_id}/corrections: request a correction
# ---------------------------------------------------------------------------


@router.post("/submissions/{submission_id}/corrections", status_code=201)
async def request_correction(submission_id: str, request: Request) -> JSONResponse:
    """Ask for changes on a submission."""
    data = await read_json_body(request)
    actor = await resolve_actor(request)
    result = await _manager().request_correction(actor, submission_id, data)
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# POST /submissions/{submission_id}/corrections/{correction_id}/done
# ---------------------------------------------------------------------------


@router.post("/submissions/{submission_id}/corrections/{correction_id}/done")
async def mark_correction_done(submission_id: str, correction_id: str, request: Request) -> JSONResponse:
    """Mark a correction as addressed."""
    actor = await resolve_actor(request)
    result = await _manager().mark_correction_done(actor, submission_id, correction_id)
    return JSONResponse(status_code=200, content=result)
