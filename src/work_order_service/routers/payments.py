"""Payment ledger endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from work_order_service.core.state import get_app_state
from work_order_service.routers.validation import read_form_file, read_json_body, resolve_actor
from work_order_service.services.payment_manager import PaymentManager

router = APIRouter()


def _manager() -> PaymentManager:
    state = get_app_state()
    if state.payment_manager is None:
        msg = "PaymentManager not initialized"
        raise RuntimeError(msg)
    return state.payment_manager


# ---------------------------------------------------------------------------
# POST /payments: manual adjustment (MUST be before /payments/{payment_id})
# ---------------------------------------------------------------------------


@router.post("/payments", status_code=201)
async def create_adjustment(request: Request) -> JSONResponse:
    """Record a bonus, deduction or manual payout/charge."""
    data = await read_json_body(request)
    actor = await resolve_actor(request)
    result = await _manager().create_adjustment(actor, data)
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /payments: payments visible to the caller
# ---------------------------------------------------------------------------


@router.get("/payments")
async def list_payments(request: Request) -> JSONResponse:
    """List the payments the caller may see."""
    actor = await resolve_actor(request)
    result = await _manager().list_payments(actor)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# POST /payments/{payment_id}/paid: mark sent (multipart, optional proof)
# ---------------------------------------------------------------------------


@router.post("/payments/{payment_id}/paid")
async def mark_paid(payment_id: str, request: Request) -> JSONResponse:
    """Mark a payment as paid, optionally with a proof screenshot."""
    actor = await resolve_actor(request)
    proof = None
    if request.headers.get("content-type", "").lower().startswith("multipart/form-data"):
        form = await request.form()
        proof = await read_form_file(form, "proof")
    result = await _manager().mark_paid(actor, payment_id, proof)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# POST /payments/{payment_id}/received: confirm receipt
# ---------------------------------------------------------------------------


@router.post("/payments/{payment_id}/received")
async def mark_received(payment_id: str, request: Request) -> JSONResponse:
    """Confirm that a paid payment arrived."""
    actor = await resolve_actor(request)
    result = await _manager().mark_received(actor, payment_id)
    return JSONResponse(status_code=200, content=result)
