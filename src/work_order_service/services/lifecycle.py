"""
Work item and project state machines.

Work item statuses::

    pending -> in_progress -> under_review -> completed
    pending | in_progress -> declined
    under_review -> in_progress          (correction requested)
    pending | in_progress -> under_review (work submitted)
    declined -> pending                  (reassigned)

``completed`` is reached only through dual approval and is terminal.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from work_order_service.core.exceptions import ServiceError


class ApprovalState(StrEnum):
    """Single tagged view over the admin/client approval flags."""

    AWAITING_BOTH = "awaiting_both"
    AWAITING_ADMIN = "awaiting_admin"
    AWAITING_CLIENT = "awaiting_client"
    APPROVED = "approved"


WORK_ITEM_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"in_progress", "under_review", "declined", "completed"}),
    "in_progress": frozenset({"under_review", "declined", "completed"}),
    "under_review": frozenset({"in_progress", "under_review", "completed"}),
    "submitted": frozenset({"in_progress", "under_review", "completed"}),
    "declined": frozenset({"pending"}),
    "completed": frozenset(),
}


def approval_state(row: dict[str, Any]) -> ApprovalState:
    """
    Collapse the approval flags of a work item or project into one state.

    Work items carry an authoritative ``approved`` signal; two flags left
    over without it still count as awaiting approval. Projects are
    approved when both flags are set.
    """
    if "approved" in row:
        if row["approved"]:
            return ApprovalState.APPROVED
    elif row["approval_admin"] and row["approval_client"]:
        return ApprovalState.APPROVED

    if row["approval_admin"] and not row["approval_client"]:
        return ApprovalState.AWAITING_CLIENT
    if row["approval_client"] and not row["approval_admin"]:
        return ApprovalState.AWAITING_ADMIN
    return ApprovalState.AWAITING_BOTH


def require_work_item_transition(work_item: dict[str, Any], target: str) -> None:
    """Raise INVALID_STATUS if the work item may not move to ``target``."""
    current = work_item["status"]
    if work_item["approved"] or target not in WORK_ITEM_TRANSITIONS.get(current, frozenset()):
        raise ServiceError(
            "INVALID_STATUS",
            f"Cannot move work item from '{current}' to '{target}'",
            409,
            {"status": current, "target": target},
        )
