"""
Named predicates deciding which payment rows a viewer may see.

Each predicate covers one concern and takes a payment row as produced by
``WorkOrderStore.list_worker_payment_candidates`` (with a ``work_item``
summary, or None when the row is not linked to a work item). The
``*_can_see`` functions compose them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from work_order_service.services.timestamps import parse_iso

if TYPE_CHECKING:
    from datetime import datetime, timedelta

WORKER_PAYMENT_TYPES: frozenset[str] = frozenset({"editor_payout", "bonus", "deduction"})


def is_current_owner(payment: dict[str, Any], viewer_id: str) -> bool:
    """
    Whether the viewer currently owns the payment.

    A work-item-linked payout belongs to that item's current assignee,
    whoever the stored payee is. Everything else belongs to its payee.
    """
    work_item = payment.get("work_item")
    if payment["payment_type"] == "editor_payout" and work_item is not None:
        return bool(work_item["assignee_id"] == viewer_id)
    return bool(payment["payee_id"] == viewer_id)


def within_visibility_window(payment: dict[str, Any], now: datetime, hide_after: timedelta) -> bool:
    """Unhidden rows, or rows hidden less than ``hide_after`` ago."""
    hidden_at = payment.get("hidden_at")
    if hidden_at is None:
        return True
    return parse_iso(hidden_at) > now - hide_after


def is_not_purged(payment: dict[str, Any], now: datetime) -> bool:
    """Rows whose hard-delete horizon has not passed yet."""
    deleted_at = payment.get("deleted_at")
    return deleted_at is None or parse_iso(deleted_at) > now


def is_payable(payment: dict[str, Any]) -> bool:
    """Locked payouts are not payable yet."""
    return bool(payment["status"] != "locked")


def is_approval_complete(payment: dict[str, Any]) -> bool:
    """
    Whether the linked work item has been approved.

    Unlinked rows come from direct assignment without an approval
    requirement and always pass.
    """
    work_item = payment.get("work_item")
    if work_item is None:
        return True
    return bool(work_item["approved"])


def worker_can_see(
    payment: dict[str, Any],
    viewer_id: str,
    now: datetime,
    hide_after: timedelta,
) -> bool:
    if payment["payment_type"] not in WORKER_PAYMENT_TYPES:
        return False
    if not (is_current_owner(payment, viewer_id) and is_not_purged(payment, now)):
        return False
    if not within_visibility_window(payment, now, hide_after):
        return False
    if payment["payment_type"] == "editor_payout":
        return is_payable(payment) and is_approval_complete(payment)
    return True


def client_can_see(
    payment: dict[str, Any],
    viewer_id: str,
    now: datetime,
    hide_after: timedelta,
) -> bool:
    return (
        payment["payment_type"] == "client_charge"
        and payment["client_id"] == viewer_id
        and is_not_purged(payment, now)
        and within_visibility_window(payment, now, hide_after)
    )
