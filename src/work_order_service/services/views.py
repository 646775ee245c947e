"""Response shaping for projects, work items, submissions and payments."""

from __future__ import annotations

from typing import Any

from work_order_service.services.lifecycle import approval_state


def project_view(row: dict[str, Any], work_items: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    view = {
        "project_id": row["project_id"],
        "client_id": row["client_id"],
        "title": row["title"],
        "description": row["description"],
        "status": row["status"],
        "deadline": row["deadline"],
        "currency": row["currency"],
        "amount": row["amount"],
        "client_amount": row["client_amount"],
        "accepted": row["accepted"],
        "accepted_at": row["accepted_at"],
        "approvals": {"admin": row["approval_admin"], "client": row["approval_client"]},
        "approval_state": approval_state(row).value,
        "admin_approved_at": row["admin_approved_at"],
        "client_approved_at": row["client_approved_at"],
        "completed_at": row["completed_at"],
        "closed": row["closed"],
        "closed_at": row["closed_at"],
        "hidden_at": row["hidden_at"],
        "deleted_at": row["deleted_at"],
        "warnings": _warnings(row),
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }
    if work_items is not None:
        view["work_items"] = [work_item_view(item) for item in work_items]
    return view


def work_item_view(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "work_item_id": row["work_item_id"],
        "project_id": row["project_id"],
        "work_type": row["work_type"],
        "assignee_id": row["assignee_id"],
        "deadline": row["deadline"],
        "percentage": row["percentage"],
        "amount": row["amount"],
        "status": row["status"],
        "approvals": {"admin": row["approval_admin"], "client": row["approval_client"]},
        "approved": row["approved"],
        "approval_state": approval_state(row).value,
        "approved_by": row["approved_by"],
        "approved_at": row["approved_at"],
        "share_details": row["share_details"],
        "priority": row["priority"],
        "links": row["links"],
        "started_at": row["started_at"],
        "warnings": _warnings(row),
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def submission_view(row: dict[str, Any], corrections: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "submission_id": row["submission_id"],
        "work_item_id": row["work_item_id"],
        "project_id": row["project_id"],
        "submitter_id": row["submitter_id"],
        "revision": row["revision"],
        "file_url": row["file_url"],
        "link_url": row["link_url"],
        "message": row["message"],
        "status": row["status"],
        "corrections_done": row["corrections_done"],
        "corrections": [
            {
                "correction_id": correction["correction_id"],
                "requested_by": correction["requested_by"],
                "text": correction["text"],
                "done": correction["done"],
                "done_by": correction["done_by"],
                "done_at": correction["done_at"],
                "created_at": correction["created_at"],
            }
            for correction in corrections
        ],
        "created_at": row["created_at"],
    }


def payment_view(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "payment_id": row["payment_id"],
        "payment_type": row["payment_type"],
        "project_id": row["project_id"],
        "work_item_id": row["work_item_id"],
        "payee_id": row["payee_id"],
        "client_id": row["client_id"],
        "work_type": row["work_type"],
        "currency": row["currency"],
        "original_amount": row["original_amount"],
        "final_amount": row["final_amount"],
        "deadline": row["deadline"],
        "deadline_crossed": row["deadline_crossed"],
        "days_late": row["days_late"],
        "penalty_amount": row["penalty_amount"],
        "proof_url": row["proof_url"],
        "paid": row["paid"],
        "paid_at": row["paid_at"],
        "received": row["received"],
        "received_at": row["received_at"],
        "hidden_at": row["hidden_at"],
        "deleted_at": row["deleted_at"],
        "status": row["status"],
        "calculated_at": row["calculated_at"],
        "created_at": row["created_at"],
    }


def _warnings(row: dict[str, Any]) -> dict[str, bool]:
    return {
        "warn_50": row["warn_50"],
        "warn_25": row["warn_25"],
        "warn_5": row["warn_5"],
        "warn_crossed": row["warn_crossed"],
    }
