"""Project lifecycle: creation, acceptance, approval and closure."""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from work_order_service.core.exceptions import ServiceError
from work_order_service.logging import get_logger
from work_order_service.services.capabilities import PROJECT_APPROVE, PROJECT_CREATE, PROJECT_READ
from work_order_service.services.inputs import (
    optional_text,
    parse_amount,
    parse_deadline,
    parse_links,
    parse_percentage,
    require_text,
)
from work_order_service.services.timestamps import to_iso, utc_now
from work_order_service.services.views import project_view

if TYPE_CHECKING:
    from work_order_service.services.capabilities import ActorContext
    from work_order_service.services.ledger_manager import LedgerManager
    from work_order_service.services.notification_dispatcher import NotificationDispatcher
    from work_order_service.services.work_order_store import WorkOrderStore

_CURRENCIES = frozenset({"INR", "USD", "EUR"})
_PRIORITIES = frozenset({"low", "medium", "high"})
_WARNING_RESET = {"warn_50": False, "warn_25": False, "warn_5": False, "warn_crossed": False}
_MAX_CAS_ATTEMPTS = 3


class WorkOrderManager:
    """
    Owns the project-level state machine.

    Accepting a project splits its budget into work items and opens a
    locked payout for each. Closing a project settles the client charge.
    Notifications go out after the state change is stored.
    """

    def __init__(
        self,
        store: WorkOrderStore,
        ledger: LedgerManager,
        dispatcher: NotificationDispatcher,
        delete_after_days: int,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._delete_after = timedelta(days=delete_after_days)
        self._logger = get_logger(__name__)

    def _get_project_or_404(self, project_id: str) -> dict[str, Any]:
        project = self._store.get_project(project_id)
        if project is None:
            raise ServiceError("PROJECT_NOT_FOUND", "Project not found", 404, {})
        return project

    def _reload(self, project_id: str) -> dict[str, Any]:
        return self._get_project_or_404(project_id)

    async def create_project(self, actor: ActorContext, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Create a project for a client.

        A client creates projects for itself; a producer admin must name
        the client with ``client_id``.
        """
        actor.require(PROJECT_CREATE)

        title = require_text(payload, "title")
        description = optional_text(payload, "description")
        deadline = None
        if payload.get("deadline") is not None:
            _, deadline = parse_deadline(payload["deadline"])
        currency = payload.get("currency", "INR")
        if currency not in _CURRENCIES:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Field 'currency' must be one of {sorted(_CURRENCIES)}",
                400,
                {"field": "currency"},
            )
        client_amount = parse_amount(payload.get("client_amount", 0), "client_amount", allow_zero=True)

        if actor.is_producer_admin:
            client_id = require_text(payload, "client_id")
        else:
            client_id = actor.user_id

        now = to_iso(utc_now())
        project = {
            "project_id": f"prj-{uuid.uuid4()}",
            "client_id": client_id,
            "title": title,
            "description": description,
            "status": "pending",
            "deadline": deadline,
            "currency": currency,
            "amount": 0.0,
            "client_amount": client_amount,
            "created_at": now,
            "updated_at": now,
        }
        self._store.insert_project(project)
        self._logger.info(
            "Project created",
            extra={"project_id": project["project_id"], "client_id": client_id},
        )
        self._dispatcher.notify_admins(
            "project_created",
            "New Project",
            f"New project '{title}' is waiting for acceptance",
            project["project_id"],
        )
        return project_view(self._reload(project["project_id"]), [])

    async def get_project(self, actor: ActorContext, project_id: str) -> dict[str, Any]:
        """Return a project with its work items to anyone involved in it."""
        actor.require(PROJECT_READ)
        project = self._get_project_or_404(project_id)
        work_items = self._store.list_work_items(project_id)

        involved = (
            actor.is_producer_admin
            or project["client_id"] == actor.user_id
            or any(item["assignee_id"] == actor.user_id for item in work_items)
        )
        if not involved:
            raise ServiceError("FORBIDDEN", "Not a party to this project", 403, {})
        return project_view(project, work_items)

    async def update_project(
        self,
        actor: ActorContext,
        project_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Edit project details.

        A new deadline opens a new escalation window, so the warning
        flags start over.
        """
        actor.require_producer_admin()
        project = self._get_project_or_404(project_id)
        if project["closed"]:
            raise ServiceError("INVALID_STATUS", "Closed projects cannot be edited", 409, {})

        updates: dict[str, Any] = {}
        if "title" in payload:
            updates["title"] = require_text(payload, "title")
        if "description" in payload:
            updates["description"] = optional_text(payload, "description")
        if "client_amount" in payload:
            updates["client_amount"] = parse_amount(payload["client_amount"], "client_amount", allow_zero=True)
        if "deadline" in payload:
            _, deadline = parse_deadline(payload["deadline"])
            if deadline != project["deadline"]:
                updates["deadline"] = deadline
                updates.update(_WARNING_RESET)

        if updates:
            updates["updated_at"] = to_iso(utc_now())
            self._store.update_project(project_id, updates)
        return project_view(self._reload(project_id), self._store.list_work_items(project_id))

    async def accept_project(
        self,
        actor: ActorContext,
        project_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Accept a project and split its budget into assigned work items.

        Error precedence:
        - FORBIDDEN (403): actor is not the producer admin
        - INVALID_AMOUNT / INVALID_PERCENTAGE / INVALID_DEADLINE / INVALID_PAYLOAD (400)
        - PROJECT_NOT_FOUND (404)
        - PROJECT_ALREADY_ACCEPTED (409): acceptance already applied, including a
          concurrent acceptance that won the compare-and-swap
        """
        actor.require_producer_admin()

        total_amount = parse_amount(payload.get("total_amount"), "total_amount", allow_zero=False)
        raw_items = payload.get("work_items")
        if not isinstance(raw_items, list):
            raise ServiceError(
                "INVALID_PAYLOAD",
                "Field 'work_items' must be a list",
                400,
                {"field": "work_items"},
            )
        item_specs = [self._parse_item_spec(raw) for raw in raw_items]
        total_percentage = sum(spec["percentage"] for spec in item_specs)
        if total_percentage > 100:
            raise ServiceError(
                "INVALID_PERCENTAGE",
                "Work item percentages must not add up to more than 100",
                400,
                {"total_percentage": total_percentage},
            )

        project = self._get_project_or_404(project_id)
        if project["accepted"]:
            raise ServiceError("PROJECT_ALREADY_ACCEPTED", "Project already accepted", 409, {})

        now = to_iso(utc_now())
        client_amount = project["client_amount"] if project["client_amount"] else total_amount

        with self._store.transaction():
            won = self._store.update_project(
                project_id,
                {
                    "accepted": True,
                    "accepted_at": now,
                    "amount": total_amount,
                    "client_amount": client_amount,
                    "status": "assigned",
                    "updated_at": now,
                },
                expected={"accepted": False},
            )
            if won == 0:
                raise ServiceError("PROJECT_ALREADY_ACCEPTED", "Project already accepted", 409, {})

            accepted = self._reload(project_id)
            self._store.delete_placeholder_payouts(project_id)

            for spec in item_specs:
                work_item = {
                    "work_item_id": f"wi-{uuid.uuid4()}",
                    "project_id": project_id,
                    "work_type": spec["work_type"],
                    "assignee_id": spec["assignee_id"],
                    "deadline": spec["deadline"],
                    "percentage": spec["percentage"],
                    "amount": total_amount * spec["percentage"] / 100,
                    "status": "pending",
                    "share_details": spec["share_details"],
                    "priority": spec["priority"],
                    "links": spec["links"],
                    "created_at": now,
                    "updated_at": now,
                }
                self._store.insert_work_item(work_item)
                self._ledger.upsert_payout(work_item, accepted)

        work_items = self._store.list_work_items(project_id)
        self._logger.info(
            "Project accepted",
            extra={
                "project_id": project_id,
                "total_amount": total_amount,
                "work_items": len(work_items),
            },
        )

        self._dispatcher.notify_many(
            (item["assignee_id"] for item in work_items),
            "project_accepted",
            "Project Assigned",
            f"You have been assigned work on '{accepted['title']}'",
            project_id,
        )
        self._dispatcher.notify(
            accepted["client_id"],
            "project_accepted",
            "Project Accepted",
            f"Your project '{accepted['title']}' has been accepted",
            project_id,
        )
        return project_view(accepted, work_items)

    def _parse_item_spec(self, raw: object) -> dict[str, Any]:
        if not isinstance(raw, dict):
            raise ServiceError(
                "INVALID_PAYLOAD",
                "Each work item must be an object",
                400,
                {"field": "work_items"},
            )
        priority = raw.get("priority", "medium")
        if priority not in _PRIORITIES:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Field 'priority' must be one of {sorted(_PRIORITIES)}",
                400,
                {"field": "priority"},
            )
        _, deadline = parse_deadline(raw.get("deadline"))
        return {
            "work_type": require_text(raw, "work_type"),
            "assignee_id": require_text(raw, "assignee_id"),
            "deadline": deadline,
            "percentage": parse_percentage(raw.get("percentage")),
            "share_details": optional_text(raw, "share_details"),
            "priority": priority,
            "links": parse_links(raw.get("links")),
        }

    async def set_project_approval(self, actor: ActorContext, project_id: str) -> dict[str, Any]:
        """
        Set the caller's approval flag on a project.

        The producer admin sets the admin flag and the owning client sets
        the client flag. Repeating a flag changes nothing. The project
        completes on the call that sets the second flag.
        """
        project = self._get_project_or_404(project_id)
        side = self._approval_side(actor, project)

        completed_now = False
        for _ in range(_MAX_CAS_ATTEMPTS):
            if project[f"approval_{side}"] or project["closed"]:
                return project_view(project, self._store.list_work_items(project_id))

            other = "client" if side == "admin" else "admin"
            now = to_iso(utc_now())
            updates: dict[str, Any] = {
                f"approval_{side}": True,
                f"{side}_approved_at": now,
                "updated_at": now,
            }
            completed_now = bool(project[f"approval_{other}"])
            if completed_now:
                updates["status"] = "completed"
                updates["completed_at"] = now

            if self._store.update_project(project_id, updates, expected={"version": project["version"]}) == 1:
                break
            project = self._reload(project_id)
        else:
            raise ServiceError(
                "CONCURRENT_UPDATE",
                "Project changed concurrently; retry the approval",
                409,
                {},
            )

        project = self._reload(project_id)
        work_items = self._store.list_work_items(project_id)
        self._logger.info(
            "Project approval recorded",
            extra={"project_id": project_id, "side": side, "completed": completed_now},
        )
        if completed_now:
            self._dispatcher.notify_admins(
                "project_completed",
                "Project Completed",
                f"Project '{project['title']}' has both approvals",
                project_id,
            )
            self._dispatcher.notify_many(
                (item["assignee_id"] for item in work_items),
                "work_approved",
                "Project Approved",
                f"Project '{project['title']}' has been approved",
                project_id,
            )
        return project_view(project, work_items)

    def _approval_side(self, actor: ActorContext, project: dict[str, Any]) -> str:
        if actor.is_producer_admin:
            return "admin"
        if actor.has(PROJECT_APPROVE) and project["client_id"] == actor.user_id:
            return "client"
        raise ServiceError("FORBIDDEN", "Only the producer admin or the client may approve", 403, {})

    async def close_project(self, actor: ActorContext, project_id: str) -> dict[str, Any]:
        """
        Close a project whose work items are all approved.

        Error precedence:
        - FORBIDDEN (403): actor is not the producer admin
        - PROJECT_NOT_FOUND (404)
        - INVALID_STATUS (409): project already closed
        - UNAPPROVED_WORK_ITEMS (409): some work item lacks dual approval

        Closing marks both approvals, stages the soft delete and leaves a
        single client charge on the ledger.
        """
        actor.require_producer_admin()
        project = self._get_project_or_404(project_id)
        if project["closed"]:
            raise ServiceError("INVALID_STATUS", "Project is already closed", 409, {})

        work_items = self._store.list_work_items(project_id)
        unapproved = [item["work_item_id"] for item in work_items if not item["approved"]]
        if unapproved:
            raise ServiceError(
                "UNAPPROVED_WORK_ITEMS",
                "All work items must have both approvals before closing",
                409,
                {"work_item_ids": unapproved},
            )

        closed_at = utc_now()
        stamped = to_iso(closed_at)
        with self._store.transaction():
            won = self._store.update_project(
                project_id,
                {
                    "approval_admin": True,
                    "approval_client": True,
                    "admin_approved_at": project["admin_approved_at"] or stamped,
                    "client_approved_at": project["client_approved_at"] or stamped,
                    "completed_at": project["completed_at"] or stamped,
                    "status": "closed",
                    "closed": True,
                    "closed_at": stamped,
                    "hidden_at": stamped,
                    "deleted_at": to_iso(closed_at + self._delete_after),
                    "updated_at": stamped,
                },
                expected={"closed": False},
            )
            if won == 0:
                raise ServiceError("INVALID_STATUS", "Project is already closed", 409, {})
            closed = self._reload(project_id)
            charge = self._ledger.settle_project_closure(closed, closed_at)

        self._logger.info(
            "Project closed",
            extra={
                "project_id": project_id,
                "client_charge_id": charge["payment_id"] if charge is not None else None,
            },
        )
        self._dispatcher.notify(
            closed["client_id"],
            "project_closed",
            "Project Closed",
            f"Project '{closed['title']}' has been closed",
            project_id,
        )
        self._dispatcher.notify_many(
            (item["assignee_id"] for item in work_items),
            "project_closed",
            "Project Closed",
            f"Project '{closed['title']}' has been closed",
            project_id,
        )
        return project_view(closed, work_items)
