"""Work item lifecycle: assignment, submissions, corrections and dual approval."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from work_order_service.core.exceptions import ServiceError
from work_order_service.logging import get_logger
from work_order_service.services.capabilities import PROJECT_APPROVE, PROJECT_READ
from work_order_service.services.inputs import (
    optional_text,
    parse_amount,
    parse_deadline,
    parse_links,
    require_text,
)
from work_order_service.services.lifecycle import require_work_item_transition
from work_order_service.services.timestamps import parse_iso, to_iso, utc_now
from work_order_service.services.views import submission_view, work_item_view

if TYPE_CHECKING:
    from work_order_service.clients.upload_client import UploadClient
    from work_order_service.services.capabilities import ActorContext
    from work_order_service.services.inputs import IncomingFile
    from work_order_service.services.ledger_manager import LedgerManager
    from work_order_service.services.notification_dispatcher import NotificationDispatcher
    from work_order_service.services.work_order_store import WorkOrderStore

DECLINE_MIN_REMAINING_RATIO = 0.8
_PRIORITIES = frozenset({"low", "medium", "high"})
_WARNING_RESET = {"warn_50": False, "warn_25": False, "warn_5": False, "warn_crossed": False}
_SETTLED_PROJECT_STATUSES = frozenset({"completed", "closed", "rejected"})
_MAX_CAS_ATTEMPTS = 3


class WorkItemManager:
    """
    Owns the per-work-item state machine.

    Approval is two-phase: the producer admin and the client each set
    their own flag, and the item completes on the call that sets the
    second one. That call, and only that call, settles the payout.
    """

    def __init__(
        self,
        store: WorkOrderStore,
        ledger: LedgerManager,
        dispatcher: NotificationDispatcher,
        upload_client: UploadClient,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._upload_client = upload_client
        self._logger = get_logger(__name__)

    def set_upload_client(self, upload_client: UploadClient) -> None:
        self._upload_client = upload_client

    # ------------------------------------------------------------------
    # Loading and authorization helpers
    # ------------------------------------------------------------------

    def _load(self, work_item_id: str) -> tuple[dict[str, Any], dict[str, Any]]:
        work_item = self._store.get_work_item(work_item_id)
        if work_item is None:
            raise ServiceError("WORK_ITEM_NOT_FOUND", "Work item not found", 404, {})
        project = self._store.get_project(work_item["project_id"])
        if project is None:
            raise ServiceError("PROJECT_NOT_FOUND", "Project not found", 404, {})
        return work_item, project

    def _reload_item(self, work_item_id: str) -> dict[str, Any]:
        work_item = self._store.get_work_item(work_item_id)
        if work_item is None:
            raise ServiceError("WORK_ITEM_NOT_FOUND", "Work item not found", 404, {})
        return work_item

    def _load_submission(self, submission_id: str) -> dict[str, Any]:
        submission = self._store.get_submission(submission_id)
        if submission is None:
            raise ServiceError("SUBMISSION_NOT_FOUND", "Submission not found", 404, {})
        return submission

    @staticmethod
    def _is_client(actor: ActorContext, project: dict[str, Any]) -> bool:
        return actor.has(PROJECT_APPROVE) and project["client_id"] == actor.user_id

    @staticmethod
    def _require_assignee(actor: ActorContext, work_item: dict[str, Any], action: str) -> None:
        if work_item["assignee_id"] != actor.user_id:
            raise ServiceError("FORBIDDEN", f"Only the assigned worker can {action}", 403, {})

    def _submission_response(self, submission_id: str) -> dict[str, Any]:
        submission = self._load_submission(submission_id)
        return submission_view(submission, self._store.list_corrections(submission_id))

    # ------------------------------------------------------------------
    # Reads and edits
    # ------------------------------------------------------------------

    async def get_work_item(self, actor: ActorContext, work_item_id: str) -> dict[str, Any]:
        """Return a work item with its submissions to the parties involved."""
        actor.require(PROJECT_READ)
        work_item, project = self._load(work_item_id)
        if not (
            actor.is_producer_admin
            or work_item["assignee_id"] == actor.user_id
            or project["client_id"] == actor.user_id
        ):
            raise ServiceError("FORBIDDEN", "Not a party to this work item", 403, {})

        view = work_item_view(work_item)
        view["submissions"] = [
            submission_view(submission, self._store.list_corrections(submission["submission_id"]))
            for submission in self._store.list_submissions(work_item_id)
        ]
        return view

    async def update_work_item(
        self,
        actor: ActorContext,
        work_item_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Edit a work item.

        A changed amount or deadline renegotiates the payout, and a
        changed deadline starts the warning flags over.
        """
        actor.require_producer_admin()
        work_item, project = self._load(work_item_id)
        if work_item["approved"]:
            raise ServiceError("INVALID_STATUS", "Approved work items cannot be edited", 409, {})

        updates: dict[str, Any] = {}
        if "work_type" in payload:
            updates["work_type"] = require_text(payload, "work_type")
        if "amount" in payload:
            amount = parse_amount(payload["amount"], "amount", allow_zero=True)
            if amount != work_item["amount"]:
                updates["amount"] = amount
        if "deadline" in payload:
            _, deadline = parse_deadline(payload["deadline"])
            if deadline != work_item["deadline"]:
                updates["deadline"] = deadline
                updates.update(_WARNING_RESET)
        if "priority" in payload:
            if payload["priority"] not in _PRIORITIES:
                raise ServiceError(
                    "INVALID_PAYLOAD",
                    f"Field 'priority' must be one of {sorted(_PRIORITIES)}",
                    400,
                    {"field": "priority"},
                )
            updates["priority"] = payload["priority"]
        details_changed = False
        if "share_details" in payload:
            share_details = optional_text(payload, "share_details")
            details_changed = share_details != work_item["share_details"]
            updates["share_details"] = share_details
        if "links" in payload:
            links = parse_links(payload["links"])
            details_changed = details_changed or links != work_item["links"]
            updates["links"] = links

        if not updates:
            return work_item_view(work_item)

        updates["updated_at"] = to_iso(utc_now())
        with self._store.transaction():
            won = self._store.update_work_item(
                work_item_id, updates, expected={"version": work_item["version"]}
            )
            if won == 0:
                raise ServiceError(
                    "CONCURRENT_UPDATE", "Work item changed concurrently; retry the edit", 409, {}
                )
            updated = self._reload_item(work_item_id)
            if "amount" in updates or "deadline" in updates:
                self._ledger.upsert_payout(updated, project)

        if details_changed:
            self._dispatcher.notify(
                updated["assignee_id"],
                "assignment_details_updated",
                "Assignment Details Updated",
                f"Details for your {updated['work_type']} work have been updated",
                updated["project_id"],
            )
        return work_item_view(updated)

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    async def assign_worker(
        self,
        actor: ActorContext,
        work_item_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Hand a work item to another worker.

        Both approvals are cleared and the payout follows the new
        assignee, back in ``locked`` with no penalty. A declined item
        returns to ``pending``.
        """
        actor.require_producer_admin()
        new_assignee_id = require_text(payload, "assignee_id")
        work_item, _project = self._load(work_item_id)

        if work_item["approved"]:
            raise ServiceError("INVALID_STATUS", "Approved work items cannot be reassigned", 409, {})
        if work_item["assignee_id"] == new_assignee_id:
            return work_item_view(work_item)

        previous_assignee_id = work_item["assignee_id"]
        updates = {
            "assignee_id": new_assignee_id,
            "approval_admin": False,
            "approval_client": False,
            "approved": False,
            "approved_by": None,
            "approved_at": None,
            "status": "pending" if work_item["status"] == "declined" else work_item["status"],
            "updated_at": to_iso(utc_now()),
        }
        with self._store.transaction():
            won = self._store.update_work_item(
                work_item_id, updates, expected={"version": work_item["version"]}
            )
            if won == 0:
                raise ServiceError(
                    "CONCURRENT_UPDATE", "Work item changed concurrently; retry the assignment", 409, {}
                )
            updated = self._reload_item(work_item_id)
            self._ledger.sync_payee_on_reassignment(updated, new_assignee_id)

        self._logger.info(
            "Work item reassigned",
            extra={
                "work_item_id": work_item_id,
                "previous_assignee_id": previous_assignee_id,
                "assignee_id": new_assignee_id,
            },
        )
        self._dispatcher.notify(
            new_assignee_id,
            "work_assigned",
            "Work Assigned",
            f"You have been assigned {updated['work_type']} work",
            updated["project_id"],
        )
        self._dispatcher.notify(
            previous_assignee_id,
            "work_unassigned",
            "Work Reassigned",
            f"Your {updated['work_type']} work has been reassigned",
            updated["project_id"],
        )
        return work_item_view(updated)

    async def start_work(self, actor: ActorContext, work_item_id: str) -> dict[str, Any]:
        """Move a pending work item to ``in_progress`` for its assignee."""
        work_item, project = self._load(work_item_id)
        self._require_assignee(actor, work_item, "start this work")
        if work_item["status"] != "pending":
            raise ServiceError(
                "INVALID_STATUS",
                f"Cannot start work item in status '{work_item['status']}'",
                409,
                {"status": work_item["status"]},
            )

        now = to_iso(utc_now())
        won = self._store.update_work_item(
            work_item_id,
            {"status": "in_progress", "started_at": now, "updated_at": now},
            expected={"status": "pending"},
        )
        if won == 0:
            raise ServiceError("INVALID_STATUS", "Work item status changed concurrently", 409, {})
        self._store.update_project(
            project["project_id"],
            {"status": "in_progress", "updated_at": now},
            expected={"status": "assigned"},
        )
        return work_item_view(self._reload_item(work_item_id))

    async def decline_work(self, actor: ActorContext, work_item_id: str) -> dict[str, Any]:
        """
        Let the assignee turn a work item down early in its window.

        Declining requires at least 80% of the window, measured from the
        item's creation to its deadline, to remain. It is never allowed
        past the deadline.
        """
        work_item, project = self._load(work_item_id)
        self._require_assignee(actor, work_item, "decline this work")
        if work_item["status"] not in ("pending", "in_progress"):
            raise ServiceError(
                "INVALID_STATUS",
                f"Cannot decline work item in status '{work_item['status']}'",
                409,
                {"status": work_item["status"]},
            )

        now = utc_now()
        if work_item["deadline"] is not None:
            deadline = parse_iso(work_item["deadline"])
            if now > deadline:
                raise ServiceError(
                    "DECLINE_WINDOW_CLOSED", "Cannot decline after the deadline has passed", 409, {}
                )
            total_window = (deadline - parse_iso(work_item["created_at"])).total_seconds()
            if total_window > 0:
                remaining_ratio = (deadline - now).total_seconds() / total_window
                if remaining_ratio < DECLINE_MIN_REMAINING_RATIO:
                    raise ServiceError(
                        "DECLINE_WINDOW_CLOSED",
                        "Work can only be declined while at least 80% of its time remains",
                        409,
                        {"remaining_ratio": round(remaining_ratio, 4)},
                    )

        won = self._store.update_work_item(
            work_item_id,
            {"status": "declined", "updated_at": to_iso(now)},
            expected={"status": work_item["status"], "approved": False},
        )
        if won == 0:
            raise ServiceError("INVALID_STATUS", "Work item status changed concurrently", 409, {})

        self._logger.info(
            "Work item declined",
            extra={"work_item_id": work_item_id, "assignee_id": actor.user_id},
        )
        self._dispatcher.notify_admins(
            "work_declined",
            "Work Declined",
            f"{work_item['work_type']} work on '{project['title']}' was declined",
            project["project_id"],
        )
        return work_item_view(self._reload_item(work_item_id))

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    async def set_approval(self, actor: ActorContext, work_item_id: str) -> dict[str, Any]:
        """
        Set the caller's approval flag on a work item.

        Error precedence:
        - WORK_ITEM_NOT_FOUND (404)
        - FORBIDDEN (403): caller is neither the producer admin nor the client
        - INVALID_STATUS (409): the item was declined
        - CONCURRENT_UPDATE (409): lost the version race three times

        Setting a flag that is already set, or approving an approved
        item, returns the item unchanged.
        """
        work_item, project = self._load(work_item_id)
        if actor.is_producer_admin:
            side = "admin"
        elif self._is_client(actor, project):
            side = "client"
        else:
            raise ServiceError("FORBIDDEN", "Only the producer admin or the client may approve", 403, {})

        if work_item["status"] == "declined":
            raise ServiceError("INVALID_STATUS", "Declined work items cannot be approved", 409, {})

        other = "client" if side == "admin" else "admin"
        completed_now = False
        for _ in range(_MAX_CAS_ATTEMPTS):
            if work_item["approved"] or work_item[f"approval_{side}"]:
                return work_item_view(work_item)

            approved_at = utc_now()
            stamped = to_iso(approved_at)
            updates: dict[str, Any] = {f"approval_{side}": True, "updated_at": stamped}
            completed_now = bool(work_item[f"approval_{other}"])
            if completed_now:
                require_work_item_transition(work_item, "completed")
                updates.update(
                    {
                        "approved": True,
                        "status": "completed",
                        "approved_by": actor.user_id,
                        "approved_at": stamped,
                    }
                )

            with self._store.transaction():
                won = self._store.update_work_item(
                    work_item_id, updates, expected={"version": work_item["version"]}
                )
                if won == 1 and completed_now:
                    self._ledger.finalize_on_approval(
                        self._reload_item(work_item_id), project, approved_at
                    )
            if won == 1:
                break
            work_item = self._reload_item(work_item_id)
        else:
            raise ServiceError(
                "CONCURRENT_UPDATE", "Work item changed concurrently; retry the approval", 409, {}
            )

        updated = self._reload_item(work_item_id)
        self._logger.info(
            "Work item approval recorded",
            extra={"work_item_id": work_item_id, "side": side, "approved": completed_now},
        )
        if completed_now:
            self._share_with_next_item(updated)
            self._dispatcher.notify(
                updated["assignee_id"],
                "work_approved",
                "Work Approved",
                f"Your {updated['work_type']} work has been approved",
                updated["project_id"],
            )
        return work_item_view(updated)

    def _share_with_next_item(self, work_item: dict[str, Any]) -> None:
        """Link the approved deliverable into the next work item by deadline."""
        latest = self._store.latest_submission(work_item["work_item_id"])
        if latest is None:
            return
        url = latest["file_url"] or latest["link_url"]
        if not url:
            return

        siblings = self._store.list_work_items(work_item["project_id"])
        positions = [item["work_item_id"] for item in siblings]
        index = positions.index(work_item["work_item_id"])
        if index + 1 >= len(siblings):
            return
        next_item = siblings[index + 1]
        if any(link["url"] == url for link in next_item["links"]):
            return

        links = [*next_item["links"], {"title": f"Previous Work: {work_item['work_type']}", "url": url}]
        self._store.update_work_item(
            next_item["work_item_id"],
            {"links": links, "updated_at": to_iso(utc_now())},
        )
        self._dispatcher.notify(
            next_item["assignee_id"],
            "resource_shared",
            "New Resource Available",
            f"Approved {work_item['work_type']} work is now linked to your assignment",
            work_item["project_id"],
        )

    # ------------------------------------------------------------------
    # Submissions and corrections
    # ------------------------------------------------------------------

    async def submit_work(
        self,
        actor: ActorContext,
        work_item_id: str,
        *,
        file: IncomingFile | None,
        link_url: str | None,
        message: str,
    ) -> dict[str, Any]:
        """
        Record a new deliverable revision and put the item under review.

        Error precedence:
        - MISSING_FILE_OR_LINK (400)
        - WORK_ITEM_NOT_FOUND (404)
        - FORBIDDEN (403): caller is not the assignee
        - INVALID_STATUS (409): item is declined or approved
        - FILE_TOO_LARGE (413) / UPLOAD_SERVICE_UNAVAILABLE (502)
        """
        link = link_url.strip() if link_url else ""
        if file is None and link == "":
            raise ServiceError(
                "MISSING_FILE_OR_LINK", "A file or a link to the work is required", 400, {}
            )

        work_item, project = self._load(work_item_id)
        self._require_assignee(actor, work_item, "submit this work")
        require_work_item_transition(work_item, "under_review")

        file_url = None
        if file is not None:
            file_url = await self._upload_client.upload(
                content=file.content,
                filename=file.filename,
                content_type=file.content_type,
                folder="submissions",
                kind="work",
            )

        now = to_iso(utc_now())
        submission_id = f"sub-{uuid.uuid4()}"
        with self._store.transaction():
            revision = self._store.count_submissions(work_item_id) + 1
            self._store.insert_submission(
                {
                    "submission_id": submission_id,
                    "work_item_id": work_item_id,
                    "project_id": project["project_id"],
                    "submitter_id": actor.user_id,
                    "revision": revision,
                    "file_url": file_url,
                    "link_url": link or None,
                    "message": message,
                    "status": "submitted",
                    "created_at": now,
                }
            )
            won = self._store.update_work_item(
                work_item_id,
                {"status": "under_review", "updated_at": now},
                expected={"approved": False, "assignee_id": actor.user_id},
            )
            if won == 0:
                raise ServiceError("INVALID_STATUS", "Work item changed concurrently", 409, {})
            if project["status"] not in _SETTLED_PROJECT_STATUSES:
                self._store.update_project(project["project_id"], {"status": "submitted", "updated_at": now})

        notification_type = "work_uploaded" if revision == 1 else "work_updated"
        title = "Work Uploaded" if revision == 1 else "Work Updated"
        text = f"Version {revision} of {work_item['work_type']} work on '{project['title']}' is ready for review"
        self._dispatcher.notify(project["client_id"], notification_type, title, text, project["project_id"])
        self._dispatcher.notify_admins(notification_type, title, text, project["project_id"])
        return self._submission_response(submission_id)

    async def request_correction(
        self,
        actor: ActorContext,
        submission_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Ask for changes to a submission.

        The item goes back to ``in_progress``. Earlier corrections stay
        open until they are marked done.
        """
        text = require_text(payload, "text")
        submission = self._load_submission(submission_id)
        work_item, project = self._load(submission["work_item_id"])

        by_client = self._is_client(actor, project)
        if not (actor.is_producer_admin or by_client):
            raise ServiceError(
                "FORBIDDEN", "Only the producer admin or the client may request corrections", 403, {}
            )
        if work_item["status"] != "in_progress":
            require_work_item_transition(work_item, "in_progress")
        elif work_item["approved"]:
            raise ServiceError("INVALID_STATUS", "Approved work items cannot be corrected", 409, {})

        now = to_iso(utc_now())
        with self._store.transaction():
            self._store.insert_correction(
                {
                    "correction_id": f"cor-{uuid.uuid4()}",
                    "submission_id": submission_id,
                    "requested_by": actor.user_id,
                    "text": text,
                    "created_at": now,
                }
            )
            self._store.update_submission(
                submission_id, {"status": "needs_revision", "corrections_done": False}
            )
            won = self._store.update_work_item(
                work_item["work_item_id"],
                {"status": "in_progress", "updated_at": now},
                expected={"approved": False},
            )
            if won == 0:
                raise ServiceError("INVALID_STATUS", "Approved work items cannot be corrected", 409, {})
            if project["status"] not in _SETTLED_PROJECT_STATUSES:
                self._store.update_project(
                    project["project_id"], {"status": "under_review", "updated_at": now}
                )

        self._dispatcher.notify(
            work_item["assignee_id"],
            "correction_requested",
            "Correction Requested",
            f"Changes were requested on your {work_item['work_type']} work",
            project["project_id"],
        )
        if by_client:
            self._dispatcher.notify_admins(
                "correction_requested",
                "Client Requested Correction",
                f"The client requested changes to {work_item['work_type']} work on '{project['title']}'",
                project["project_id"],
            )
        return self._submission_response(submission_id)

    async def mark_correction_done(
        self,
        actor: ActorContext,
        submission_id: str,
        correction_id: str,
    ) -> dict[str, Any]:
        """Mark one correction as addressed; the submission records when all are."""
        submission = self._load_submission(submission_id)
        correction = self._store.get_correction(correction_id)
        if correction is None or correction["submission_id"] != submission_id:
            raise ServiceError("CORRECTION_NOT_FOUND", "Correction not found", 404, {})
        work_item, project = self._load(submission["work_item_id"])

        is_assignee = work_item["assignee_id"] == actor.user_id
        if not (is_assignee or actor.is_producer_admin or self._is_client(actor, project)):
            raise ServiceError("FORBIDDEN", "Not a party to this correction", 403, {})
        if correction["done"]:
            return self._submission_response(submission_id)

        now = to_iso(utc_now())
        with self._store.transaction():
            self._store.update_correction(
                correction_id,
                {"done": True, "done_by": actor.user_id, "done_at": now},
                expected={"done": False},
            )
            if all(item["done"] for item in self._store.list_corrections(submission_id)):
                self._store.update_submission(submission_id, {"corrections_done": True})

        text = f"A correction on {work_item['work_type']} work was marked done"
        if is_assignee:
            self._dispatcher.notify(
                project["client_id"], "correction_done", "Correction Done", text, project["project_id"]
            )
            self._dispatcher.notify_admins("correction_done", "Correction Done", text, project["project_id"])
        else:
            self._dispatcher.notify(
                work_item["assignee_id"], "correction_done", "Correction Done", text, project["project_id"]
            )
        return self._submission_response(submission_id)
