"""Payment settlement actions and viewer-scoped payment listings."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from work_order_service.core.exceptions import ServiceError
from work_order_service.logging import get_logger
from work_order_service.services.capabilities import FINANCE_MANAGE_PAYMENTS, FINANCE_VIEW_OWN
from work_order_service.services.inputs import optional_text, parse_amount, require_text
from work_order_service.services.payment_visibility import client_can_see, is_not_purged, worker_can_see
from work_order_service.services.timestamps import to_iso, utc_now
from work_order_service.services.views import payment_view

if TYPE_CHECKING:
    from work_order_service.clients.upload_client import UploadClient
    from work_order_service.services.capabilities import ActorContext
    from work_order_service.services.inputs import IncomingFile
    from work_order_service.services.ledger_manager import LedgerManager
    from work_order_service.services.notification_dispatcher import NotificationDispatcher
    from work_order_service.services.work_order_store import WorkOrderStore

_ADJUSTMENT_TYPES = frozenset({"bonus", "deduction", "editor_payout", "client_charge"})


class PaymentManager:
    """
    Moves ledger entries through paid and received.

    Worker-side entries (payouts, bonuses, deductions) are paid by the
    producer admin and confirmed by their payee. Client charges are paid
    by the client, with proof, and confirmed by the producer admin.
    Confirming receipt stages the entry for soft deletion.
    """

    def __init__(
        self,
        store: WorkOrderStore,
        ledger: LedgerManager,
        dispatcher: NotificationDispatcher,
        upload_client: UploadClient,
        hide_after_days: int,
        delete_after_days: int,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._dispatcher = dispatcher
        self._upload_client = upload_client
        self._hide_after = timedelta(days=hide_after_days)
        self._delete_after = timedelta(days=delete_after_days)
        self._logger = get_logger(__name__)

    def set_upload_client(self, upload_client: UploadClient) -> None:
        self._upload_client = upload_client

    def _get_payment_or_404(self, payment_id: str) -> dict[str, Any]:
        payment = self._store.get_payment(payment_id)
        if payment is None:
            raise ServiceError("PAYMENT_NOT_FOUND", "Payment not found", 404, {})
        return payment

    def _current_payee(self, payment: dict[str, Any]) -> str | None:
        """Payouts linked to a work item belong to its current assignee."""
        if payment["payment_type"] == "editor_payout" and payment["work_item_id"] is not None:
            work_item = self._store.get_work_item(payment["work_item_id"])
            if work_item is not None:
                return work_item["assignee_id"]
        return payment["payee_id"]

    async def mark_paid(
        self,
        actor: ActorContext,
        payment_id: str,
        proof: IncomingFile | None,
    ) -> dict[str, Any]:
        """
        Record that a payment was sent.

        Error precedence:
        - PAYMENT_NOT_FOUND (404)
        - FORBIDDEN (403): wrong party for the payment type
        - MISSING_PROOF (400): client charge without proof of payment
        - PAYMENT_LOCKED (409): payout not yet settled by approval
        - PAYMENT_ALREADY_PAID (409)
        """
        payment = self._get_payment_or_404(payment_id)
        is_charge = payment["payment_type"] == "client_charge"

        if is_charge:
            if not (actor.has(FINANCE_MANAGE_PAYMENTS) and payment["client_id"] == actor.user_id):
                raise ServiceError("FORBIDDEN", "Only the client can pay this charge", 403, {})
            if proof is None:
                raise ServiceError("MISSING_PROOF", "A payment screenshot is required", 400, {})
        else:
            actor.require_producer_admin()
            if payment["status"] == "locked":
                raise ServiceError(
                    "PAYMENT_LOCKED", "Payout is locked until the work item is approved", 409, {}
                )

        if payment["paid"]:
            raise ServiceError("PAYMENT_ALREADY_PAID", "Payment is already marked paid", 409, {})

        proof_url = payment["proof_url"]
        if proof is not None:
            proof_url = await self._upload_client.upload(
                content=proof.content,
                filename=proof.filename,
                content_type=proof.content_type,
                folder="payments",
                kind="proof",
            )

        now = to_iso(utc_now())
        updates: dict[str, Any] = {
            "paid": True,
            "paid_at": now,
            "status": "paid",
            "proof_url": proof_url,
            "updated_at": now,
        }
        if not is_charge:
            updates["payee_id"] = self._current_payee(payment)

        won = self._store.update_payment(payment_id, updates, expected={"paid": False})
        if won == 0:
            raise ServiceError("PAYMENT_ALREADY_PAID", "Payment is already marked paid", 409, {})
        updated = self._get_payment_or_404(payment_id)

        self._logger.info(
            "Payment marked paid",
            extra={"payment_id": payment_id, "payment_type": updated["payment_type"]},
        )
        amount_text = f"{updated['final_amount']:.2f} {updated['currency']}"
        if is_charge:
            self._dispatcher.notify_admins(
                "client_payment_sent",
                "Client Payment Sent",
                f"The client paid {amount_text} for {updated['work_type']}",
                updated["project_id"],
            )
        else:
            self._dispatcher.notify(
                updated["payee_id"],
                "payment_sent",
                "Payment Sent",
                f"{amount_text} was sent for {updated['work_type']}",
                updated["project_id"],
            )
        return payment_view(updated)

    async def mark_received(self, actor: ActorContext, payment_id: str) -> dict[str, Any]:
        """
        Confirm that a paid payment arrived.

        The entry is hidden now and scheduled for hard deletion.
        """
        payment = self._get_payment_or_404(payment_id)
        is_charge = payment["payment_type"] == "client_charge"

        if is_charge:
            actor.require_producer_admin()
        elif self._current_payee(payment) != actor.user_id:
            raise ServiceError("FORBIDDEN", "Only the payee can confirm receipt", 403, {})

        if not payment["paid"]:
            raise ServiceError("PAYMENT_NOT_PAID", "Payment has not been marked paid", 409, {})
        if payment["received"]:
            return payment_view(payment)

        now = utc_now()
        stamped = to_iso(now)
        self._store.update_payment(
            payment_id,
            {
                "received": True,
                "received_at": stamped,
                "hidden_at": stamped,
                "deleted_at": to_iso(now + self._delete_after),
                "updated_at": stamped,
            },
            expected={"received": False},
        )
        updated = self._get_payment_or_404(payment_id)

        if is_charge:
            self._dispatcher.notify(
                updated["client_id"],
                "client_payment_received",
                "Payment Received",
                f"Your payment for {updated['work_type']} was received",
                updated["project_id"],
            )
        else:
            self._dispatcher.notify_admins(
                "payment_received",
                "Payment Received",
                f"Payment for {updated['work_type']} was confirmed by the payee",
                updated["project_id"],
            )
        return payment_view(updated)

    async def create_adjustment(self, actor: ActorContext, payload: dict[str, Any]) -> dict[str, Any]:
        """Create a manual ledger entry such as a bonus or a deduction."""
        actor.require_producer_admin()

        payment_type = payload.get("payment_type")
        if payment_type not in _ADJUSTMENT_TYPES:
            raise ServiceError(
                "INVALID_PAYLOAD",
                f"Field 'payment_type' must be one of {sorted(_ADJUSTMENT_TYPES)}",
                400,
                {"field": "payment_type"},
            )
        amount = parse_amount(payload.get("amount"), "amount", allow_zero=False)
        project_id = require_text(payload, "project_id")
        mark_as_paid = payload.get("mark_as_paid", False)
        if not isinstance(mark_as_paid, bool):
            raise ServiceError(
                "INVALID_PAYLOAD", "Field 'mark_as_paid' must be a boolean", 400, {"field": "mark_as_paid"}
            )
        work_type = optional_text(payload, "work_type") or None

        project = self._store.get_project(project_id)
        if project is None:
            raise ServiceError("PROJECT_NOT_FOUND", "Project not found", 404, {})

        work_item = None
        if payload.get("work_item_id") is not None:
            work_item = self._store.get_work_item(require_text(payload, "work_item_id"))
            if work_item is None or work_item["project_id"] != project_id:
                raise ServiceError("WORK_ITEM_NOT_FOUND", "Work item not found", 404, {})
            if payment_type == "editor_payout" and self._store.find_payout(work_item["work_item_id"]):
                raise ServiceError(
                    "INVALID_STATUS", "Work item already has an editor payout", 409, {}
                )

        if payment_type == "client_charge":
            payee_id = None
        elif payload.get("payee_id") is not None:
            payee_id = require_text(payload, "payee_id")
        elif work_item is not None:
            payee_id = work_item["assignee_id"]
        else:
            raise ServiceError("INVALID_PAYLOAD", "Field 'payee_id' is required", 400, {"field": "payee_id"})

        payment = self._ledger.record_adjustment(
            payment_type=payment_type,
            amount=amount,
            project=project,
            work_item=work_item,
            payee_id=payee_id,
            work_type=work_type,
            mark_as_paid=mark_as_paid,
        )
        self._logger.info(
            "Manual payment recorded",
            extra={"payment_id": payment["payment_id"], "payment_type": payment_type},
        )
        if payment_type in ("bonus", "deduction"):
            label = "Bonus Added" if payment_type == "bonus" else "Deduction Applied"
            self._dispatcher.notify(
                payee_id,
                payment_type,
                label,
                f"{label}: {abs(payment['final_amount']):.2f} {payment['currency']}",
                project_id,
            )
        return payment_view(payment)

    async def list_payments(self, actor: ActorContext) -> dict[str, Any]:
        """
        Payments visible to the caller.

        Workers see their own payouts, bonuses and deductions; clients
        see charges on their projects; the producer admin sees every row
        not yet purged.
        """
        now = utc_now()
        if actor.is_producer_admin:
            rows = [row for row in self._store.list_all_payments() if is_not_purged(row, now)]
        elif actor.has(FINANCE_MANAGE_PAYMENTS):
            rows = [
                row
                for row in self._store.list_client_payments(actor.user_id)
                if client_can_see(row, actor.user_id, now, self._hide_after)
            ]
        elif actor.has(FINANCE_VIEW_OWN):
            rows = [
                self._ledger.preview_pending_penalty(self._as_current_payee(row), now)
                for row in self._store.list_worker_payment_candidates(actor.user_id)
                if worker_can_see(row, actor.user_id, now, self._hide_after)
            ]
        else:
            raise ServiceError("FORBIDDEN", "Role cannot view payments", 403, {})
        return {"payments": [payment_view(row) for row in rows]}

    @staticmethod
    def _as_current_payee(row: dict[str, Any]) -> dict[str, Any]:
        work_item = row.get("work_item")
        if row["payment_type"] == "editor_payout" and work_item is not None:
            return {**row, "payee_id": work_item["assignee_id"]}
        return row
