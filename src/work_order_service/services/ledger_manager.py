"""Payment ledger: payouts, charges and manual adjustments."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from work_order_service.logging import get_logger
from work_order_service.services.settlement import calculate_penalty
from work_order_service.services.timestamps import now_iso, parse_iso, to_iso
from work_order_service.services.work_order_store import DuplicatePayoutError

if TYPE_CHECKING:
    from datetime import datetime

    from work_order_service.services.work_order_store import WorkOrderStore

CLIENT_CHARGE_WORK_TYPE = "Project Charge"


def _new_payment_id() -> str:
    return f"pay-{uuid.uuid4()}"


class LedgerManager:
    """
    Keeps payment records consistent with the work order lifecycle.

    A work item has at most one editor payout. It is created ``locked``
    with the item, follows the item's assignee, and is settled to
    ``calculated`` exactly when the item becomes fully approved.
    A closed project has a single client charge.
    """

    def __init__(self, store: WorkOrderStore) -> None:
        self._store = store
        self._logger = get_logger(__name__)

    def _require_payment(self, payment_id: str) -> dict[str, Any]:
        payment = self._store.get_payment(payment_id)
        if payment is None:
            msg = f"Payment {payment_id} vanished during update"
            raise RuntimeError(msg)
        return payment

    def upsert_payout(self, work_item: dict[str, Any], project: dict[str, Any]) -> dict[str, Any]:
        """
        Create or renegotiate the payout of a work item.

        A new payout starts ``locked``. An existing one takes the item's
        amount and deadline and drops any earlier penalty markers.
        """
        existing = self._store.find_payout(work_item["work_item_id"])
        if existing is None:
            now = now_iso()
            payment = {
                "payment_id": _new_payment_id(),
                "payment_type": "editor_payout",
                "project_id": project["project_id"],
                "work_item_id": work_item["work_item_id"],
                "payee_id": work_item["assignee_id"],
                "client_id": project["client_id"],
                "work_type": work_item["work_type"],
                "currency": project["currency"],
                "original_amount": float(work_item["amount"]),
                "final_amount": float(work_item["amount"]),
                "deadline": work_item["deadline"],
                "status": "locked",
                "created_at": now,
                "updated_at": now,
            }
            try:
                self._store.insert_payment(payment)
            except DuplicatePayoutError:
                existing = self._store.find_payout(work_item["work_item_id"])
                if existing is None:
                    raise
            else:
                return self._require_payment(payment["payment_id"])

        self._store.update_payment(
            existing["payment_id"],
            {
                "original_amount": float(work_item["amount"]),
                "final_amount": float(work_item["amount"]),
                "deadline": work_item["deadline"],
                "work_type": work_item["work_type"],
                "payee_id": work_item["assignee_id"],
                "deadline_crossed": False,
                "days_late": 0,
                "penalty_amount": 0.0,
                "updated_at": now_iso(),
            },
        )
        return self._require_payment(existing["payment_id"])

    def finalize_on_approval(
        self,
        work_item: dict[str, Any],
        project: dict[str, Any],
        approved_at: datetime,
    ) -> dict[str, Any]:
        """
        Settle the payout of a work item that just became fully approved.

        The penalty is evaluated at ``approved_at``. The payout moves to
        ``calculated``, which freezes the amounts from then on.
        """
        payout = self._store.find_payout(work_item["work_item_id"])
        if payout is None:
            self._logger.warning(
                "Approved work item had no payout; creating one",
                extra={"work_item_id": work_item["work_item_id"]},
            )
            payout = self.upsert_payout(work_item, project)

        if payout["status"] in ("calculated", "paid"):
            return payout

        base_amount = float(payout["original_amount"])
        if payout["deadline"] is not None:
            settlement = calculate_penalty(parse_iso(payout["deadline"]), base_amount, approved_at)
            days_late = settlement.days_late
            penalty_amount = settlement.penalty_amount
            final_amount = settlement.final_amount
        else:
            days_late, penalty_amount, final_amount = 0, 0.0, base_amount

        stamped = to_iso(approved_at)
        self._store.update_payment(
            payout["payment_id"],
            {
                "final_amount": final_amount,
                "penalty_amount": penalty_amount,
                "days_late": days_late,
                "deadline_crossed": days_late > 0,
                "payee_id": work_item["assignee_id"],
                "status": "calculated",
                "calculated_at": stamped,
                "updated_at": stamped,
            },
            expected={"status": payout["status"]},
        )
        finalized = self._require_payment(payout["payment_id"])
        self._logger.info(
            "Payout finalized",
            extra={
                "payment_id": finalized["payment_id"],
                "work_item_id": work_item["work_item_id"],
                "days_late": finalized["days_late"],
                "final_amount": finalized["final_amount"],
            },
        )
        return finalized

    def sync_payee_on_reassignment(
        self,
        work_item: dict[str, Any],
        new_assignee_id: str,
    ) -> dict[str, Any] | None:
        """
        Hand the payout of a reassigned work item to its new assignee.

        The payout goes back to ``locked`` with its penalty cleared.
        Settled payouts are left alone.
        """
        payout = self._store.find_payout(work_item["work_item_id"])
        if payout is None:
            return None
        if payout["paid"] or payout["received"]:
            self._logger.warning(
                "Reassignment left a settled payout untouched",
                extra={"payment_id": payout["payment_id"], "work_item_id": work_item["work_item_id"]},
            )
            return payout

        self._store.update_payment(
            payout["payment_id"],
            {
                "payee_id": new_assignee_id,
                "status": "locked",
                "final_amount": float(payout["original_amount"]),
                "deadline_crossed": False,
                "days_late": 0,
                "penalty_amount": 0.0,
                "calculated_at": None,
                "updated_at": now_iso(),
            },
        )
        return self._require_payment(payout["payment_id"])

    def settle_project_closure(self, project: dict[str, Any], closed_at: datetime) -> dict[str, Any] | None:
        """
        Leave exactly one client charge on a closed project.

        The charge is the greater of the client amount and the allocated
        amount. Unsettled charges are merged into the oldest one and the
        rest deleted; a charge already paid or received is never removed
        and makes any unsettled extras redundant.
        """
        charge_amount = max(float(project["client_amount"] or 0), float(project["amount"] or 0))
        if charge_amount <= 0:
            return None

        charges = self._store.list_project_payments(project["project_id"], "client_charge")
        settled = [charge for charge in charges if charge["paid"] or charge["received"]]
        unsettled = [charge for charge in charges if not (charge["paid"] or charge["received"])]
        stamped = to_iso(closed_at)

        if settled:
            self._store.delete_payments([charge["payment_id"] for charge in unsettled])
            return settled[0]

        if unsettled:
            primary, extras = unsettled[0], unsettled[1:]
            self._store.update_payment(
                primary["payment_id"],
                {
                    "original_amount": charge_amount,
                    "final_amount": charge_amount,
                    "work_type": CLIENT_CHARGE_WORK_TYPE,
                    "work_item_id": None,
                    "client_id": project["client_id"],
                    "currency": project["currency"],
                    "deadline": stamped,
                    "updated_at": stamped,
                },
            )
            removed = self._store.delete_payments([charge["payment_id"] for charge in extras])
            if removed:
                self._logger.info(
                    "Merged duplicate client charges",
                    extra={"project_id": project["project_id"], "removed": removed},
                )
            return self._require_payment(primary["payment_id"])

        charge = {
            "payment_id": _new_payment_id(),
            "payment_type": "client_charge",
            "project_id": project["project_id"],
            "client_id": project["client_id"],
            "work_type": CLIENT_CHARGE_WORK_TYPE,
            "currency": project["currency"],
            "original_amount": charge_amount,
            "final_amount": charge_amount,
            "deadline": stamped,
            "status": "pending",
            "created_at": stamped,
            "updated_at": stamped,
        }
        self._store.insert_payment(charge)
        return self._require_payment(charge["payment_id"])

    def record_adjustment(
        self,
        *,
        payment_type: str,
        amount: float,
        project: dict[str, Any],
        work_item: dict[str, Any] | None,
        payee_id: str | None,
        work_type: str | None,
        mark_as_paid: bool,
    ) -> dict[str, Any]:
        """Create a manual ledger entry; deductions are stored negative."""
        signed_amount = -abs(amount) if payment_type == "deduction" else abs(amount)
        now = now_iso()
        payment = {
            "payment_id": _new_payment_id(),
            "payment_type": payment_type,
            "project_id": project["project_id"],
            "work_item_id": work_item["work_item_id"] if work_item is not None else None,
            "payee_id": payee_id,
            "client_id": project["client_id"],
            "work_type": work_type or (work_item["work_type"] if work_item is not None else payment_type),
            "currency": project["currency"],
            "original_amount": signed_amount,
            "final_amount": signed_amount,
            "deadline": work_item["deadline"] if work_item is not None else None,
            "status": "paid" if mark_as_paid else "pending",
            "paid": mark_as_paid,
            "paid_at": now if mark_as_paid else None,
            "created_at": now,
            "updated_at": now,
        }
        self._store.insert_payment(payment)
        return self._require_payment(payment["payment_id"])

    def preview_pending_penalty(self, payment: dict[str, Any], now: datetime) -> dict[str, Any]:
        """
        Show a pending payout with the penalty it would carry at ``now``.

        Only unsettled ``pending`` payouts with a deadline are affected and
        nothing is persisted.
        """
        if (
            payment["payment_type"] != "editor_payout"
            or payment["status"] != "pending"
            or payment["paid"]
            or payment["deadline"] is None
        ):
            return payment
        settlement = calculate_penalty(parse_iso(payment["deadline"]), float(payment["original_amount"]), now)
        return {
            **payment,
            "final_amount": settlement.final_amount,
            "penalty_amount": settlement.penalty_amount,
            "days_late": settlement.days_late,
            "deadline_crossed": settlement.deadline_crossed,
        }
