"""Unit tests for PaymentManager settlement actions and listings."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from freezegun import freeze_time

from tests.helpers import (
    CLIENT_ID,
    EDITOR_ID,
    OTHER_CLIENT_ID,
    SECOND_EDITOR_ID,
    actor,
    admin,
    client,
    editor,
    make_store,
    mock_dispatcher,
    notified_types,
    seed_project,
    seed_work_item,
)
from work_order_service.core.exceptions import ServiceError
from work_order_service.services.inputs import IncomingFile
from work_order_service.services.ledger_manager import LedgerManager
from work_order_service.services.payment_manager import PaymentManager

PROOF = IncomingFile(filename="receipt.png", content_type="image/png", content=b"png-bytes")


@pytest.fixture
def store(tmp_path):
    work_store = make_store(tmp_path)
    yield work_store
    work_store.close()


@pytest.fixture
def ledger(store):
    return LedgerManager(store)


@pytest.fixture
def dispatcher():
    return mock_dispatcher()


@pytest.fixture
def upload_client():
    uploads = AsyncMock()
    uploads.upload = AsyncMock(return_value="https://files.example/payments/receipt.png")
    return uploads


@pytest.fixture
def manager(store, ledger, dispatcher, upload_client):
    return PaymentManager(store, ledger, dispatcher, upload_client, hide_after_days=2, delete_after_days=7)


@pytest.fixture
def payout(store, ledger):
    """Locked payout of the single seeded work item."""
    project = seed_project(store)
    work_item = seed_work_item(store)
    return ledger.upsert_payout(work_item, project)


@pytest.fixture
def settled_payout(store, ledger, payout):
    """The seeded payout after dual approval on time."""
    store.update_work_item("wi-1", {"approved": True, "approval_admin": True, "approval_client": True})
    work_item = store.get_work_item("wi-1")
    return ledger.finalize_on_approval(work_item, store.get_project("prj-1"), datetime(2025, 1, 5, tzinfo=UTC))


@pytest.fixture
def charge(store, ledger):
    project = seed_project(store)
    return ledger.settle_project_closure(project, datetime(2025, 2, 1, tzinfo=UTC))


async def _expect_error(coro, error: str, status_code: int) -> ServiceError:
    with pytest.raises(ServiceError) as exc_info:
        await coro
    assert exc_info.value.error == error
    assert exc_info.value.status_code == status_code
    return exc_info.value


# ---------------------------------------------------------------------------
# mark_paid / mark_received
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_locked_payout_cannot_be_paid(manager, payout) -> None:
    await _expect_error(manager.mark_paid(admin(), payout["payment_id"], None), "PAYMENT_LOCKED", 409)


@pytest.mark.unit
async def test_admin_pays_settled_payout(manager, dispatcher, settled_payout) -> None:
    view = await manager.mark_paid(admin(), settled_payout["payment_id"], None)
    assert view["paid"] is True
    assert view["status"] == "paid"
    assert view["payee_id"] == EDITOR_ID
    assert notified_types(dispatcher) == ["payment_sent"]

    await _expect_error(
        manager.mark_paid(admin(), settled_payout["payment_id"], None), "PAYMENT_ALREADY_PAID", 409
    )


@pytest.mark.unit
async def test_paid_payout_goes_to_current_assignee(manager, store, settled_payout) -> None:
    """A stale payee on the row is replaced by the item's assignee at payment."""
    store.update_work_item("wi-1", {"assignee_id": SECOND_EDITOR_ID})
    view = await manager.mark_paid(admin(), settled_payout["payment_id"], None)
    assert view["payee_id"] == SECOND_EDITOR_ID


@pytest.mark.unit
async def test_worker_cannot_mark_payout_paid(manager, settled_payout) -> None:
    await _expect_error(manager.mark_paid(editor(), settled_payout["payment_id"], None), "FORBIDDEN", 403)


@pytest.mark.unit
async def test_payee_confirms_receipt(manager, dispatcher, settled_payout) -> None:
    payment_id = settled_payout["payment_id"]
    await _expect_error(manager.mark_received(editor(), payment_id), "PAYMENT_NOT_PAID", 409)
    await manager.mark_paid(admin(), payment_id, None)

    with freeze_time("2025-02-01T00:00:00Z"):
        view = await manager.mark_received(editor(), payment_id)

    assert view["received"] is True
    assert view["hidden_at"] == "2025-02-01T00:00:00.000000Z"
    assert view["deleted_at"] == "2025-02-08T00:00:00.000000Z"
    assert notified_types(dispatcher)[-1] == "payment_received"

    again = await manager.mark_received(editor(), payment_id)
    assert again["received_at"] == view["received_at"]


@pytest.mark.unit
async def test_only_payee_confirms_receipt(manager, settled_payout) -> None:
    await manager.mark_paid(admin(), settled_payout["payment_id"], None)
    await _expect_error(
        manager.mark_received(editor(SECOND_EDITOR_ID), settled_payout["payment_id"]), "FORBIDDEN", 403
    )


@pytest.mark.unit
async def test_client_pays_charge_with_proof(manager, upload_client, dispatcher, charge) -> None:
    await _expect_error(manager.mark_paid(client(), charge["payment_id"], None), "MISSING_PROOF", 400)

    view = await manager.mark_paid(client(), charge["payment_id"], PROOF)

    upload_client.upload.assert_awaited_once_with(
        content=b"png-bytes",
        filename="receipt.png",
        content_type="image/png",
        folder="payments",
        kind="proof",
    )
    assert view["proof_url"] == "https://files.example/payments/receipt.png"
    assert view["paid"] is True
    assert notified_types(dispatcher) == ["client_payment_sent"]


@pytest.mark.unit
async def test_other_client_cannot_pay_charge(manager, charge) -> None:
    await _expect_error(
        manager.mark_paid(actor("client", OTHER_CLIENT_ID), charge["payment_id"], PROOF), "FORBIDDEN", 403
    )


@pytest.mark.unit
async def test_admin_confirms_client_charge(manager, dispatcher, charge) -> None:
    await manager.mark_paid(client(), charge["payment_id"], PROOF)
    await _expect_error(manager.mark_received(client(), charge["payment_id"]), "FORBIDDEN", 403)
    view = await manager.mark_received(admin(), charge["payment_id"])
    assert view["received"] is True
    assert notified_types(dispatcher)[-1] == "client_payment_received"


@pytest.mark.unit
async def test_unknown_payment(manager) -> None:
    await _expect_error(manager.mark_paid(admin(), "pay-missing", None), "PAYMENT_NOT_FOUND", 404)


# ---------------------------------------------------------------------------
# Adjustments
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_bonus_defaults_to_assignee(manager, dispatcher, payout) -> None:
    view = await manager.create_adjustment(
        admin(), {"payment_type": "bonus", "amount": 50, "project_id": "prj-1", "work_item_id": "wi-1"}
    )
    assert view["payee_id"] == EDITOR_ID
    assert view["final_amount"] == 50.0
    assert notified_types(dispatcher) == ["bonus"]


@pytest.mark.unit
async def test_deduction_is_negative(manager, payout) -> None:
    view = await manager.create_adjustment(
        admin(),
        {"payment_type": "deduction", "amount": 30, "project_id": "prj-1", "payee_id": EDITOR_ID},
    )
    assert view["final_amount"] == -30.0


@pytest.mark.unit
async def test_second_payout_for_item_is_rejected(manager, payout) -> None:
    await _expect_error(
        manager.create_adjustment(
            admin(),
            {"payment_type": "editor_payout", "amount": 10, "project_id": "prj-1", "work_item_id": "wi-1"},
        ),
        "INVALID_STATUS",
        409,
    )


@pytest.mark.unit
async def test_adjustment_validation(manager, payout) -> None:
    await _expect_error(
        manager.create_adjustment(admin(), {"payment_type": "tip", "amount": 10, "project_id": "prj-1"}),
        "INVALID_PAYLOAD",
        400,
    )
    await _expect_error(
        manager.create_adjustment(admin(), {"payment_type": "bonus", "amount": -1, "project_id": "prj-1"}),
        "INVALID_AMOUNT",
        400,
    )
    await _expect_error(
        manager.create_adjustment(admin(), {"payment_type": "bonus", "amount": 5, "project_id": "prj-1"}),
        "INVALID_PAYLOAD",
        400,
    )
    await _expect_error(
        manager.create_adjustment(admin(), {"payment_type": "bonus", "amount": 5, "project_id": "prj-x"}),
        "PROJECT_NOT_FOUND",
        404,
    )
    await _expect_error(
        manager.create_adjustment(client(), {"payment_type": "bonus", "amount": 5, "project_id": "prj-1"}),
        "FORBIDDEN",
        403,
    )


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_worker_does_not_see_locked_payout(manager, payout) -> None:
    result = await manager.list_payments(editor())
    assert result["payments"] == []


@pytest.mark.unit
async def test_worker_sees_settled_payout(manager, settled_payout) -> None:
    result = await manager.list_payments(editor())
    assert [p["payment_id"] for p in result["payments"]] == [settled_payout["payment_id"]]


@pytest.mark.unit
async def test_reassigned_payout_follows_new_assignee(manager, store, settled_payout) -> None:
    store.update_work_item("wi-1", {"assignee_id": SECOND_EDITOR_ID})
    previous = await manager.list_payments(editor())
    current = await manager.list_payments(editor(SECOND_EDITOR_ID))
    assert previous["payments"] == []
    assert current["payments"][0]["payee_id"] == SECOND_EDITOR_ID


@pytest.mark.unit
async def test_received_payout_hidden_after_window(manager, settled_payout) -> None:
    payment_id = settled_payout["payment_id"]
    await manager.mark_paid(admin(), payment_id, None)
    with freeze_time("2025-02-01T00:00:00Z"):
        await manager.mark_received(editor(), payment_id)
    with freeze_time("2025-02-02T00:00:00Z"):
        assert len((await manager.list_payments(editor()))["payments"]) == 1
    with freeze_time("2025-02-04T00:00:00Z"):
        assert (await manager.list_payments(editor()))["payments"] == []
        admin_view = await manager.list_payments(admin())
        assert [p["payment_id"] for p in admin_view["payments"]] == [payment_id]


@pytest.mark.unit
async def test_client_sees_only_own_charges(manager, charge) -> None:
    own = await manager.list_payments(client())
    other = await manager.list_payments(actor("client", OTHER_CLIENT_ID))
    assert [p["payment_id"] for p in own["payments"]] == [charge["payment_id"]]
    assert own["payments"][0]["client_id"] == CLIENT_ID
    assert other["payments"] == []


@pytest.mark.unit
async def test_viewer_cannot_list_payments(manager) -> None:
    await _expect_error(manager.list_payments(actor("viewer", "u-viewer")), "FORBIDDEN", 403)
