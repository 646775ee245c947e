"""Unit tests for WorkOrderStore persistence and conditional updates."""

from __future__ import annotations

import pytest

from tests.helpers import EDITOR_ID, SECOND_EDITOR_ID, T0, make_store, seed_project, seed_work_item
from work_order_service.services.work_order_store import DuplicatePayoutError, WorkOrderStore


def _payout(payment_id: str, work_item_id: str | None, **overrides: object) -> dict[str, object]:
    payment: dict[str, object] = {
        "payment_id": payment_id,
        "payment_type": "editor_payout",
        "project_id": "prj-1",
        "work_item_id": work_item_id,
        "payee_id": EDITOR_ID,
        "client_id": "u-client",
        "work_type": "Editing",
        "currency": "INR",
        "original_amount": 1000.0,
        "final_amount": 1000.0,
        "status": "locked",
        "created_at": T0,
        "updated_at": T0,
    }
    payment.update(overrides)
    return payment


@pytest.fixture
def store(tmp_path):
    work_store = make_store(tmp_path)
    yield work_store
    work_store.close()


@pytest.mark.unit
def test_project_round_trip_decodes_booleans(store: WorkOrderStore) -> None:
    """Boolean columns come back as bools and version starts at 1."""
    project = seed_project(store)
    assert project["accepted"] is True
    assert project["closed"] is False
    assert project["warn_50"] is False
    assert project["version"] == 1


@pytest.mark.unit
def test_work_item_links_are_json(store: WorkOrderStore) -> None:
    seed_project(store)
    links = [{"title": "Brief", "url": "https://files.example/brief.pdf"}]
    work_item = seed_work_item(store, links=links)
    assert work_item["links"] == links


@pytest.mark.unit
def test_update_bumps_version(store: WorkOrderStore) -> None:
    seed_project(store)
    assert store.update_project("prj-1", {"title": "Renamed"}) == 1
    project = store.get_project("prj-1")
    assert project is not None
    assert project["title"] == "Renamed"
    assert project["version"] == 2


@pytest.mark.unit
def test_conditional_update_loses_on_stale_expectation(store: WorkOrderStore) -> None:
    """Only the first of two writers expecting the same version wins."""
    seed_project(store)
    assert store.update_project("prj-1", {"approval_admin": True}, expected={"version": 1}) == 1
    assert store.update_project("prj-1", {"approval_client": True}, expected={"version": 1}) == 0
    project = store.get_project("prj-1")
    assert project is not None
    assert project["approval_admin"] is True
    assert project["approval_client"] is False


@pytest.mark.unit
def test_conditional_update_on_flag(store: WorkOrderStore) -> None:
    """A warning flag can be claimed only once."""
    seed_project(store)
    assert store.update_project("prj-1", {"warn_50": True}, expected={"warn_50": False}) == 1
    assert store.update_project("prj-1", {"warn_50": True}, expected={"warn_50": False}) == 0


@pytest.mark.unit
def test_conditional_update_with_null_expectation(store: WorkOrderStore) -> None:
    seed_project(store)
    assert store.update_project("prj-1", {"closed_at": T0}, expected={"closed_at": None}) == 1
    assert store.update_project("prj-1", {"closed_at": T0}, expected={"closed_at": None}) == 0


@pytest.mark.unit
def test_update_rejects_unknown_column(store: WorkOrderStore) -> None:
    seed_project(store)
    with pytest.raises(ValueError, match="unknown"):
        store.update_project("prj-1", {"nope": 1})


@pytest.mark.unit
def test_second_payout_for_same_work_item_is_rejected(store: WorkOrderStore) -> None:
    seed_project(store)
    seed_work_item(store)
    store.insert_payment(_payout("pay-1", "wi-1"))
    with pytest.raises(DuplicatePayoutError):
        store.insert_payment(_payout("pay-2", "wi-1"))


@pytest.mark.unit
def test_unlinked_payouts_may_repeat(store: WorkOrderStore) -> None:
    """The one-payout rule only applies to payouts linked to a work item."""
    seed_project(store)
    store.insert_payment(_payout("pay-1", None))
    store.insert_payment(_payout("pay-2", None))
    assert store.delete_placeholder_payouts("prj-1") == 2


@pytest.mark.unit
def test_transaction_rolls_back_on_error(store: WorkOrderStore) -> None:
    seed_project(store)
    with pytest.raises(RuntimeError), store.transaction():
        store.update_project("prj-1", {"title": "Inside"})
        raise RuntimeError("boom")
    project = store.get_project("prj-1")
    assert project is not None
    assert project["title"] == "Launch Video"


@pytest.mark.unit
def test_nested_transactions_commit_together(store: WorkOrderStore) -> None:
    seed_project(store)
    with store.transaction():
        store.update_project("prj-1", {"title": "Outer"})
        with store.transaction():
            store.update_project("prj-1", {"description": "Inner"})
    project = store.get_project("prj-1")
    assert project is not None
    assert (project["title"], project["description"]) == ("Outer", "Inner")


@pytest.mark.unit
def test_escalation_lists_only_open_accepted_projects(store: WorkOrderStore) -> None:
    seed_project(store, project_id="prj-open")
    seed_project(store, project_id="prj-pending", accepted=False, accepted_at=None, status="pending")
    seed_project(store, project_id="prj-done", status="completed")
    seed_project(store, project_id="prj-nodeadline", deadline=None)
    ids = [project["project_id"] for project in store.list_escalation_projects()]
    assert ids == ["prj-open"]


@pytest.mark.unit
def test_escalation_work_items_carry_project_acceptance(store: WorkOrderStore) -> None:
    seed_project(store, accepted_at="2025-01-02T00:00:00.000000Z")
    seed_work_item(store, work_item_id="wi-open")
    seed_work_item(store, work_item_id="wi-declined", status="declined")
    seed_work_item(store, work_item_id="wi-approved", approved=True, status="completed")
    seed_work_item(store, work_item_id="wi-unassigned", assignee_id=None)
    items = store.list_escalation_work_items()
    assert [item["work_item_id"] for item in items] == ["wi-open"]
    assert items[0]["project_accepted_at"] == "2025-01-02T00:00:00.000000Z"


@pytest.mark.unit
def test_worker_candidates_follow_current_assignee(store: WorkOrderStore) -> None:
    """A reassigned item's payout is found for the new assignee even with a stale payee."""
    seed_project(store)
    seed_work_item(store, assignee_id=SECOND_EDITOR_ID)
    store.insert_payment(_payout("pay-1", "wi-1", payee_id=EDITOR_ID))

    rows = store.list_worker_payment_candidates(SECOND_EDITOR_ID)
    assert [row["payment_id"] for row in rows] == ["pay-1"]
    assert rows[0]["work_item"]["assignee_id"] == SECOND_EDITOR_ID


@pytest.mark.unit
def test_delete_payments_keeps_settled_rows(store: WorkOrderStore) -> None:
    seed_project(store)
    store.insert_payment(_payout("pay-open", None))
    store.insert_payment(_payout("pay-paid", None, paid=True, status="paid"))
    assert store.delete_payments(["pay-open", "pay-paid"]) == 1
    assert store.get_payment("pay-open") is None
    assert store.get_payment("pay-paid") is not None


@pytest.mark.unit
def test_purge_expired_removes_project_tree(store: WorkOrderStore) -> None:
    seed_project(store, deleted_at="2025-01-05T00:00:00.000000Z")
    seed_work_item(store)
    store.insert_submission(
        {
            "submission_id": "sub-1",
            "work_item_id": "wi-1",
            "project_id": "prj-1",
            "submitter_id": EDITOR_ID,
            "revision": 1,
            "link_url": "https://example.com/cut",
            "created_at": T0,
        }
    )
    store.insert_correction(
        {
            "correction_id": "cor-1",
            "submission_id": "sub-1",
            "requested_by": "u-client",
            "text": "Trim intro",
            "created_at": T0,
        }
    )
    store.insert_payment(_payout("pay-1", None, deleted_at="2025-01-05T00:00:00.000000Z"))

    assert store.purge_expired("2025-01-04T00:00:00.000000Z") == {"projects": 0, "payments": 0}
    assert store.purge_expired("2025-01-06T00:00:00.000000Z") == {"projects": 1, "payments": 1}
    assert store.get_project("prj-1") is None
    assert store.get_work_item("wi-1") is None
    assert store.get_submission("sub-1") is None
    assert store.get_correction("cor-1") is None


@pytest.mark.unit
def test_count_projects_by_status(store: WorkOrderStore) -> None:
    seed_project(store, project_id="prj-a")
    seed_project(store, project_id="prj-b")
    seed_project(store, project_id="prj-c", status="closed")
    assert store.count_projects_by_status() == {"assigned": 2, "closed": 1}


@pytest.mark.unit
def test_in_memory_database() -> None:
    memory_store = WorkOrderStore(db_path=":memory:")
    seed_project(memory_store)
    assert memory_store.get_project("prj-1") is not None
    memory_store.close()
