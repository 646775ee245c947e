"""Shared test helpers for actors, seeded rows and mocked sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

from work_order_service.core.exceptions import ServiceError
from work_order_service.services.capabilities import ActorContext
from work_order_service.services.notification_dispatcher import NotificationDispatcher
from work_order_service.services.work_order_store import WorkOrderStore

if TYPE_CHECKING:
    from pathlib import Path

ADMIN_ID = "u-admin"
MANAGER_ID = "u-manager"
CLIENT_ID = "u-client"
OTHER_CLIENT_ID = "u-other-client"
EDITOR_ID = "u-editor"
SECOND_EDITOR_ID = "u-editor-2"
VIEWER_ID = "u-viewer"

# Bearer token -> (user_id, role) as the Identity service would resolve it.
SESSIONS: dict[str, tuple[str, str]] = {
    "tok-admin": (ADMIN_ID, "admin"),
    "tok-manager": (MANAGER_ID, "manager"),
    "tok-client": (CLIENT_ID, "client"),
    "tok-other-client": (OTHER_CLIENT_ID, "client"),
    "tok-editor": (EDITOR_ID, "editor"),
    "tok-editor-2": (SECOND_EDITOR_ID, "editor"),
    "tok-viewer": (VIEWER_ID, "viewer"),
}

T0 = "2025-01-01T00:00:00.000000Z"


def actor(role: str, user_id: str) -> ActorContext:
    """Build an actor with the permissions of ``role``."""
    return ActorContext.for_role(user_id, role)


def admin() -> ActorContext:
    return actor("admin", ADMIN_ID)


def client() -> ActorContext:
    return actor("client", CLIENT_ID)


def editor(user_id: str = EDITOR_ID) -> ActorContext:
    return actor("editor", user_id)


def auth(token: str) -> dict[str, str]:
    """Authorization header for a known session token."""
    return {"Authorization": f"Bearer {token}"}


def resolve_session(token: str) -> dict[str, Any]:
    """Stand-in for IdentityClient.resolve_session backed by SESSIONS."""
    if token not in SESSIONS:
        raise ServiceError("INVALID_TOKEN", "Session token is invalid or expired", 401, {})
    user_id, role = SESSIONS[token]
    return {"valid": True, "user_id": user_id, "role": role}


def make_store(tmp_path: Path) -> WorkOrderStore:
    return WorkOrderStore(db_path=str(tmp_path / "work_orders.db"))


def mock_dispatcher() -> MagicMock:
    """Dispatcher double that records notify calls without scheduling tasks."""
    return MagicMock(spec=NotificationDispatcher)


def seed_project(store: WorkOrderStore, **overrides: Any) -> dict[str, Any]:
    """Insert an accepted project and return the stored row."""
    project = {
        "project_id": "prj-1",
        "client_id": CLIENT_ID,
        "title": "Launch Video",
        "description": "",
        "status": "assigned",
        "deadline": "2025-01-31T00:00:00.000000Z",
        "currency": "INR",
        "amount": 1000.0,
        "client_amount": 1200.0,
        "accepted": True,
        "accepted_at": T0,
        "created_at": T0,
        "updated_at": T0,
    }
    project.update(overrides)
    store.insert_project(project)
    row = store.get_project(project["project_id"])
    assert row is not None
    return row


def seed_work_item(store: WorkOrderStore, **overrides: Any) -> dict[str, Any]:
    """Insert a pending work item and return the stored row."""
    work_item = {
        "work_item_id": "wi-1",
        "project_id": "prj-1",
        "work_type": "Editing",
        "assignee_id": EDITOR_ID,
        "deadline": "2025-01-11T00:00:00.000000Z",
        "percentage": 100.0,
        "amount": 1000.0,
        "status": "pending",
        "links": [],
        "created_at": T0,
        "updated_at": T0,
    }
    work_item.update(overrides)
    store.insert_work_item(work_item)
    row = store.get_work_item(work_item["work_item_id"])
    assert row is not None
    return row


def notified_types(dispatcher: MagicMock) -> list[str]:
    """Notification types passed to notify / notify_many / notify_admins, in call order."""
    types: list[str] = []
    for call in dispatcher.method_calls:
        name, args, kwargs = call
        if name in ("notify", "notify_many"):
            types.append(args[1] if len(args) > 1 else kwargs["notification_type"])
        elif name == "notify_admins":
            types.append(args[0] if args else kwargs["notification_type"])
    return types


def config_yaml(db_path: str, *, scheduler_enabled: bool = False, max_file_size: int = 1048576) -> str:
    """A complete service configuration pointing at ``db_path``."""
    return f"""\
service:
  name: "work-order"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "data/logs"
database:
  path: "{db_path}"
identity:
  base_url: "http://localhost:8001"
  resolve_path: "/sessions/resolve"
  timeout_seconds: 10
notifications:
  base_url: "http://localhost:8020"
  notify_path: "/notifications"
  timeout_seconds: 5
uploads:
  base_url: "http://localhost:8030"
  upload_path: "/objects"
  timeout_seconds: 30
  max_file_size: {max_file_size}
request:
  max_body_size: 65536
scheduler:
  enabled: {"true" if scheduler_enabled else "false"}
  interval_seconds: 3600
  initial_delay_seconds: 3600
retention:
  hide_after_days: 2
  delete_after_days: 7
"""
