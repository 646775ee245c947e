"""Application state management."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from work_order_service.clients.identity_client import IdentityClient
    from work_order_service.clients.notification_client import NotificationClient
    from work_order_service.clients.upload_client import UploadClient
    from work_order_service.services.actor_resolver import ActorResolver
    from work_order_service.services.deadline_escalator import DeadlineEscalator
    from work_order_service.services.escalation_loop import EscalationLoop
    from work_order_service.services.notification_dispatcher import NotificationDispatcher
    from work_order_service.services.payment_manager import PaymentManager
    from work_order_service.services.work_item_manager import WorkItemManager
    from work_order_service.services.work_order_manager import WorkOrderManager
    from work_order_service.services.work_order_store import WorkOrderStore


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    store: WorkOrderStore | None = None
    identity_client: IdentityClient | None = None
    notification_client: NotificationClient | None = None
    upload_client: UploadClient | None = None
    actor_resolver: ActorResolver | None = None
    dispatcher: NotificationDispatcher | None = None
    work_order_manager: WorkOrderManager | None = None
    work_item_manager: WorkItemManager | None = None
    payment_manager: PaymentManager | None = None
    escalator: DeadlineEscalator | None = None
    escalation_loop: EscalationLoop | None = None
    escalation_task: asyncio.Task[None] | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep collaborator references in sync when a client is swapped."""
        super().__setattr__(name, value)
        if value is None:
            return

        if name == "identity_client":
            actor_resolver = self.__dict__.get("actor_resolver")
            if actor_resolver is not None:
                actor_resolver.set_identity_client(value)
        elif name == "notification_client":
            dispatcher = self.__dict__.get("dispatcher")
            if dispatcher is not None:
                dispatcher.set_client(value)
        elif name == "upload_client":
            for manager_name in ("work_item_manager", "payment_manager"):
                manager = self.__dict__.get(manager_name)
                if manager is not None:
                    manager.set_upload_client(value)

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")

    @property
    def scheduler_running(self) -> bool:
        """Whether the escalation loop task is alive."""
        return self.escalation_task is not None and not self.escalation_task.done()


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
