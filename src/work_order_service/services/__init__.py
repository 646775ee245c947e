"""Service layer components."""

from work_order_service.services.actor_resolver import ActorResolver
from work_order_service.services.deadline_escalator import DeadlineEscalator
from work_order_service.services.escalation_loop import EscalationLoop
from work_order_service.services.ledger_manager import LedgerManager
from work_order_service.services.notification_dispatcher import NotificationDispatcher
from work_order_service.services.payment_manager import PaymentManager
from work_order_service.services.work_item_manager import WorkItemManager
from work_order_service.services.work_order_manager import WorkOrderManager
from work_order_service.services.work_order_store import WorkOrderStore

__all__ = [
    "ActorResolver",
    "DeadlineEscalator",
    "EscalationLoop",
    "LedgerManager",
    "NotificationDispatcher",
    "PaymentManager",
    "WorkItemManager",
    "WorkOrderManager",
    "WorkOrderStore",
]
