"""Application lifecycle management."""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from work_order_service.clients.identity_client import IdentityClient
from work_order_service.clients.notification_client import NotificationClient
from work_order_service.clients.upload_client import UploadClient
from work_order_service.config import get_settings
from work_order_service.core.state import init_app_state
from work_order_service.logging import get_logger, setup_logging
from work_order_service.services.actor_resolver import ActorResolver
from work_order_service.services.deadline_escalator import DeadlineEscalator
from work_order_service.services.escalation_loop import EscalationLoop
from work_order_service.services.ledger_manager import LedgerManager
from work_order_service.services.notification_dispatcher import NotificationDispatcher
from work_order_service.services.payment_manager import PaymentManager
from work_order_service.services.work_item_manager import WorkItemManager
from work_order_service.services.work_order_manager import WorkOrderManager
from work_order_service.services.work_order_store import WorkOrderStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    store = WorkOrderStore(db_path=settings.database.path)
    state.store = store

    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        resolve_path=settings.identity.resolve_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    notification_client = NotificationClient(
        base_url=settings.notifications.base_url,
        notify_path=settings.notifications.notify_path,
        timeout_seconds=settings.notifications.timeout_seconds,
    )
    upload_client = UploadClient(
        base_url=settings.uploads.base_url,
        upload_path=settings.uploads.upload_path,
        timeout_seconds=settings.uploads.timeout_seconds,
        max_file_size=settings.uploads.max_file_size,
    )

    dispatcher = NotificationDispatcher(client=notification_client)
    ledger = LedgerManager(store=store)
    state.actor_resolver = ActorResolver(identity_client=identity_client)
    state.dispatcher = dispatcher
    state.work_order_manager = WorkOrderManager(
        store=store,
        ledger=ledger,
        dispatcher=dispatcher,
        delete_after_days=settings.retention.delete_after_days,
    )
    state.work_item_manager = WorkItemManager(
        store=store,
        ledger=ledger,
        dispatcher=dispatcher,
        upload_client=upload_client,
    )
    state.payment_manager = PaymentManager(
        store=store,
        ledger=ledger,
        dispatcher=dispatcher,
        upload_client=upload_client,
        hide_after_days=settings.retention.hide_after_days,
        delete_after_days=settings.retention.delete_after_days,
    )
    state.escalator = DeadlineEscalator(store=store, dispatcher=dispatcher)

    state.identity_client = identity_client
    state.notification_client = notification_client
    state.upload_client = upload_client

    if settings.scheduler.enabled:
        escalation_loop = EscalationLoop(
            escalator=state.escalator,
            store=store,
            interval_seconds=settings.scheduler.interval_seconds,
            initial_delay_seconds=settings.scheduler.initial_delay_seconds,
        )
        state.escalation_loop = escalation_loop
        state.escalation_task = asyncio.create_task(escalation_loop.run())

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "identity_base_url": settings.identity.base_url,
            "notifications_base_url": settings.notifications.base_url,
            "uploads_base_url": settings.uploads.base_url,
            "scheduler_enabled": settings.scheduler.enabled,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    if state.escalation_loop is not None:
        state.escalation_loop.stop()
    if state.escalation_task is not None:
        state.escalation_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await state.escalation_task

    await dispatcher.drain()

    await identity_client.close()
    await notification_client.close()
    await upload_client.close()
    store.close()
