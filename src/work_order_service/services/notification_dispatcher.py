"""Fire-and-forget delivery of domain events to the notification sink."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from work_order_service.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from work_order_service.clients.notification_client import NotificationClient

ADMIN_RECIPIENT = "role:admin"


class NotificationDispatcher:
    """
    Schedules notification delivery without blocking the caller.

    Each notification runs as its own asyncio task. Delivery failures are
    logged and dropped, so a state transition never fails or rolls back
    because the sink is down.
    """

    def __init__(self, client: NotificationClient) -> None:
        self._client = client
        self._pending: set[asyncio.Task[None]] = set()
        self._logger = get_logger(__name__)

    def set_client(self, client: NotificationClient) -> None:
        self._client = client

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def notify(
        self,
        recipient_id: str | None,
        notification_type: str,
        title: str,
        message: str,
        related_id: str | None = None,
    ) -> None:
        """Schedule one notification; a missing recipient is ignored."""
        if not recipient_id:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.warning(
                "Notification dropped: no running event loop",
                extra={"recipient_id": recipient_id, "type": notification_type},
            )
            return

        task = loop.create_task(
            self._deliver(recipient_id, notification_type, title, message, related_id)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def notify_many(
        self,
        recipient_ids: Iterable[str | None],
        notification_type: str,
        title: str,
        message: str,
        related_id: str | None = None,
    ) -> None:
        """Notify each distinct recipient once."""
        seen: set[str] = set()
        for recipient_id in recipient_ids:
            if not recipient_id or recipient_id in seen:
                continue
            seen.add(recipient_id)
            self.notify(recipient_id, notification_type, title, message, related_id)

    def notify_admins(
        self,
        notification_type: str,
        title: str,
        message: str,
        related_id: str | None = None,
    ) -> None:
        """Notify every admin through the sink's role fan-out address."""
        self.notify(ADMIN_RECIPIENT, notification_type, title, message, related_id)

    async def _deliver(
        self,
        recipient_id: str,
        notification_type: str,
        title: str,
        message: str,
        related_id: str | None,
    ) -> None:
        try:
            await self._client.send(
                recipient_id=recipient_id,
                notification_type=notification_type,
                title=title,
                message=message,
                related_id=related_id,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.warning(
                "Notification delivery failed",
                extra={
                    "recipient_id": recipient_id,
                    "type": notification_type,
                    "related_id": related_id,
                    "error": str(exc),
                },
            )

    async def drain(self) -> None:
        """Wait until every scheduled notification has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
