"""Async HTTP client for the notification sink."""

from __future__ import annotations

from typing import Any

import httpx

from work_order_service.logging import get_logger


class NotificationClient:
    """
    Client for the notification sink.

    Delivery (push, email, sockets) happens downstream. A recipient may
    be a user ID or a role address such as ``role:admin`` that the sink
    fans out.
    """

    def __init__(
        self,
        base_url: str,
        notify_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._notify_path = notify_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def send(
        self,
        recipient_id: str,
        notification_type: str,
        title: str,
        message: str,
        related_id: str | None,
    ) -> None:
        """
        Post one notification to the sink.

        Raises:
            httpx.HTTPError: on transport failure or a non-2xx response
        """
        payload: dict[str, Any] = {
            "recipient_id": recipient_id,
            "type": notification_type,
            "title": title,
            "message": message,
            "related_id": related_id,
        }
        response = await self._client.post(self._notify_path, json=payload)
        response.raise_for_status()
        get_logger(__name__).debug(
            "Notification delivered to sink",
            extra={"recipient_id": recipient_id, "type": notification_type},
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
