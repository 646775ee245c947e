"""Unit tests for fire-and-forget notification delivery."""

from __future__ import annotations

from unittest.mock import AsyncMock, call

import pytest

from work_order_service.services.notification_dispatcher import ADMIN_RECIPIENT, NotificationDispatcher


@pytest.mark.unit
async def test_notify_delivers_in_background() -> None:
    client = AsyncMock()
    dispatcher = NotificationDispatcher(client)

    dispatcher.notify("u-1", "work_assigned", "Work Assigned", "You have work", "prj-1")
    await dispatcher.drain()

    client.send.assert_awaited_once_with(
        recipient_id="u-1",
        notification_type="work_assigned",
        title="Work Assigned",
        message="You have work",
        related_id="prj-1",
    )
    assert dispatcher.pending_count == 0


@pytest.mark.unit
async def test_delivery_failure_is_swallowed() -> None:
    """A sink outage never propagates to the caller."""
    client = AsyncMock()
    client.send = AsyncMock(side_effect=ConnectionError("sink down"))
    dispatcher = NotificationDispatcher(client)

    dispatcher.notify("u-1", "work_assigned", "Work Assigned", "You have work")
    await dispatcher.drain()

    client.send.assert_awaited_once()


@pytest.mark.unit
async def test_missing_recipient_is_ignored() -> None:
    client = AsyncMock()
    dispatcher = NotificationDispatcher(client)
    dispatcher.notify(None, "work_assigned", "t", "m")
    dispatcher.notify("", "work_assigned", "t", "m")
    await dispatcher.drain()
    client.send.assert_not_awaited()


@pytest.mark.unit
async def test_notify_many_deduplicates() -> None:
    client = AsyncMock()
    dispatcher = NotificationDispatcher(client)
    dispatcher.notify_many(["u-1", "u-2", "u-1", None], "project_accepted", "t", "m", "prj-1")
    await dispatcher.drain()
    recipients = sorted(c.kwargs["recipient_id"] for c in client.send.await_args_list)
    assert recipients == ["u-1", "u-2"]


@pytest.mark.unit
async def test_notify_admins_uses_role_address() -> None:
    client = AsyncMock()
    dispatcher = NotificationDispatcher(client)
    dispatcher.notify_admins("project_created", "New Project", "m", "prj-1")
    await dispatcher.drain()
    assert client.send.await_args == call(
        recipient_id=ADMIN_RECIPIENT,
        notification_type="project_created",
        title="New Project",
        message="m",
        related_id="prj-1",
    )


@pytest.mark.unit
def test_notify_without_event_loop_is_dropped() -> None:
    client = AsyncMock()
    dispatcher = NotificationDispatcher(client)
    dispatcher.notify("u-1", "work_assigned", "t", "m")
    assert dispatcher.pending_count == 0
    client.send.assert_not_called()
