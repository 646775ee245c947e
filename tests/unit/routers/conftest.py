"""Router test fixtures with mocked Identity, notification and upload services."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from tests.helpers import EDITOR_ID, SECOND_EDITOR_ID, auth, config_yaml, resolve_session
from work_order_service.app import create_app
from work_order_service.config import clear_settings_cache
from work_order_service.core.lifespan import lifespan
from work_order_service.core.state import get_app_state, reset_app_state

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

UPLOADED_URL = "https://files.example/uploads/object.bin"


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with temp database and mocked external services."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_yaml(str(tmp_path / "test.db")))

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        # Sessions resolve from the fixed token table
        mock_identity = AsyncMock()
        mock_identity.close = AsyncMock()
        mock_identity.resolve_session = AsyncMock(side_effect=resolve_session)
        state.identity_client = mock_identity

        mock_notifications = AsyncMock()
        mock_notifications.close = AsyncMock()
        mock_notifications.send = AsyncMock(return_value=None)
        state.notification_client = mock_notifications

        mock_uploads = AsyncMock()
        mock_uploads.close = AsyncMock()
        mock_uploads.upload = AsyncMock(return_value=UPLOADED_URL)
        state.upload_client = mock_uploads

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


# ---------------------------------------------------------------------------
# Flow helpers
# ---------------------------------------------------------------------------
ACCEPT_BODY: dict[str, Any] = {
    "total_amount": 1000,
    "work_items": [
        {
            "work_type": "Editing",
            "assignee_id": EDITOR_ID,
            "deadline": "2099-01-11T00:00:00Z",
            "percentage": 60,
        },
        {
            "work_type": "Color",
            "assignee_id": SECOND_EDITOR_ID,
            "deadline": "2099-01-20T00:00:00Z",
            "percentage": 40,
        },
    ],
}


async def create_project(client: AsyncClient, title: str = "Launch Video") -> dict[str, Any]:
    """Create a project as the client and return its body."""
    response = await client.post(
        "/projects",
        json={"title": title, "deadline": "2099-01-31T00:00:00Z", "client_amount": 1200},
        headers=auth("tok-client"),
    )
    assert response.status_code == 201, response.text
    return response.json()


async def accepted_project(client: AsyncClient) -> dict[str, Any]:
    """Create and accept a project split across two editors."""
    project = await create_project(client)
    response = await client.post(
        f"/projects/{project['project_id']}/accept",
        json=ACCEPT_BODY,
        headers=auth("tok-admin"),
    )
    assert response.status_code == 200, response.text
    return response.json()


async def approve_both(client: AsyncClient, work_item_id: str) -> dict[str, Any]:
    """Set the admin and client approvals on a work item."""
    first = await client.post(f"/work-items/{work_item_id}/approve", headers=auth("tok-admin"))
    assert first.status_code == 200, first.text
    second = await client.post(f"/work-items/{work_item_id}/approve", headers=auth("tok-client"))
    assert second.status_code == 200, second.text
    return second.json()
