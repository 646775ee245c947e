from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from work_order_service.clients.identity_client import IdentityClient
from work_order_service.clients.notification_client import NotificationClient
from work_order_service.clients.upload_client import UploadClient
from work_order_service.core.exceptions import ServiceError


def _mock_response(status_code: int, json_body: dict[str, Any], url: str) -> httpx.Response:
    """Create a mock httpx.Response."""
    return httpx.Response(
        status_code=status_code,
        json=json_body,
        request=httpx.Request("POST", url),
    )


def _mock_http(**kwargs: Any) -> AsyncMock:
    mock_http = AsyncMock(spec=httpx.AsyncClient)
    mock_http.post = AsyncMock(**kwargs)
    return mock_http


def _identity(**kwargs: Any) -> IdentityClient:
    client = IdentityClient(base_url="http://mock-identity:8001", resolve_path="/sessions/resolve", timeout_seconds=5)
    client._client = _mock_http(**kwargs)
    return client


def _uploads(**kwargs: Any) -> UploadClient:
    client = UploadClient(
        base_url="http://mock-uploads:8030", upload_path="/objects", timeout_seconds=5, max_file_size=16
    )
    client._client = _mock_http(**kwargs)
    return client


# ---------------------------------------------------------------------------
# IdentityClient
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_identity_resolves_valid_session() -> None:
    body = {"valid": True, "user_id": "u-1", "role": "editor"}
    client = _identity(return_value=_mock_response(200, body, "http://mock-identity:8001/sessions/resolve"))

    assert await client.resolve_session("tok") == body
    client._client.post.assert_awaited_once_with("/sessions/resolve", json={"token": "tok"})


@pytest.mark.unit
async def test_identity_invalid_session_raises_401() -> None:
    client = _identity(
        return_value=_mock_response(200, {"valid": False}, "http://mock-identity:8001/sessions/resolve")
    )
    with pytest.raises(ServiceError) as exc_info:
        await client.resolve_session("tok")
    assert exc_info.value.status_code == 401
    assert exc_info.value.error == "INVALID_TOKEN"


@pytest.mark.unit
async def test_identity_unexpected_status_raises_502() -> None:
    client = _identity(
        return_value=_mock_response(500, {"error": "boom"}, "http://mock-identity:8001/sessions/resolve")
    )
    with pytest.raises(ServiceError) as exc_info:
        await client.resolve_session("tok")
    assert exc_info.value.status_code == 502
    assert exc_info.value.error == "IDENTITY_SERVICE_UNAVAILABLE"


@pytest.mark.unit
async def test_identity_connection_error_raises_502() -> None:
    client = _identity(side_effect=httpx.ConnectError("refused"))
    with pytest.raises(ServiceError) as exc_info:
        await client.resolve_session("tok")
    assert exc_info.value.status_code == 502


# ---------------------------------------------------------------------------
# UploadClient
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_upload_returns_url() -> None:
    client = _uploads(
        return_value=_mock_response(201, {"url": "https://cdn/x.png"}, "http://mock-uploads:8030/objects")
    )
    url = await client.upload(b"bytes", "x.png", "image/png", folder="payments", kind="proof")
    assert url == "https://cdn/x.png"
    _, kwargs = client._client.post.await_args
    assert kwargs["data"] == {"folder": "payments", "kind": "proof"}


@pytest.mark.unit
async def test_upload_rejects_oversized_file() -> None:
    client = _uploads(return_value=None)
    with pytest.raises(ServiceError) as exc_info:
        await client.upload(b"x" * 17, "big.bin", "application/octet-stream", folder="submissions", kind="work")
    assert exc_info.value.status_code == 413
    assert exc_info.value.error == "FILE_TOO_LARGE"
    client._client.post.assert_not_awaited()


@pytest.mark.unit
async def test_upload_missing_url_raises_502() -> None:
    client = _uploads(return_value=_mock_response(200, {}, "http://mock-uploads:8030/objects"))
    with pytest.raises(ServiceError) as exc_info:
        await client.upload(b"bytes", "x.png", "image/png", folder="payments", kind="proof")
    assert exc_info.value.error == "UPLOAD_SERVICE_UNAVAILABLE"


@pytest.mark.unit
async def test_upload_timeout_raises_502() -> None:
    client = _uploads(side_effect=httpx.ReadTimeout("slow"))
    with pytest.raises(ServiceError) as exc_info:
        await client.upload(b"bytes", "x.png", "image/png", folder="payments", kind="proof")
    assert exc_info.value.status_code == 502


# ---------------------------------------------------------------------------
# NotificationClient
# ---------------------------------------------------------------------------


@pytest.mark.unit
async def test_notification_payload_and_status_check() -> None:
    client = NotificationClient(base_url="http://mock-sink:8020", notify_path="/notifications", timeout_seconds=5)
    client._client = _mock_http(
        return_value=_mock_response(503, {}, "http://mock-sink:8020/notifications")
    )
    with pytest.raises(httpx.HTTPStatusError):
        await client.send("role:admin", "project_created", "New Project", "m", "prj-1")
    client._client.post.assert_awaited_once_with(
        "/notifications",
        json={
            "recipient_id": "role:admin",
            "type": "project_created",
            "title": "New Project",
            "message": "m",
            "related_id": "prj-1",
        },
    )
