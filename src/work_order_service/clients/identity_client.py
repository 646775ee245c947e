"""Async HTTP client for the Identity service."""

from __future__ import annotations

from typing import Any

import httpx

from work_order_service.core.exceptions import ServiceError
from work_order_service.logging import get_logger


class IdentityClient:
    """
    Client for resolving bearer tokens into an actor.

    Session issuance and role lookup live in the Identity service; this
    service only asks it who is behind a token via POST {resolve_path}.
    """

    def __init__(
        self,
        base_url: str,
        resolve_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._resolve_path = resolve_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def resolve_session(self, token: str) -> dict[str, Any]:
        """
        Resolve a bearer token via the Identity service.

        Returns:
            dict with keys: valid (bool), user_id (str), role (str)

        Raises:
            ServiceError: INVALID_TOKEN (401) if the Identity service says valid=false
            ServiceError: IDENTITY_SERVICE_UNAVAILABLE (502) on connection/timeout/unexpected errors
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(self._resolve_path, json={"token": token})
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Identity service connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Cannot connect to Identity service",
                status_code=502,
                details={},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Identity service HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service request failed",
                status_code=502,
                details={},
            ) from exc

        if response.status_code != 200:
            logger.warning(
                "Identity service unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service returned unexpected status",
                status_code=502,
                details={},
            )

        result: dict[str, Any] = response.json()
        if not result.get("valid", False):
            raise ServiceError(
                error="INVALID_TOKEN",
                message="Session token is invalid or expired",
                status_code=401,
                details={},
            )
        return result

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
