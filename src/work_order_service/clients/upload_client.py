"""Async HTTP client for the object upload service."""

from __future__ import annotations

from typing import Any

import httpx

from work_order_service.core.exceptions import ServiceError
from work_order_service.logging import get_logger


class UploadClient:
    """
    Client for opaque binary storage.

    Bytes go in, a URL comes out. This service never inspects file
    contents, it only keeps the returned URL.
    """

    def __init__(
        self,
        base_url: str,
        upload_path: str,
        timeout_seconds: int,
        max_file_size: int,
    ) -> None:
        self._base_url = base_url
        self._upload_path = upload_path
        self.max_file_size = max_file_size
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def upload(
        self,
        content: bytes,
        filename: str,
        content_type: str,
        folder: str,
        kind: str,
    ) -> str:
        """
        Store a file and return its URL.

        Raises:
            ServiceError: FILE_TOO_LARGE (413) above the configured size
            ServiceError: UPLOAD_SERVICE_UNAVAILABLE (502) on any collaborator failure
        """
        logger = get_logger(__name__)

        if len(content) > self.max_file_size:
            raise ServiceError(
                "FILE_TOO_LARGE",
                "File exceeds maximum allowed size",
                413,
                {"max_file_size": self.max_file_size},
            )

        try:
            response = await self._client.post(
                self._upload_path,
                data={"folder": folder, "kind": kind},
                files={"file": (filename, content, content_type)},
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Upload service request failed",
                extra={"error": str(exc), "base_url": self._base_url, "folder": folder},
            )
            raise ServiceError(
                "UPLOAD_SERVICE_UNAVAILABLE",
                "Cannot reach upload service",
                502,
                {},
            ) from exc

        if response.status_code not in (200, 201):
            logger.warning(
                "Upload service unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise ServiceError(
                "UPLOAD_SERVICE_UNAVAILABLE",
                "Upload service returned unexpected status",
                502,
                {},
            )

        result: dict[str, Any] = response.json()
        url = result.get("url")
        if not isinstance(url, str) or url == "":
            raise ServiceError(
                "UPLOAD_SERVICE_UNAVAILABLE",
                "Upload service response is missing url",
                502,
                {},
            )
        return url

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
