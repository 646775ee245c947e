"""Shared request helpers for routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from starlette.datastructures import UploadFile as StarletteUploadFile

from work_order_service.core.exceptions import ServiceError
from work_order_service.core.state import get_app_state
from work_order_service.services.inputs import IncomingFile

if TYPE_CHECKING:
    from fastapi import Request
    from starlette.datastructures import FormData

    from work_order_service.services.capabilities import ActorContext


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


async def read_json_body(request: Request) -> dict[str, Any]:
    """Parsed JSON object body; an empty body reads as {}."""
    body = await request.body()
    return {} if body == b"" else parse_json_body(body)


def extract_bearer_token(authorization: str | None) -> str:
    """Extract the session token from an Authorization header."""
    if authorization is None:
        raise ServiceError("INVALID_TOKEN", "Missing Authorization header", 401, {})

    if not authorization.startswith("Bearer "):
        raise ServiceError(
            "INVALID_TOKEN",
            "Authorization header must use Bearer scheme",
            401,
            {},
        )

    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise ServiceError("INVALID_TOKEN", "Bearer token must not be empty", 401, {})

    return token


async def resolve_actor(request: Request) -> ActorContext:
    """Resolve the caller once for this request."""
    token = extract_bearer_token(request.headers.get("authorization"))
    state = get_app_state()
    if state.actor_resolver is None:
        msg = "ActorResolver not initialized"
        raise RuntimeError(msg)
    return await state.actor_resolver.resolve(token)


async def read_form_file(form: FormData, field: str) -> IncomingFile | None:
    """Read an optional file part from a multipart form."""
    value = form.get(field)
    if value is None or value == "":
        return None
    if not isinstance(value, StarletteUploadFile):
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Form field '{field}' must be a file",
            400,
            {"field": field},
        )
    content = await value.read()
    return IncomingFile(
        filename=value.filename or field,
        content_type=value.content_type or "application/octet-stream",
        content=content,
    )


def read_form_text(form: FormData, field: str) -> str | None:
    value = form.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Form field '{field}' must be text",
            400,
            {"field": field},
        )
    return value
