"""Validation helpers for request payload fields."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from work_order_service.core.exceptions import ServiceError
from work_order_service.services.timestamps import parse_iso, to_iso

if TYPE_CHECKING:
    from datetime import datetime


def _is_number(value: object) -> bool:
    """Check if value is an int or float (not bool)."""
    return isinstance(value, int | float) and not isinstance(value, bool)


def require_text(payload: dict[str, Any], field: str) -> str:
    """Return a non-empty, stripped string field or raise INVALID_PAYLOAD."""
    value = payload.get(field)
    if not isinstance(value, str) or value.strip() == "":
        raise ServiceError(
            "INVALID_PAYLOAD",
            f"Field '{field}' must be a non-empty string",
            400,
            {"field": field},
        )
    return value.strip()


def optional_text(payload: dict[str, Any], field: str, default: str = "") -> str:
    value = payload.get(field)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ServiceError("INVALID_PAYLOAD", f"Field '{field}' must be a string", 400, {"field": field})
    return value.strip()


def parse_deadline(value: object, field: str = "deadline") -> tuple[datetime, str]:
    """
    Parse an ISO-8601 deadline.

    Returns the parsed datetime and its normalized storage string.
    """
    if not isinstance(value, str) or value.strip() == "":
        raise ServiceError(
            "INVALID_DEADLINE",
            f"Field '{field}' must be an ISO-8601 timestamp",
            400,
            {"field": field},
        )
    try:
        parsed = parse_iso(value.strip())
    except ValueError as exc:
        raise ServiceError(
            "INVALID_DEADLINE",
            f"Field '{field}' must be an ISO-8601 timestamp",
            400,
            {"field": field},
        ) from exc
    return parsed, to_iso(parsed)


def parse_amount(value: object, field: str, *, allow_zero: bool) -> float:
    """Parse a monetary amount; negative and non-finite values are always rejected."""
    if not _is_number(value):
        raise ServiceError("INVALID_AMOUNT", f"Field '{field}' must be a number", 400, {"field": field})
    amount = float(value)  # type: ignore[arg-type]
    if not math.isfinite(amount) or amount < 0 or (amount == 0 and not allow_zero):
        qualifier = "finite and non-negative" if allow_zero else "finite and positive"
        raise ServiceError(
            "INVALID_AMOUNT",
            f"Field '{field}' must be {qualifier}",
            400,
            {"field": field},
        )
    return amount


def parse_percentage(value: object, field: str = "percentage") -> float:
    if not _is_number(value) or not 0 <= float(value) <= 100:  # type: ignore[arg-type]
        raise ServiceError(
            "INVALID_PERCENTAGE",
            f"Field '{field}' must be a number between 0 and 100",
            400,
            {"field": field},
        )
    return float(value)  # type: ignore[arg-type]


def parse_links(value: object) -> list[dict[str, str]]:
    """Validate a list of ``{"title", "url"}`` objects."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ServiceError("INVALID_PAYLOAD", "Field 'links' must be a list", 400, {"field": "links"})
    links: list[dict[str, str]] = []
    for entry in value:
        if (
            not isinstance(entry, dict)
            or not isinstance(entry.get("url"), str)
            or entry["url"].strip() == ""
        ):
            raise ServiceError(
                "INVALID_PAYLOAD",
                "Each link must be an object with a non-empty 'url'",
                400,
                {"field": "links"},
            )
        title = entry.get("title")
        links.append({"title": title if isinstance(title, str) else "", "url": entry["url"].strip()})
    return links


@dataclass(frozen=True)
class IncomingFile:
    """A file received in a multipart request, not yet uploaded."""

    filename: str
    content_type: str
    content: bytes
