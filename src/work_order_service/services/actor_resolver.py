"""Bearer token resolution into an actor capability set."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from work_order_service.core.exceptions import ServiceError
from work_order_service.services.capabilities import ActorContext

if TYPE_CHECKING:
    from work_order_service.clients.identity_client import IdentityClient


class ActorResolver:
    """Turns a bearer token into an ActorContext via the Identity service."""

    def __init__(self, identity_client: IdentityClient) -> None:
        self._identity_client = identity_client

    def set_identity_client(self, identity_client: IdentityClient) -> None:
        self._identity_client = identity_client

    async def resolve(self, token: str) -> ActorContext:
        """
        Resolve ``token`` into the caller's capability set.

        Error precedence:
        - INVALID_TOKEN (401): empty token, or rejected by the Identity service
        - IDENTITY_SERVICE_UNAVAILABLE (502): Identity service unreachable
        - INVALID_TOKEN (401): resolved session lacks a user or role
        """
        if not token:
            raise ServiceError("INVALID_TOKEN", "Bearer token must be non-empty", 401, {})

        result: Any
        try:
            result = await self._identity_client.resolve_session(token)
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Cannot connect to Identity service",
                502,
                {},
            ) from exc

        if not isinstance(result, dict):
            raise ServiceError("INVALID_TOKEN", "Session could not be resolved", 401, {})

        user_id = result.get("user_id")
        role = result.get("role")
        if not isinstance(user_id, str) or user_id == "":
            raise ServiceError("INVALID_TOKEN", "Session is missing a user", 401, {})
        if not isinstance(role, str) or role == "":
            raise ServiceError("INVALID_TOKEN", "Session is missing a role", 401, {})

        return ActorContext.for_role(user_id, role.lower())
