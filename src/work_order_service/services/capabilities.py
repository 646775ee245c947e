"""Role to permission table and the per-request actor capability set."""

from __future__ import annotations

from dataclasses import dataclass

from work_order_service.core.exceptions import ServiceError

PROJECT_CREATE = "project:create"
PROJECT_READ = "project:read"
PROJECT_UPDATE = "project:update"
PROJECT_DELETE = "project:delete"
PROJECT_ASSIGN = "project:assign"
PROJECT_APPROVE = "project:approve"
FINANCE_VIEW_BUDGET = "finance:view_budget"
FINANCE_MANAGE_PAYMENTS = "finance:manage_payments"
FINANCE_VIEW_OWN = "finance:view_own"
USER_INVITE = "user:invite"
USER_MANAGE_ROLES = "user:manage_roles"
ORG_SETTINGS = "org:settings"

ALL_PERMISSIONS: frozenset[str] = frozenset(
    {
        PROJECT_CREATE,
        PROJECT_READ,
        PROJECT_UPDATE,
        PROJECT_DELETE,
        PROJECT_ASSIGN,
        PROJECT_APPROVE,
        FINANCE_VIEW_BUDGET,
        FINANCE_MANAGE_PAYMENTS,
        FINANCE_VIEW_OWN,
        USER_INVITE,
        USER_MANAGE_ROLES,
        ORG_SETTINGS,
    }
)

ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "admin": ALL_PERMISSIONS,
    "manager": frozenset(
        {
            PROJECT_CREATE,
            PROJECT_READ,
            PROJECT_UPDATE,
            PROJECT_ASSIGN,
            PROJECT_APPROVE,
            FINANCE_VIEW_BUDGET,
            USER_INVITE,
        }
    ),
    "editor": frozenset({PROJECT_READ, PROJECT_UPDATE, FINANCE_VIEW_OWN}),
    "client": frozenset({PROJECT_CREATE, PROJECT_READ, PROJECT_APPROVE, FINANCE_MANAGE_PAYMENTS}),
    "viewer": frozenset({PROJECT_READ}),
}


@dataclass(frozen=True)
class ActorContext:
    """
    The caller of an operation, resolved once per request.

    Managers check capabilities and ownership against this object instead
    of looking roles up again.
    """

    user_id: str
    role: str
    permissions: frozenset[str]

    @classmethod
    def for_role(cls, user_id: str, role: str) -> ActorContext:
        """Build a context whose permissions come from the role table."""
        return cls(user_id=user_id, role=role, permissions=ROLE_PERMISSIONS.get(role, frozenset()))

    def has(self, permission: str) -> bool:
        return permission in self.permissions

    def require(self, permission: str) -> None:
        """Raise FORBIDDEN unless the actor holds ``permission``."""
        if permission not in self.permissions:
            raise ServiceError(
                "FORBIDDEN",
                f"Role '{self.role}' lacks permission '{permission}'",
                403,
                {"permission": permission},
            )

    @property
    def is_producer_admin(self) -> bool:
        """Admins and managers act as the producer side of approvals and the ledger."""
        return self.has(FINANCE_VIEW_BUDGET) and self.has(PROJECT_ASSIGN)

    def require_producer_admin(self) -> None:
        if not self.is_producer_admin:
            raise ServiceError("FORBIDDEN", "Only the producer admin may do this", 403, {})
