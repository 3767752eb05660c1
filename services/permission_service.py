"""
Role-based permission checks.

Scopes are "<area>.<verb>" strings. Each role maps to the set of scopes it
holds; an operation is allowed when the actor's role holds every scope the
operation requires.
"""

from typing import Optional
import structlog

from models.permission import ActorContext, PermissionResult

logger = structlog.get_logger(__name__)

# Scope keys. Use these constants in routes rather than raw strings.
PRODUCTION_READ = "production.read"
PRODUCTION_UPDATE = "production.update"
PRODUCTION_WRITE = "production.write"
FINANCE_READ = "finance.read"
FINANCE_CREATE = "finance.create"
FINANCE_UPDATE = "finance.update"
SHIPPING_READ = "shipping.read"
SHIPPING_MANAGE = "shipping.manage"

_ALL_SCOPES = {
    PRODUCTION_READ, PRODUCTION_UPDATE, PRODUCTION_WRITE,
    FINANCE_READ, FINANCE_CREATE, FINANCE_UPDATE,
    SHIPPING_READ, SHIPPING_MANAGE,
}

ROLE_SCOPES: dict[str, set[str]] = {
    "admin": _ALL_SCOPES,
    "manager": _ALL_SCOPES,
    "finance": {PRODUCTION_READ, FINANCE_READ, FINANCE_CREATE, FINANCE_UPDATE, SHIPPING_READ},
    "production": {PRODUCTION_READ, PRODUCTION_UPDATE, PRODUCTION_WRITE},
    "shipping": {PRODUCTION_READ, SHIPPING_READ, SHIPPING_MANAGE},
    "viewer": {PRODUCTION_READ, FINANCE_READ, SHIPPING_READ},
}


class PermissionChecker:
    """Checks actor roles against required scopes."""

    def __init__(self, role_scopes: Optional[dict[str, set[str]]] = None):
        self.role_scopes = role_scopes if role_scopes is not None else ROLE_SCOPES

    def check_permission(self, actor: ActorContext, required_scopes: list[str]) -> PermissionResult:
        if not actor.role:
            return PermissionResult(allowed=False, reason="Authentication required")

        granted = self.role_scopes.get(actor.role.lower(), set())
        missing = [scope for scope in required_scopes if scope not in granted]

        if missing:
            logger.warning(
                "permission_denied",
                user_id=actor.user_id,
                role=actor.role,
                missing_scopes=missing
            )
            return PermissionResult(
                allowed=False,
                reason=f"Missing required permissions: {', '.join(missing)}. Role: {actor.role}"
            )

        return PermissionResult(allowed=True)


# Singleton instance
_permission_checker: Optional[PermissionChecker] = None


def get_permission_checker() -> PermissionChecker:
    """Get or create PermissionChecker instance."""
    global _permission_checker
    if _permission_checker is None:
        _permission_checker = PermissionChecker()
    return _permission_checker
