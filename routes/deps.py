"""
Shared route dependencies: actor identity, permission checks, error mapping.
"""

from typing import Optional
from fastapi import Depends, Header
from fastapi.responses import JSONResponse
import structlog

from models.permission import ActorContext
from services.permission_service import PermissionChecker, get_permission_checker
from exceptions import AppError, DatabaseError, PermissionDeniedError

logger = structlog.get_logger(__name__)


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, DatabaseError):
        logger.error("database_error", error=e.internal_message, operation=e.details.get("operation"))
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), error_type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# ACTOR / PERMISSIONS
# ===================

def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> ActorContext:
    """Identity of the caller, as forwarded by the auth gateway."""
    return ActorContext(user_id=x_user_id or "system", role=x_user_role)


def require_scopes(*scopes: str):
    """Dependency factory: require every listed scope."""

    def _check(
        actor: ActorContext = Depends(get_actor),
        checker: PermissionChecker = Depends(get_permission_checker),
    ) -> ActorContext:
        result = checker.check_permission(actor, list(scopes))
        if not result.allowed:
            raise PermissionDeniedError(result.reason or "Permission denied", list(scopes))
        return actor

    return _check
