"""
Authorization schemas.
"""

from pydantic import BaseModel
from typing import Optional


class ActorContext(BaseModel):
    """Who is performing an operation."""
    user_id: str = "system"
    role: Optional[str] = None


class PermissionResult(BaseModel):
    """Outcome of a permission check."""
    allowed: bool
    reason: Optional[str] = None
