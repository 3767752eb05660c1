"""
Base schema and mixins shared by all models.
"""

from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional


class BaseSchema(BaseModel):
    """
    Base for request/response schemas.

    Strings are trimmed, assignments re-validated, and rows read either
    from dicts or attribute objects.
    """
    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True
    )


class TimestampMixin(BaseModel):
    """Row timestamps."""
    created_at: datetime
    updated_at: Optional[datetime] = None
