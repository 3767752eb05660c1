"""
QC inspection schemas.
"""

from pydantic import Field, field_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal

from models.base import BaseSchema, TimestampMixin


def inspection_blocks_item(pass_fail: Optional[bool], reinspection_required: bool) -> bool:
    """A failed inspection, or one demanding reinspection, locks the item."""
    return pass_fail is False or reinspection_required


def inspection_clears_lock(pass_fail: Optional[bool], reinspection_required: bool) -> bool:
    """Only an explicit pass with no reinspection releases a lock."""
    return pass_fail is True and not reinspection_required


class QCInspectionCreate(BaseSchema):
    """Record one inspection of a production item."""

    order_id: str = Field(..., min_length=1, description="Order UUID")
    item_id: str = Field(..., min_length=1, description="Production item UUID")
    inspector_name: str = Field(..., min_length=1, max_length=100)
    inspection_date: Optional[datetime] = Field(
        None,
        description="When the inspection happened (defaults to now)"
    )
    inspection_type: str = Field(default="quality_check", max_length=50)
    quality_score: Optional[Decimal] = Field(None, ge=0, le=100)
    defects_found: int = Field(default=0, ge=0)
    defect_types: list[str] = Field(default_factory=list)
    pass_fail: Optional[bool] = Field(None, description="Null until a verdict is recorded")
    corrective_actions: str = Field(default="", max_length=2000)
    reinspection_required: bool = False
    notes: str = Field(default="", max_length=2000)
    photos: list[str] = Field(default_factory=list, description="Photo storage references")

    @field_validator("quality_score")
    @classmethod
    def round_score(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        """Round to 2 decimal places."""
        if v is None:
            return v
        return round(v, 2)


class QCInspectionUpdate(BaseSchema):
    """
    Update an inspection.

    Order and item are immutable. `corrective_actions` is appended to the
    existing text rather than replacing it.
    """

    quality_score: Optional[Decimal] = Field(None, ge=0, le=100)
    defects_found: Optional[int] = Field(None, ge=0)
    defect_types: Optional[list[str]] = None
    pass_fail: Optional[bool] = None
    corrective_actions: Optional[str] = Field(None, max_length=2000)
    reinspection_required: Optional[bool] = None
    notes: Optional[str] = Field(None, max_length=2000)
    photos: Optional[list[str]] = None


class QCInspectionResponse(BaseSchema, TimestampMixin):
    """QC inspection record."""

    id: str
    order_id: str
    item_id: str
    inspector_name: str
    inspection_date: datetime
    inspection_type: str = "quality_check"
    quality_score: Optional[Decimal] = None
    defects_found: int = 0
    defect_types: list[str] = Field(default_factory=list)
    pass_fail: Optional[bool] = None
    corrective_actions: str = ""
    reinspection_required: bool = False
    notes: str = ""
    photos: list[str] = Field(default_factory=list)

    @property
    def blocks_item(self) -> bool:
        return inspection_blocks_item(self.pass_fail, self.reinspection_required)
