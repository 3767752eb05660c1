"""
Production item schemas and the manufacturing stage sequence.

Stages form a total order. "Next stage" and "past quality check" checks are
ordinal comparisons, never string comparisons.
"""

from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum
from datetime import datetime

from models.base import BaseSchema, TimestampMixin


class ProductionStage(str, Enum):
    """Manufacturing stage values."""
    CUTTING = "cutting"
    ASSEMBLY = "assembly"
    FINISHING = "finishing"
    QUALITY_CHECK = "quality_check"
    PACKAGING = "packaging"
    COMPLETED = "completed"
    SHIPPED = "shipped"


STAGE_SEQUENCE = [
    ProductionStage.CUTTING,
    ProductionStage.ASSEMBLY,
    ProductionStage.FINISHING,
    ProductionStage.QUALITY_CHECK,
    ProductionStage.PACKAGING,
    ProductionStage.COMPLETED,
    ProductionStage.SHIPPED,
]

# Ordinal per stage (lower index = earlier in flow)
STAGE_ORDER = {stage: index for index, stage in enumerate(STAGE_SEQUENCE)}

# Stages cutting..completed each get an equal share of an item's progress
PROGRESS_STAGE_COUNT = 6

TERMINAL_STAGES = frozenset({ProductionStage.COMPLETED, ProductionStage.SHIPPED})


def next_stage(current: ProductionStage) -> Optional[ProductionStage]:
    """Stage that follows `current`, or None if `current` is last."""
    index = STAGE_ORDER[current] + 1
    if index >= len(STAGE_SEQUENCE):
        return None
    return STAGE_SEQUENCE[index]


def is_valid_stage_transition(current: ProductionStage, new: ProductionStage) -> bool:
    """
    Check if a stage advance is valid.

    Rules:
    - Only the immediate next stage is allowed (no skipping)
    - No backward moves
    - SHIPPED is terminal
    """
    return next_stage(current) == new


def is_terminal_stage(stage: ProductionStage) -> bool:
    """True for stages at which the item counts as done."""
    return stage in TERMINAL_STAGES


def is_past_quality_check(stage: ProductionStage) -> bool:
    """True for stages a QC-locked item may not enter."""
    return STAGE_ORDER[stage] > STAGE_ORDER[ProductionStage.QUALITY_CHECK]


def item_absolute_progress(stage: ProductionStage, stage_progress: int) -> float:
    """
    Item progress across the whole sequence, 0-100.

    Each of the six stages cutting..completed is worth 100/6. Terminal
    stages count as fully done.
    """
    if is_terminal_stage(stage):
        return 100.0
    width = 100.0 / PROGRESS_STAGE_COUNT
    return STAGE_ORDER[stage] * width + stage_progress * width / 100.0


# ===================
# STAGE HISTORY
# ===================

class StageHistoryEntry(BaseModel):
    """One completed stage, appended when the item leaves it."""
    stage: ProductionStage
    entered_at: Optional[datetime] = None
    exited_at: datetime
    progress_at_exit: int = Field(..., ge=0, le=100)


# ===================
# PRODUCTION ITEM SCHEMAS
# ===================

class ProductionItemCreate(BaseSchema):
    """One unit to manufacture when an order is confirmed."""

    item_name: str = Field(..., min_length=1, max_length=200, description="Item description")
    quantity: int = Field(default=1, ge=1, description="Units covered by this item")
    assigned_to: Optional[str] = Field(None, max_length=100, description="Assigned handler")
    notes: Optional[str] = Field(None, max_length=1000, description="Free-text notes")


class ProductionItemsCreate(BaseSchema):
    """Create the production items of a confirmed order."""

    items: list[ProductionItemCreate] = Field(..., min_length=1)


class StageAdvance(BaseSchema):
    """Advance an item to its next stage."""

    new_stage: ProductionStage = Field(..., description="Stage to move into")
    progress: Optional[int] = Field(
        None,
        ge=0,
        le=100,
        description="Progress within the new stage (defaults to 0, or 100 for terminal stages)"
    )
    notes: Optional[str] = Field(None, max_length=1000)


class ProgressUpdate(BaseSchema):
    """Set progress within the current stage."""

    progress: int = Field(..., ge=0, le=100)


class ProductionItemResponse(BaseSchema, TimestampMixin):
    """Production item with stage ledger fields."""

    id: str
    order_id: str
    item_name: Optional[str] = None
    quantity: int = 1
    current_stage: ProductionStage
    stage_progress: int = Field(default=0, ge=0, le=100)
    stage_entered_at: Optional[datetime] = None
    stage_history: list[StageHistoryEntry] = Field(default_factory=list)
    completed_at: Optional[datetime] = None
    assigned_to: Optional[str] = None
    notes: Optional[str] = None
    qc_locked: bool = False
    qc_lock_inspection_id: Optional[str] = None
    invoice_id: Optional[str] = None
    invoiced_at: Optional[datetime] = None

    @property
    def absolute_progress(self) -> float:
        return item_absolute_progress(self.current_stage, self.stage_progress)

    @property
    def is_done(self) -> bool:
        return is_terminal_stage(self.current_stage)


class OrderProgress(BaseSchema):
    """Order-level production read model."""

    order_id: str
    item_count: int
    completed_count: int
    qc_locked_count: int
    production_progress_percent: float
    current_stage: Optional[ProductionStage] = None
    all_items_completed: bool
    incomplete_item_ids: list[str] = Field(default_factory=list)
    qc_locked_item_ids: list[str] = Field(default_factory=list)
