"""
Order schemas: the fulfillment slice of the order aggregate.

See models.production for the item-level stage sequence; the financial stage
here is a separate, order-level lifecycle.
"""

from pydantic import Field
from typing import Optional
from enum import Enum
from datetime import datetime
from decimal import Decimal

from models.base import BaseSchema, TimestampMixin
from models.production import ProductionStage


class FinancialStage(str, Enum):
    """Order billing lifecycle values."""
    IN_PRODUCTION = "in_production"
    READY_TO_INVOICE = "ready_to_invoice"
    INVOICED = "invoiced"
    COMPLETED = "completed"


# Directed edges of the financial stage machine. Guards live in the service.
FINANCIAL_TRANSITIONS = {
    FinancialStage.IN_PRODUCTION: {FinancialStage.READY_TO_INVOICE},
    FinancialStage.READY_TO_INVOICE: {FinancialStage.IN_PRODUCTION, FinancialStage.INVOICED},
    FinancialStage.INVOICED: {FinancialStage.COMPLETED},
    FinancialStage.COMPLETED: set(),
}


def is_valid_financial_transition(current: FinancialStage, new: FinancialStage) -> bool:
    """
    Check if a financial stage edge exists.

    Rules:
    - in_production -> ready_to_invoice
    - ready_to_invoice -> in_production (explicit unmark only)
    - ready_to_invoice -> invoiced
    - invoiced -> completed
    - completed is terminal
    """
    return new in FINANCIAL_TRANSITIONS[current]


class OrderResponse(BaseSchema, TimestampMixin):
    """Order fields relevant to fulfillment."""

    id: str
    order_number: str
    customer_id: Optional[str] = None
    total_amount: Decimal = Decimal("0")
    status: Optional[str] = None
    financial_stage: FinancialStage = FinancialStage.IN_PRODUCTION
    ready_to_invoice: bool = False
    production_progress: Optional[float] = None
    production_stage: Optional[str] = None


class OrderFinancialSummary(BaseSchema):
    """Read model consumed by finance dashboards."""

    order_id: str
    order_number: str
    financial_stage: FinancialStage
    ready_to_invoice: bool
    production_progress_percent: float
    current_stage: Optional[ProductionStage] = None


class MarkReadyResult(BaseSchema):
    """Outcome of marking an order ready to invoice."""

    order_id: str
    marked_ready: bool = True
    already_ready: bool = False
    financial_stage: FinancialStage


class FinancialTransitionResult(BaseSchema):
    """Outcome of a manual financial stage change."""

    order_id: str
    previous_stage: FinancialStage
    financial_stage: FinancialStage
    changed: bool = True


class PipelineStatistics(BaseSchema):
    """Order counts per financial stage."""

    total_orders: int = 0
    in_production: int = 0
    ready_to_invoice: int = 0
    invoiced: int = 0
    completed: int = 0
    total_pipeline_value: Decimal = Decimal("0")


class PipelineResponse(BaseSchema):
    """Financial pipeline view."""

    orders: list[OrderResponse]
    statistics: PipelineStatistics
    last_updated: datetime = Field(default_factory=datetime.utcnow)
