"""
Shipping quote schemas and the quote action table.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional
from enum import Enum
from datetime import datetime
from decimal import Decimal

from models.base import BaseSchema


class QuoteStatus(str, Enum):
    """Shipping quote status values."""
    PENDING = "pending"
    QUOTED = "quoted"
    APPROVED = "approved"
    REJECTED = "rejected"
    BOOKED = "booked"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class QuoteAction(str, Enum):
    """Actions accepted by the quote state machine."""
    APPROVE = "approve"
    REJECT = "reject"
    BOOK = "book"
    TRACK = "track"
    SHIP = "ship"
    DELIVER = "deliver"


# action -> (statuses the quote must be in, status it moves to)
# TRACK is a read: any status, no change, but needs a tracking number.
QUOTE_TRANSITIONS = {
    QuoteAction.APPROVE: ((QuoteStatus.QUOTED,), QuoteStatus.APPROVED),
    QuoteAction.REJECT: ((QuoteStatus.QUOTED, QuoteStatus.PENDING), QuoteStatus.REJECTED),
    QuoteAction.BOOK: ((QuoteStatus.APPROVED,), QuoteStatus.BOOKED),
    QuoteAction.SHIP: ((QuoteStatus.BOOKED,), QuoteStatus.SHIPPED),
    QuoteAction.DELIVER: ((QuoteStatus.SHIPPED,), QuoteStatus.DELIVERED),
}

# Statuses at which a tracking number must be present
TRACKED_STATUSES = frozenset({QuoteStatus.BOOKED, QuoteStatus.SHIPPED, QuoteStatus.DELIVERED})


def is_valid_quote_action(action: QuoteAction, current: QuoteStatus) -> bool:
    """Check whether `action` may be performed on a quote in `current` status."""
    if action == QuoteAction.TRACK:
        return True
    required, _ = QUOTE_TRANSITIONS[action]
    return current in required


# ===================
# QUOTE SCHEMAS
# ===================

class ShippingQuoteCreate(BaseSchema):
    """Request a carrier quote for an order."""

    order_id: str = Field(..., min_length=1)
    customer_id: Optional[str] = None
    service_type: str = Field(..., min_length=1, max_length=50)
    carrier: Optional[str] = Field(None, max_length=50)
    origin_address: str = Field(..., min_length=1, max_length=500)
    destination_address: str = Field(..., min_length=1, max_length=500)
    dimensions: str = Field(..., min_length=1, max_length=100)
    weight_lbs: Decimal = Field(..., gt=0)
    declared_value: Decimal = Field(default=Decimal("0"), ge=0)
    transit_time_days: Optional[int] = Field(None, ge=1, le=90)
    special_instructions: Optional[str] = Field(None, max_length=1000)
    created_by: Optional[str] = Field(None, max_length=100)

    @field_validator("weight_lbs", "declared_value")
    @classmethod
    def round_amount(cls, v: Decimal) -> Decimal:
        """Round to 2 decimal places."""
        return round(v, 2)


class CarrierQuoteUpdate(BaseSchema):
    """Carrier's price and transit estimate for a pending quote."""

    quoted_cost: Decimal = Field(..., ge=0)
    transit_time_days: int = Field(..., ge=1, le=90)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("quoted_cost")
    @classmethod
    def round_cost(cls, v: Decimal) -> Decimal:
        """Round to 2 decimal places."""
        return round(v, 2)


class QuoteActionRequest(BaseSchema):
    """Perform an action on a quote."""

    action: QuoteAction
    notes: Optional[str] = Field(None, max_length=1000)


class ShippingQuoteResponse(BaseSchema):
    """Full quote row plus denormalized display fields."""

    id: str
    quote_number: str
    order_id: str
    customer_id: Optional[str] = None
    status: QuoteStatus
    carrier: Optional[str] = None
    service_type: Optional[str] = None
    origin_address: Optional[str] = None
    destination_address: Optional[str] = None
    dimensions: Optional[str] = None
    weight_lbs: Optional[Decimal] = None
    declared_value: Optional[Decimal] = None
    quoted_cost: Optional[Decimal] = None
    transit_time_days: Optional[int] = None
    special_instructions: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier_booking_id: Optional[str] = None
    pickup_date: Optional[datetime] = None
    delivery_date: Optional[datetime] = None
    actual_delivery_date: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_date: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    # Denormalized
    customer_name: str = "Unknown Customer"
    order_number: str = "N/A"


class ShippingQuoteActionResponse(BaseSchema):
    """Audit row for one quote action."""

    id: str
    quote_id: str
    action: str  # a QuoteAction value, or "quote" for carrier pricing
    performed_by: str
    notes: Optional[str] = None
    previous_status: QuoteStatus
    new_status: QuoteStatus
    created_at: datetime


# ===================
# TRACKING
# ===================

class TrackingEvent(BaseModel):
    date: datetime
    status: str
    location: Optional[str] = None


class TrackingSnapshot(BaseModel):
    """Carrier tracking state for one tracking number."""
    tracking_number: str
    status: str
    location: Optional[str] = None
    estimated_delivery: Optional[str] = None
    last_update: Optional[datetime] = None
    events: list[TrackingEvent] = Field(default_factory=list)


class QuoteActionResult(BaseSchema):
    """Outcome of perform_action: an updated quote, or a tracking snapshot."""

    action: QuoteAction
    message: str
    quote: Optional[ShippingQuoteResponse] = None
    tracking: Optional[TrackingSnapshot] = None
