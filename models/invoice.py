"""
Invoice, invoice queue and sync log schemas.

Sync log details are a tagged union keyed on `kind`, one shape per action
type, so readers never have to guess at the payload.
"""

from pydantic import BaseModel, Field
from typing import Annotated, Literal, Optional, Union
from enum import Enum
from datetime import date, datetime
from decimal import Decimal

from models.base import BaseSchema, TimestampMixin


class InvoiceStatus(str, Enum):
    """Invoice status values."""
    PENDING = "pending"
    SENT = "sent"
    PAID = "paid"
    VOID = "void"


class QueueEntryStatus(str, Enum):
    """Invoice queue entry processing status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncLogStatus(str, Enum):
    """Outcome recorded on a sync log."""
    SUCCESS = "success"
    WARNING = "warning"
    FAILURE = "failure"


class SyncType(str, Enum):
    """Action a sync log describes."""
    BULK_INVOICE_CREATION = "bulk_invoice_creation"
    SINGLE_INVOICE_CREATION = "single_invoice_creation"
    MANUAL_READY_MARKING = "manual_ready_marking"


# ===================
# INVOICES
# ===================

class InvoiceResponse(BaseSchema, TimestampMixin):
    """Invoice record."""

    id: str
    order_id: str
    customer_id: Optional[str] = None
    invoice_number: str
    total_amount: Decimal = Decimal("0")
    balance_due: Decimal = Decimal("0")
    due_date: Optional[date] = None
    status: InvoiceStatus = InvoiceStatus.PENDING
    sent_to_accounting: bool = False
    external_invoice_id: Optional[str] = None


class InvoiceQueueEntryResponse(BaseSchema, TimestampMixin):
    """Invoice queue entry."""

    id: str
    entity_type: str = "invoice"
    entity_id: str
    action: str = "create"
    priority: int = 3
    scheduled_for: datetime
    status: QueueEntryStatus = QueueEntryStatus.PENDING
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None


class QueueInvoiceResult(BaseSchema):
    """Outcome of queueing one order for invoicing."""

    order_id: str
    invoice: InvoiceResponse
    queue_entry: InvoiceQueueEntryResponse
    already_queued: bool = False


class QueueOutcome(BaseSchema):
    """Result reported by the queue worker for one entry."""

    success: bool
    external_invoice_id: Optional[str] = Field(None, max_length=100)
    error: Optional[str] = Field(None, max_length=2000)


# ===================
# BULK INVOICING
# ===================

class BulkInvoiceRequest(BaseSchema):
    """Create invoices for several orders at once."""

    order_ids: list[str] = Field(..., min_length=1)
    create_in_accounting: bool = True


class CreatedInvoice(BaseModel):
    """One successfully created local invoice."""
    order_id: str
    order_number: str
    invoice_id: str
    invoice_number: str
    total_amount: Decimal


class InvoiceError(BaseModel):
    """One order that could not be invoiced, with the precondition it failed."""
    order_id: str
    order_number: Optional[str] = None
    code: str
    error: str
    invoice_id: Optional[str] = None


class AccountingResult(BaseModel):
    """Accounting system outcome for one local invoice."""
    order_id: str
    invoice_id: str
    success: bool
    external_invoice_id: Optional[str] = None
    error: Optional[str] = None


class BulkInvoiceSummary(BaseModel):
    requested: int
    created: int
    failed: int
    accounting_enabled: bool


# ===================
# SYNC LOG DETAILS
# ===================

class BulkInvoiceResult(BaseModel):
    """Detail payload of a bulk invoice creation."""
    kind: Literal["bulk_invoice"] = "bulk_invoice"
    requested_orders: int
    valid_orders: int
    created_invoices: list[CreatedInvoice] = Field(default_factory=list)
    local_errors: list[InvoiceError] = Field(default_factory=list)
    validation_errors: list[InvoiceError] = Field(default_factory=list)
    accounting_results: list[AccountingResult] = Field(default_factory=list)


class SingleInvoiceResult(BaseModel):
    """Detail payload of one queue entry's outcome."""
    kind: Literal["single_invoice"] = "single_invoice"
    order_id: str
    queue_entry_id: str
    invoice_id: Optional[str] = None
    invoice_number: Optional[str] = None
    external_invoice_id: Optional[str] = None
    error: Optional[str] = None


class ReadyMarkingResult(BaseModel):
    """Detail payload of a manual ready marking."""
    kind: Literal["ready_marking"] = "ready_marking"
    order_id: str
    item_count: int


SyncLogDetails = Annotated[
    Union[BulkInvoiceResult, SingleInvoiceResult, ReadyMarkingResult],
    Field(discriminator="kind"),
]


class SyncLogResponse(BaseSchema):
    """Append-only audit record of one queue/action execution."""

    id: str
    sync_type: SyncType
    status: SyncLogStatus
    message: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    details: Optional[SyncLogDetails] = None
    synced_at: datetime


class BulkInvoiceResponse(BaseSchema):
    """Response of bulk invoice creation."""

    summary: BulkInvoiceSummary
    created_invoices: list[CreatedInvoice]
    local_errors: list[InvoiceError]
    validation_errors: list[InvoiceError]
    accounting_results: list[AccountingResult]
    sync_log: SyncLogResponse


class QueueStatusResponse(BaseSchema):
    """Invoice queue status read model."""

    pending_count: int
    last_sync_logs: dict[str, SyncLogResponse] = Field(
        default_factory=dict,
        description="Most recent sync log per order id"
    )
