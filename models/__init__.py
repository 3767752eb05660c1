"""
Pydantic models for validation and serialization.
"""

from models.base import BaseSchema, TimestampMixin
from models.production import (
    ProductionStage,
    STAGE_SEQUENCE,
    STAGE_ORDER,
    next_stage,
    is_valid_stage_transition,
    is_terminal_stage,
    is_past_quality_check,
    item_absolute_progress,
    StageHistoryEntry,
    ProductionItemCreate,
    ProductionItemsCreate,
    StageAdvance,
    ProgressUpdate,
    ProductionItemResponse,
    OrderProgress,
)
from models.quality import (
    QCInspectionCreate,
    QCInspectionUpdate,
    QCInspectionResponse,
    inspection_blocks_item,
    inspection_clears_lock,
)
from models.order import (
    FinancialStage,
    is_valid_financial_transition,
    OrderResponse,
    OrderFinancialSummary,
    MarkReadyResult,
    FinancialTransitionResult,
    PipelineStatistics,
    PipelineResponse,
)
from models.invoice import (
    InvoiceStatus,
    QueueEntryStatus,
    SyncLogStatus,
    SyncType,
    InvoiceResponse,
    InvoiceQueueEntryResponse,
    QueueInvoiceResult,
    QueueOutcome,
    BulkInvoiceRequest,
    BulkInvoiceResponse,
    BulkInvoiceSummary,
    CreatedInvoice,
    InvoiceError,
    AccountingResult,
    BulkInvoiceResult,
    SingleInvoiceResult,
    ReadyMarkingResult,
    SyncLogResponse,
    QueueStatusResponse,
)
from models.shipping_quote import (
    QuoteStatus,
    QuoteAction,
    QUOTE_TRANSITIONS,
    is_valid_quote_action,
    ShippingQuoteCreate,
    CarrierQuoteUpdate,
    QuoteActionRequest,
    ShippingQuoteResponse,
    ShippingQuoteActionResponse,
    TrackingEvent,
    TrackingSnapshot,
    QuoteActionResult,
)
from models.permission import ActorContext, PermissionResult

__all__ = [
    # Base
    "BaseSchema",
    "TimestampMixin",
    # Production
    "ProductionStage",
    "STAGE_SEQUENCE",
    "STAGE_ORDER",
    "next_stage",
    "is_valid_stage_transition",
    "is_terminal_stage",
    "is_past_quality_check",
    "item_absolute_progress",
    "StageHistoryEntry",
    "ProductionItemCreate",
    "ProductionItemsCreate",
    "StageAdvance",
    "ProgressUpdate",
    "ProductionItemResponse",
    "OrderProgress",
    # Quality
    "QCInspectionCreate",
    "QCInspectionUpdate",
    "QCInspectionResponse",
    "inspection_blocks_item",
    "inspection_clears_lock",
    # Order
    "FinancialStage",
    "is_valid_financial_transition",
    "OrderResponse",
    "OrderFinancialSummary",
    "MarkReadyResult",
    "FinancialTransitionResult",
    "PipelineStatistics",
    "PipelineResponse",
    # Invoice
    "InvoiceStatus",
    "QueueEntryStatus",
    "SyncLogStatus",
    "SyncType",
    "InvoiceResponse",
    "InvoiceQueueEntryResponse",
    "QueueInvoiceResult",
    "QueueOutcome",
    "BulkInvoiceRequest",
    "BulkInvoiceResponse",
    "BulkInvoiceSummary",
    "CreatedInvoice",
    "InvoiceError",
    "AccountingResult",
    "BulkInvoiceResult",
    "SingleInvoiceResult",
    "ReadyMarkingResult",
    "SyncLogResponse",
    "QueueStatusResponse",
    # Shipping
    "QuoteStatus",
    "QuoteAction",
    "QUOTE_TRANSITIONS",
    "is_valid_quote_action",
    "ShippingQuoteCreate",
    "CarrierQuoteUpdate",
    "QuoteActionRequest",
    "ShippingQuoteResponse",
    "ShippingQuoteActionResponse",
    "TrackingEvent",
    "TrackingSnapshot",
    "QuoteActionResult",
    # Permission
    "ActorContext",
    "PermissionResult",
]
