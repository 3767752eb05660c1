"""
Custom exceptions module.

Re-exports every application error so callers can
`from exceptions import SomeError`.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    DuplicateError,
    ExternalServiceError,
    DatabaseError,
    GuardViolationError,
    PermissionDeniedError,
    is_unique_violation,

    # Not found
    OrderNotFoundError,
    ProductionItemNotFoundError,
    InspectionNotFoundError,
    QueueEntryNotFoundError,
    ShippingQuoteNotFoundError,

    # Stage ledger
    InvalidStageTransitionError,
    StageBlockedByQCError,
    ProgressRegressionError,

    # Financial stage
    ItemsNotCompletedError,
    InvalidFinancialTransitionError,
    OrderNotReadyError,

    # Invoices
    InvoiceExistsError,
    InvoiceQueueEntryExistsError,
    InvoiceNumberCollisionError,
    QueueEntryNotPendingError,

    # Shipping quotes
    InvalidQuoteTransitionError,
    TrackingUnavailableError,

    # Integrations
    AccountingSyncError,
    CarrierTrackingError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "DuplicateError",
    "ExternalServiceError",
    "DatabaseError",
    "GuardViolationError",
    "PermissionDeniedError",
    "is_unique_violation",

    # Not found
    "OrderNotFoundError",
    "ProductionItemNotFoundError",
    "InspectionNotFoundError",
    "QueueEntryNotFoundError",
    "ShippingQuoteNotFoundError",

    # Stage ledger
    "InvalidStageTransitionError",
    "StageBlockedByQCError",
    "ProgressRegressionError",

    # Financial stage
    "ItemsNotCompletedError",
    "InvalidFinancialTransitionError",
    "OrderNotReadyError",

    # Invoices
    "InvoiceExistsError",
    "InvoiceQueueEntryExistsError",
    "InvoiceNumberCollisionError",
    "QueueEntryNotPendingError",

    # Shipping quotes
    "InvalidQuoteTransitionError",
    "TrackingUnavailableError",

    # Integrations
    "AccountingSyncError",
    "CarrierTrackingError",
]
