"""
Custom exception classes for the application.

Error families map onto HTTP status codes:
    validation (422), guard violation (409), conflict (409),
    downstream (503), internal (500), permission (403).
"""

from typing import Optional, Any
from datetime import datetime


class AppError(Exception):
    """
    Base exception for all application errors.
    
    All custom exceptions inherit from this.
    
    Attributes:
        code: Error code (e.g., "PRODUCT_NOT_FOUND")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """
    
    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.utcnow().isoformat()
        super().__init__(message)
    
    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""
    
    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""
    
    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""
    
    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class DuplicateError(ConflictError):
    """Duplicate resource (409)."""
    
    def __init__(
        self,
        resource: str,
        field: str,
        value: str
    ):
        super().__init__(
            code=f"{resource.upper()}_{field.upper()}_EXISTS",
            message=f"{resource} with this {field} already exists",
            details={field: value}
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""
    
    def __init__(
        self,
        service: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=503,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """
    Database operation failed (500).

    The store's own message is kept on `internal_message` for logging and
    never placed in the response body.
    """

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )
        self.internal_message = message


class GuardViolationError(AppError):
    """A state transition precondition does not hold (409)."""

    def __init__(
        self,
        message: str,
        code: str = "GUARD_VIOLATION",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class PermissionDeniedError(AppError):
    """Actor lacks the scopes an operation requires (403)."""

    def __init__(self, reason: str, required_scopes: list[str]):
        super().__init__(
            code="PERMISSION_DENIED",
            message=reason,
            status_code=403,
            details={"required_scopes": required_scopes}
        )


# ===================
# NOT FOUND ERRORS
# ===================

class OrderNotFoundError(NotFoundError):
    """Order not found."""

    def __init__(self, order_id: str):
        super().__init__(
            resource="Order",
            identifier=order_id,
            code="ORDER_NOT_FOUND"
        )


class ProductionItemNotFoundError(NotFoundError):
    """Production item not found."""

    def __init__(self, item_id: str):
        super().__init__(
            resource="Production item",
            identifier=item_id,
            code="PRODUCTION_ITEM_NOT_FOUND"
        )


class InspectionNotFoundError(NotFoundError):
    """QC inspection not found."""

    def __init__(self, inspection_id: str):
        super().__init__(
            resource="QC inspection",
            identifier=inspection_id,
            code="QC_INSPECTION_NOT_FOUND"
        )


class QueueEntryNotFoundError(NotFoundError):
    """Invoice queue entry not found."""

    def __init__(self, entry_id: str):
        super().__init__(
            resource="Queue entry",
            identifier=entry_id,
            code="QUEUE_ENTRY_NOT_FOUND"
        )


class ShippingQuoteNotFoundError(NotFoundError):
    """Shipping quote not found."""

    def __init__(self, quote_id: str):
        super().__init__(
            resource="Shipping quote",
            identifier=quote_id,
            code="SHIPPING_QUOTE_NOT_FOUND"
        )


# ===================
# STAGE LEDGER ERRORS
# ===================

class InvalidStageTransitionError(GuardViolationError):
    """Stage advance is not to the next stage in the sequence."""

    def __init__(self, current_stage: str, new_stage: str, expected_stage: Optional[str]):
        if expected_stage is None:
            message = f"Cannot advance from {current_stage}: it is the final stage"
        else:
            message = f"Cannot advance from {current_stage} to {new_stage}; next stage is {expected_stage}"
        super().__init__(
            code="INVALID_STAGE_TRANSITION",
            message=message,
            details={
                "current_stage": current_stage,
                "new_stage": new_stage,
                "expected_stage": expected_stage,
            }
        )


class StageBlockedByQCError(GuardViolationError):
    """Item has an outstanding QC lock and cannot pass quality_check."""

    def __init__(self, item_id: str, current_stage: str, new_stage: str, inspection_id: Optional[str] = None):
        super().__init__(
            code="STAGE_BLOCKED_BY_QC",
            message=f"Item is blocked by QC: a passing reinspection is required before advancing to {new_stage}",
            details={
                "item_id": item_id,
                "current_stage": current_stage,
                "new_stage": new_stage,
                "blocking_inspection_id": inspection_id,
            }
        )


class ProgressRegressionError(ValidationError):
    """Progress update would move backwards within a stage."""

    def __init__(self, item_id: str, current_progress: int, new_progress: int):
        super().__init__(
            code="PROGRESS_REGRESSION",
            message=f"Progress cannot decrease from {current_progress} to {new_progress}",
            details={
                "item_id": item_id,
                "current_progress": current_progress,
                "new_progress": new_progress,
            }
        )


# ===================
# FINANCIAL STAGE ERRORS
# ===================

class ItemsNotCompletedError(GuardViolationError):
    """Order has production items that are not completed (or are QC locked)."""

    def __init__(self, order_id: str, incomplete_item_ids: list[str], locked_item_ids: Optional[list[str]] = None):
        locked_item_ids = locked_item_ids or []
        count = len(incomplete_item_ids)
        if count:
            message = f"{count} production items not completed"
        else:
            message = f"{len(locked_item_ids)} production items awaiting QC reinspection"
        super().__init__(
            code="ITEMS_NOT_COMPLETED",
            message=message,
            details={
                "order_id": order_id,
                "incomplete_count": count,
                "incomplete_item_ids": incomplete_item_ids,
                "qc_locked_item_ids": locked_item_ids,
            }
        )


class InvalidFinancialTransitionError(GuardViolationError):
    """Financial stage edge does not exist or its guard is unmet."""

    def __init__(self, current_stage: str, new_stage: str, reason: str):
        super().__init__(
            code="INVALID_FINANCIAL_TRANSITION",
            message=f"Cannot move order from {current_stage} to {new_stage}: {reason}",
            details={
                "current_stage": current_stage,
                "new_stage": new_stage,
                "reason": reason,
            }
        )


class OrderNotReadyError(GuardViolationError):
    """Order is not flagged ready to invoice."""

    def __init__(self, order_id: str):
        super().__init__(
            code="ORDER_NOT_READY_TO_INVOICE",
            message="Order is not ready to invoice",
            details={"order_id": order_id}
        )


# ===================
# INVOICE ERRORS
# ===================

class InvoiceExistsError(ConflictError):
    """Order already has a non-void invoice."""

    def __init__(self, order_id: str, invoice_id: Optional[str] = None):
        super().__init__(
            code="INVOICE_EXISTS",
            message="Order already has an invoice",
            details={"order_id": order_id, "invoice_id": invoice_id}
        )


class InvoiceQueueEntryExistsError(ConflictError):
    """A pending queue entry for this order and action already exists."""

    def __init__(self, order_id: str, action: str = "create"):
        super().__init__(
            code="INVOICE_QUEUE_ENTRY_EXISTS",
            message="Invoice creation is already queued for this order",
            details={"order_id": order_id, "action": action}
        )


class InvoiceNumberCollisionError(DuplicateError):
    """Generated invoice number is already taken."""

    def __init__(self, invoice_number: str):
        super().__init__(
            resource="Invoice",
            field="invoice_number",
            value=invoice_number
        )


class QueueEntryNotPendingError(ConflictError):
    """Outcome reported for a queue entry that was already consumed."""

    def __init__(self, entry_id: str, status: str):
        super().__init__(
            code="QUEUE_ENTRY_NOT_PENDING",
            message=f"Queue entry is already {status}",
            details={"entry_id": entry_id, "status": status}
        )


# ===================
# SHIPPING QUOTE ERRORS
# ===================

class InvalidQuoteTransitionError(GuardViolationError):
    """Quote action attempted from a status that does not allow it."""

    def __init__(self, action: str, current_status: str, required_statuses: list[str]):
        required = " or ".join(required_statuses)
        super().__init__(
            code="INVALID_TRANSITION",
            message=f"Quote must be in {required} status to {action}",
            details={
                "action": action,
                "current_status": current_status,
                "required_status": required_statuses,
            }
        )


class TrackingUnavailableError(GuardViolationError):
    """Quote has no tracking number to query."""

    def __init__(self, quote_id: str):
        super().__init__(
            code="TRACKING_UNAVAILABLE",
            message="No tracking number available for this quote",
            details={"quote_id": quote_id}
        )


# ===================
# INTEGRATION ERRORS
# ===================

class AccountingSyncError(ExternalServiceError):
    """Accounting system call failed."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            service="accounting",
            message=message,
            details=details
        )


class CarrierTrackingError(ExternalServiceError):
    """Carrier tracking call failed."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            service="carrier",
            message=message,
            details=details
        )


def is_unique_violation(error: Exception) -> bool:
    """True if a store error is a Postgres unique_violation (SQLSTATE 23505)."""
    if getattr(error, "code", None) == "23505":
        return True
    return "duplicate key" in str(error).lower()
