"""
Finance API routes: financial stage, invoicing and the invoice queue.
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional
import structlog

from models.permission import ActorContext
from models.order import (
    FinancialStage,
    OrderFinancialSummary,
    MarkReadyResult,
    FinancialTransitionResult,
    PipelineResponse,
)
from models.invoice import (
    QueueInvoiceResult,
    QueueOutcome,
    QueueStatusResponse,
    InvoiceQueueEntryResponse,
    BulkInvoiceRequest,
    BulkInvoiceResponse,
    SyncLogResponse,
)
from services.financial_stage_service import get_financial_stage_service
from services.invoice_queue_service import get_invoice_queue_service
from services.permission_service import FINANCE_READ, FINANCE_CREATE, FINANCE_UPDATE
from routes.deps import handle_error, require_scopes

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/finance", tags=["Finance"])


# ===================
# PIPELINE
# ===================

@router.get("/pipeline", response_model=PipelineResponse)
async def get_pipeline(
    financial_stage: Optional[FinancialStage] = Query(None, description="Filter by financial stage"),
    limit: int = Query(200, ge=1, le=1000),
    actor: ActorContext = Depends(require_scopes(FINANCE_READ)),
):
    """Orders by financial stage with counts and open value."""
    try:
        service = get_financial_stage_service()
        return service.pipeline(financial_stage=financial_stage, limit=limit)

    except Exception as e:
        return handle_error(e)


@router.get("/orders/{order_id}/summary", response_model=OrderFinancialSummary)
async def get_order_summary(
    order_id: str,
    actor: ActorContext = Depends(require_scopes(FINANCE_READ)),
):
    """Financial stage and production progress of one order."""
    try:
        service = get_financial_stage_service()
        return service.order_summary(order_id)

    except Exception as e:
        return handle_error(e)


# ===================
# FINANCIAL STAGE
# ===================

@router.post("/orders/{order_id}/mark-ready", response_model=MarkReadyResult)
async def mark_ready(
    order_id: str,
    actor: ActorContext = Depends(require_scopes(FINANCE_UPDATE)),
):
    """
    Mark an order ready to invoice.

    Raises:
        404: Order not found
        409: Items not completed, QC locked, or already invoiced
    """
    try:
        service = get_financial_stage_service()
        result = service.mark_ready(order_id)

        logger.info("mark_ready_requested", order_id=order_id, user_id=actor.user_id)
        return result

    except Exception as e:
        return handle_error(e)


@router.post("/orders/{order_id}/unmark-ready", response_model=FinancialTransitionResult)
async def unmark_ready(
    order_id: str,
    actor: ActorContext = Depends(require_scopes(FINANCE_UPDATE)),
):
    """Move a ready order back to in_production."""
    try:
        service = get_financial_stage_service()
        return service.unmark_ready(order_id)

    except Exception as e:
        return handle_error(e)


@router.post("/orders/{order_id}/complete", response_model=FinancialTransitionResult)
async def complete_order(
    order_id: str,
    actor: ActorContext = Depends(require_scopes(FINANCE_UPDATE)),
):
    """Close out an invoiced order."""
    try:
        service = get_financial_stage_service()
        return service.mark_completed(order_id)

    except Exception as e:
        return handle_error(e)


# ===================
# INVOICING
# ===================

@router.post("/orders/{order_id}/queue-invoice", response_model=QueueInvoiceResult)
async def queue_invoice(
    order_id: str,
    actor: ActorContext = Depends(require_scopes(FINANCE_CREATE)),
):
    """
    Create the local invoice and queue it for the accounting system.

    Raises:
        404: Order not found
        409: Not ready to invoice, or already invoiced
    """
    try:
        service = get_invoice_queue_service()
        return service.queue_invoice(order_id)

    except Exception as e:
        return handle_error(e)


@router.post("/create-invoices", response_model=BulkInvoiceResponse)
async def create_invoices(
    data: BulkInvoiceRequest,
    actor: ActorContext = Depends(require_scopes(FINANCE_CREATE)),
):
    """
    Create invoices for several orders.

    Per-order failures are reported in the response, never as an error status.
    """
    try:
        service = get_invoice_queue_service()
        result = service.bulk_queue_invoices(data)

        logger.info(
            "bulk_invoices_requested",
            user_id=actor.user_id,
            created=result.summary.created,
            failed=result.summary.failed
        )
        return result

    except Exception as e:
        return handle_error(e)


# ===================
# QUEUE
# ===================

@router.get("/invoice-queue", response_model=QueueStatusResponse)
async def get_queue_status(
    order_id: Optional[str] = Query(None, description="Limit to one order"),
    actor: ActorContext = Depends(require_scopes(FINANCE_READ)),
):
    """Pending entry count and latest sync log per order."""
    try:
        service = get_invoice_queue_service()
        return service.queue_status(order_id)

    except Exception as e:
        return handle_error(e)


@router.get("/invoice-queue/pending", response_model=list[InvoiceQueueEntryResponse])
async def list_pending_entries(
    limit: int = Query(50, ge=1, le=500),
    actor: ActorContext = Depends(require_scopes(FINANCE_READ)),
):
    """Pending entries in processing order."""
    try:
        service = get_invoice_queue_service()
        return service.list_pending(limit=limit)

    except Exception as e:
        return handle_error(e)


@router.post("/invoice-queue/{entry_id}/outcome", response_model=SyncLogResponse)
async def record_queue_outcome(
    entry_id: str,
    data: QueueOutcome,
    actor: ActorContext = Depends(require_scopes(FINANCE_UPDATE)),
):
    """
    Record the accounting worker's result for one entry.

    Raises:
        404: Entry not found
        409: Entry already processed
    """
    try:
        service = get_invoice_queue_service()
        return service.record_outcome(entry_id, data)

    except Exception as e:
        return handle_error(e)
