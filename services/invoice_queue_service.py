"""
Invoice queue service.

Turns ready orders into local invoices plus queue entries for the
accounting worker, creates invoices in bulk, and records queue outcomes.
The local invoice is always created first; the accounting system only
mirrors it.
"""

from typing import Optional
from datetime import datetime, timedelta
from decimal import Decimal
import time
import structlog

from config import settings, get_supabase_client
from integrations.accounting import AccountingClient, get_accounting_client
from models.order import FinancialStage, OrderResponse
from models.invoice import (
    InvoiceResponse,
    InvoiceStatus,
    InvoiceQueueEntryResponse,
    QueueEntryStatus,
    QueueInvoiceResult,
    QueueOutcome,
    QueueStatusResponse,
    BulkInvoiceRequest,
    BulkInvoiceResponse,
    BulkInvoiceSummary,
    BulkInvoiceResult,
    SingleInvoiceResult,
    CreatedInvoice,
    InvoiceError,
    AccountingResult,
    SyncLogResponse,
    SyncLogStatus,
    SyncType,
)
from services.financial_stage_service import FinancialStageService, get_financial_stage_service
from services.stage_ledger_service import StageLedgerService, get_stage_ledger_service
from services.sync_log_service import SyncLogService
from exceptions import (
    AppError,
    DatabaseError,
    GuardViolationError,
    ItemsNotCompletedError,
    InvalidFinancialTransitionError,
    InvoiceExistsError,
    InvoiceNumberCollisionError,
    InvoiceQueueEntryExistsError,
    OrderNotReadyError,
    QueueEntryNotFoundError,
    QueueEntryNotPendingError,
    is_unique_violation,
)

logger = structlog.get_logger(__name__)

INTERNAL_ERROR_CODE = "INTERNAL_ERROR"
INTERNAL_ERROR_MESSAGE = "An unexpected error occurred"

QUEUE_ENTITY_TYPE = "invoice"
QUEUE_ACTION = "create"
OPEN_ENTRY_STATUSES = (QueueEntryStatus.PENDING, QueueEntryStatus.PROCESSING)


def generate_invoice_number(order_number: str, now_ms: Optional[int] = None) -> str:
    """INV-{order number}-{last 6 digits of the epoch milliseconds}."""
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"INV-{order_number}-{str(millis)[-6:]}"


class InvoiceQueueService:
    """
    Invoice queue business logic.

    Handles single and bulk invoice creation, the accounting hand-off,
    and queue outcomes.
    """

    def __init__(
        self,
        financial: Optional[FinancialStageService] = None,
        ledger: Optional[StageLedgerService] = None,
        sync_logs: Optional[SyncLogService] = None,
        accounting: Optional[AccountingClient] = None
    ):
        self.db = get_supabase_client()
        self.invoices_table = "invoices"
        self.queue_table = "sync_queue"
        self.financial = financial or FinancialStageService()
        self.ledger = ledger or StageLedgerService()
        self.sync_logs = sync_logs or self.financial.sync_logs
        self.accounting = accounting or AccountingClient()

    # ===================
    # READ OPERATIONS
    # ===================

    def get_entry(self, entry_id: str) -> InvoiceQueueEntryResponse:
        """
        Get a queue entry by ID.

        Raises:
            QueueEntryNotFoundError: If entry doesn't exist
        """
        try:
            result = (
                self.db.table(self.queue_table)
                .select("*")
                .eq("id", entry_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get_queue_entry_failed", entry_id=entry_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        if not result.data:
            raise QueueEntryNotFoundError(entry_id)

        return self._entry_from_row(result.data[0])

    def list_pending(self, limit: int = 50) -> list[InvoiceQueueEntryResponse]:
        """Pending entries in processing order: priority, then schedule."""
        try:
            result = (
                self.db.table(self.queue_table)
                .select("*")
                .eq("entity_type", QUEUE_ENTITY_TYPE)
                .eq("status", QueueEntryStatus.PENDING.value)
                .order("priority")
                .order("scheduled_for")
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.error("list_pending_entries_failed", error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        return [self._entry_from_row(row) for row in result.data]

    def queue_status(self, order_id: Optional[str] = None) -> QueueStatusResponse:
        """Pending entry count and the most recent sync log per order."""
        try:
            query = (
                self.db.table(self.queue_table)
                .select("id", count="exact")
                .eq("entity_type", QUEUE_ENTITY_TYPE)
                .eq("status", QueueEntryStatus.PENDING.value)
            )
            if order_id:
                query = query.eq("entity_id", order_id)

            result = query.execute()
        except Exception as e:
            logger.error("get_queue_status_failed", error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        pending_count = result.count if result.count is not None else len(result.data)

        if order_id:
            latest = self.sync_logs.latest_for_entity("order", order_id)
            last_logs = {order_id: latest} if latest else {}
        else:
            last_logs = self.sync_logs.latest_by_entity("order")

        return QueueStatusResponse(pending_count=pending_count, last_sync_logs=last_logs)

    # ===================
    # SINGLE ORDER
    # ===================

    def queue_invoice(self, order_id: str) -> QueueInvoiceResult:
        """
        Create the local invoice for a ready order and queue it for accounting.

        Repeating the call for an order that is already queued returns the
        existing invoice and entry.

        Raises:
            OrderNotFoundError: If order doesn't exist
            OrderNotReadyError: If the order is not flagged ready to invoice
            InvoiceExistsError: If the order was already invoiced
            InvoiceQueueEntryExistsError: If an entry exists without an invoice
        """
        order = self.financial.get_order(order_id)
        invoices = self.financial.get_active_invoices(order_id)
        entry = self._get_open_entry(order_id)

        logger.info(
            "queueing_invoice",
            order_id=order_id,
            ready_to_invoice=order.ready_to_invoice,
            has_invoice=bool(invoices),
            has_entry=entry is not None
        )

        ready = order.ready_to_invoice and order.financial_stage == FinancialStage.READY_TO_INVOICE

        if invoices:
            invoice = self._invoice_from_row(invoices[0])
            if entry:
                return QueueInvoiceResult(
                    order_id=order_id,
                    invoice=invoice,
                    queue_entry=entry,
                    already_queued=True,
                )
            if not ready:
                raise InvoiceExistsError(order_id, invoice.id)
            # Invoice exists but the entry was never written, or its last run failed
            logger.warning("requeueing_existing_invoice", order_id=order_id, invoice_id=invoice.id)
            self.ledger.mark_invoiced(order_id, invoice.id)
        else:
            if entry:
                raise InvoiceQueueEntryExistsError(order_id, QUEUE_ACTION)
            if not ready:
                raise OrderNotReadyError(order_id)
            invoice = self._create_invoice(order)
            self.ledger.mark_invoiced(order_id, invoice.id)

        entry = self._enqueue(order_id)
        self._set_ready_flag(order_id, False)

        logger.info(
            "invoice_queued",
            order_id=order_id,
            invoice_number=invoice.invoice_number,
            entry_id=entry.id
        )

        return QueueInvoiceResult(order_id=order_id, invoice=invoice, queue_entry=entry)

    def record_outcome(self, entry_id: str, outcome: QueueOutcome) -> SyncLogResponse:
        """
        Record the worker's result for one queue entry.

        Success marks the invoice sent and moves the order to invoiced.
        Failure re-flags the order ready so it can be queued again.

        Raises:
            QueueEntryNotFoundError: If entry doesn't exist
            QueueEntryNotPendingError: If the entry was already consumed
        """
        entry = self.get_entry(entry_id)
        if entry.status not in OPEN_ENTRY_STATUSES:
            raise QueueEntryNotPendingError(entry_id, entry.status.value)

        order_id = entry.entity_id
        invoices = self.financial.get_active_invoices(order_id)
        invoice = self._invoice_from_row(invoices[0]) if invoices else None

        details = SingleInvoiceResult(
            order_id=order_id,
            queue_entry_id=entry_id,
            invoice_id=invoice.id if invoice else None,
            invoice_number=invoice.invoice_number if invoice else None,
            external_invoice_id=outcome.external_invoice_id,
            error=outcome.error,
        )

        logger.info("recording_queue_outcome", entry_id=entry_id, order_id=order_id, success=outcome.success)

        if outcome.success:
            self._finish_entry(entry, QueueEntryStatus.COMPLETED)
            if invoice:
                self._mark_sent(invoice.id, outcome.external_invoice_id)

            try:
                self.financial.mark_invoiced(order_id)
                status = SyncLogStatus.SUCCESS
                message = "Invoice created in accounting"
            except GuardViolationError as e:
                logger.warning("order_not_advanced_to_invoiced", order_id=order_id, error=e.message)
                details.error = e.message
                status = SyncLogStatus.WARNING
                message = f"Invoice created but order not advanced: {e.message}"
        else:
            self._finish_entry(entry, QueueEntryStatus.FAILED, outcome.error)
            self._set_ready_flag(order_id, True)
            status = SyncLogStatus.FAILURE
            message = f"Invoice creation failed: {outcome.error or 'unknown error'}"

        return self.sync_logs.record(
            SyncType.SINGLE_INVOICE_CREATION,
            status,
            message,
            details=details,
            entity_type="order",
            entity_id=order_id,
        )

    # ===================
    # BULK
    # ===================

    def bulk_queue_invoices(self, request: BulkInvoiceRequest) -> BulkInvoiceResponse:
        """
        Create invoices for several orders, one at a time.

        Each order is validated and invoiced independently; failures are
        collected and never stop the batch. Accounting calls happen after
        all local invoices exist. Exactly one sync log is written.
        """
        order_ids = list(dict.fromkeys(request.order_ids))

        logger.info(
            "bulk_invoice_started",
            requested=len(order_ids),
            create_in_accounting=request.create_in_accounting
        )

        validation_errors: list[InvoiceError] = []
        valid_orders: list[OrderResponse] = []

        for order_id in order_ids:
            order = None
            try:
                order = self.financial.get_order(order_id)
                self._validate_for_bulk(order)
                valid_orders.append(order)
            except AppError as e:
                validation_errors.append(InvoiceError(
                    order_id=order_id,
                    order_number=order.order_number if order else None,
                    code=e.code,
                    error=e.message,
                ))
            except Exception as e:
                logger.error(
                    "bulk_invoice_validation_crashed",
                    order_id=order_id,
                    error=str(e),
                    error_type=type(e).__name__
                )
                validation_errors.append(InvoiceError(
                    order_id=order_id,
                    order_number=order.order_number if order else None,
                    code=INTERNAL_ERROR_CODE,
                    error=INTERNAL_ERROR_MESSAGE,
                ))

        local_errors: list[InvoiceError] = []
        created: list[tuple[OrderResponse, InvoiceResponse]] = []

        for order in valid_orders:
            invoice = None
            try:
                invoice = self._create_invoice(order)
                self.ledger.mark_invoiced(order.id, invoice.id)
                if order.financial_stage == FinancialStage.IN_PRODUCTION:
                    self.financial.transition(
                        order,
                        FinancialStage.READY_TO_INVOICE,
                        {"ready_to_invoice": True}
                    )
                self.financial.mark_invoiced(order.id)
                created.append((order, invoice))
            except Exception as e:
                if isinstance(e, AppError):
                    code, message = e.code, e.message
                    logger.warning("bulk_invoice_order_failed", order_id=order.id, code=code, error=message)
                else:
                    code, message = INTERNAL_ERROR_CODE, INTERNAL_ERROR_MESSAGE
                    logger.error(
                        "bulk_invoice_order_crashed",
                        order_id=order.id,
                        error=str(e),
                        error_type=type(e).__name__
                    )

                if invoice:
                    self._roll_back_invoice(order.id, invoice)

                local_errors.append(InvoiceError(
                    order_id=order.id,
                    order_number=order.order_number,
                    code=code,
                    error=message,
                    invoice_id=invoice.id if invoice else None,
                ))

        accounting_results: list[AccountingResult] = []
        if request.create_in_accounting:
            for order, invoice in created:
                accounting_results.append(self._push_to_accounting(order, invoice))

        created_invoices = [
            CreatedInvoice(
                order_id=order.id,
                order_number=order.order_number,
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                total_amount=invoice.total_amount,
            )
            for order, invoice in created
        ]

        failed = len(local_errors) + len(validation_errors)
        status = SyncLogStatus.SUCCESS if failed == 0 else SyncLogStatus.WARNING

        sync_log = self.sync_logs.record(
            SyncType.BULK_INVOICE_CREATION,
            status,
            f"Bulk invoice creation: {len(created_invoices)} successful, {failed} failed",
            details=BulkInvoiceResult(
                requested_orders=len(order_ids),
                valid_orders=len(valid_orders),
                created_invoices=created_invoices,
                local_errors=local_errors,
                validation_errors=validation_errors,
                accounting_results=accounting_results,
            ),
            entity_type="order_batch",
        )

        logger.info(
            "bulk_invoice_completed",
            created=len(created_invoices),
            failed=failed,
            accounting_calls=len(accounting_results)
        )

        return BulkInvoiceResponse(
            summary=BulkInvoiceSummary(
                requested=len(order_ids),
                created=len(created_invoices),
                failed=failed,
                accounting_enabled=request.create_in_accounting,
            ),
            created_invoices=created_invoices,
            local_errors=local_errors,
            validation_errors=validation_errors,
            accounting_results=accounting_results,
            sync_log=sync_log,
        )

    # ===================
    # UTILITY METHODS
    # ===================

    def _validate_for_bulk(self, order: OrderResponse) -> None:
        invoices = self.financial.get_active_invoices(order.id)
        if invoices:
            raise InvoiceExistsError(order.id, invoices[0]["id"])

        if order.financial_stage not in (FinancialStage.IN_PRODUCTION, FinancialStage.READY_TO_INVOICE):
            raise InvalidFinancialTransitionError(
                order.financial_stage.value,
                FinancialStage.INVOICED.value,
                "order is already invoiced"
            )

        progress = self.financial.progress.order_progress(order.id)
        if not progress.all_items_completed:
            raise ItemsNotCompletedError(order.id, progress.incomplete_item_ids, progress.qc_locked_item_ids)

    def _create_invoice(self, order: OrderResponse) -> InvoiceResponse:
        """Insert the local invoice. The store enforces one live invoice per order."""
        invoice_number = generate_invoice_number(order.order_number)
        due_date = datetime.utcnow().date() + timedelta(days=settings.invoice_payment_terms_days)

        insert_data = {
            "order_id": order.id,
            "customer_id": order.customer_id,
            "invoice_number": invoice_number,
            "total_amount": str(order.total_amount),
            "balance_due": str(order.total_amount),
            "due_date": due_date.isoformat(),
            "status": InvoiceStatus.PENDING.value,
            "sent_to_accounting": False,
        }

        try:
            result = self.db.table(self.invoices_table).insert(insert_data).execute()
        except Exception as e:
            if not is_unique_violation(e):
                logger.error("create_invoice_failed", order_id=order.id, error=str(e), error_type=type(e).__name__)
                raise DatabaseError("insert", str(e))

            existing = self.financial.get_active_invoices(order.id)
            if existing:
                raise InvoiceExistsError(order.id, existing[0]["id"])
            logger.warning("invoice_number_collision", invoice_number=invoice_number)
            raise InvoiceNumberCollisionError(invoice_number)

        invoice = self._invoice_from_row(result.data[0])
        logger.info("invoice_created", order_id=order.id, invoice_number=invoice_number, invoice_id=invoice.id)
        return invoice

    def _roll_back_invoice(self, order_id: str, invoice: InvoiceResponse) -> None:
        """
        Void an invoice whose order could not be advanced and unlink its items.

        A void invoice no longer counts as the order's live invoice, so the
        order can be invoiced again.
        """
        try:
            (
                self.db.table(self.invoices_table)
                .update({
                    "status": InvoiceStatus.VOID.value,
                    "updated_at": datetime.utcnow().isoformat(),
                })
                .eq("id", invoice.id)
                .execute()
            )
            self.ledger.unlink_invoice(order_id, invoice.id)
        except Exception as e:
            # Left for manual repair; the batch's local error carries the invoice id
            logger.error(
                "invoice_rollback_failed",
                order_id=order_id,
                invoice_id=invoice.id,
                error=str(e),
                error_type=type(e).__name__
            )
            return

        logger.warning("invoice_rolled_back", order_id=order_id, invoice_id=invoice.id)

    def _enqueue(self, order_id: str) -> InvoiceQueueEntryResponse:
        insert_data = {
            "entity_type": QUEUE_ENTITY_TYPE,
            "entity_id": order_id,
            "action": QUEUE_ACTION,
            "priority": settings.invoice_queue_priority,
            "scheduled_for": datetime.utcnow().isoformat(),
            "status": QueueEntryStatus.PENDING.value,
        }

        try:
            result = self.db.table(self.queue_table).insert(insert_data).execute()
        except Exception as e:
            if is_unique_violation(e):
                raise InvoiceQueueEntryExistsError(order_id, QUEUE_ACTION)
            logger.error("enqueue_invoice_failed", order_id=order_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("insert", str(e))

        return self._entry_from_row(result.data[0])

    def _get_open_entry(self, order_id: str) -> Optional[InvoiceQueueEntryResponse]:
        try:
            result = (
                self.db.table(self.queue_table)
                .select("*")
                .eq("entity_type", QUEUE_ENTITY_TYPE)
                .eq("entity_id", order_id)
                .eq("action", QUEUE_ACTION)
                .in_("status", [status.value for status in OPEN_ENTRY_STATUSES])
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get_open_entry_failed", order_id=order_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        return self._entry_from_row(result.data[0]) if result.data else None

    def _finish_entry(
        self,
        entry: InvoiceQueueEntryResponse,
        status: QueueEntryStatus,
        error_message: Optional[str] = None
    ) -> None:
        try:
            result = (
                self.db.table(self.queue_table)
                .update({
                    "status": status.value,
                    "processed_at": datetime.utcnow().isoformat(),
                    "error_message": error_message,
                })
                .eq("id", entry.id)
                .eq("status", entry.status.value)
                .execute()
            )
        except Exception as e:
            logger.error("finish_queue_entry_failed", entry_id=entry.id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("update", str(e))

        if not result.data:
            fresh = self.get_entry(entry.id)
            raise QueueEntryNotPendingError(entry.id, fresh.status.value)

    def _set_ready_flag(self, order_id: str, ready: bool) -> None:
        try:
            (
                self.db.table("orders")
                .update({"ready_to_invoice": ready, "updated_at": datetime.utcnow().isoformat()})
                .eq("id", order_id)
                .execute()
            )
        except Exception as e:
            logger.error("set_ready_flag_failed", order_id=order_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("update", str(e))

    def _mark_sent(self, invoice_id: str, external_invoice_id: Optional[str]) -> None:
        try:
            (
                self.db.table(self.invoices_table)
                .update({
                    "sent_to_accounting": True,
                    "external_invoice_id": external_invoice_id,
                    "status": InvoiceStatus.SENT.value,
                    "updated_at": datetime.utcnow().isoformat(),
                })
                .eq("id", invoice_id)
                .execute()
            )
        except Exception as e:
            logger.error("mark_invoice_sent_failed", invoice_id=invoice_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("update", str(e))

    def _push_to_accounting(self, order: OrderResponse, invoice: InvoiceResponse) -> AccountingResult:
        """Mirror one local invoice to accounting. Failures are reported, never raised."""
        payload = {
            "order_id": order.id,
            "order_number": order.order_number,
            "customer_id": order.customer_id,
            "invoice_number": invoice.invoice_number,
            "amount": str(invoice.total_amount),
            "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
        }

        try:
            result = self.accounting.create_invoice(payload)
            self._mark_sent(invoice.id, result.external_invoice_id)
        except AppError as e:
            logger.warning("accounting_invoice_failed", order_id=order.id, invoice_id=invoice.id, error=e.message)
            return AccountingResult(
                order_id=order.id,
                invoice_id=invoice.id,
                success=False,
                error=e.message,
            )
        except Exception as e:
            logger.error(
                "accounting_invoice_crashed",
                order_id=order.id,
                invoice_id=invoice.id,
                error=str(e),
                error_type=type(e).__name__
            )
            return AccountingResult(
                order_id=order.id,
                invoice_id=invoice.id,
                success=False,
                error=INTERNAL_ERROR_MESSAGE,
            )

        return AccountingResult(
            order_id=order.id,
            invoice_id=invoice.id,
            success=True,
            external_invoice_id=result.external_invoice_id,
        )

    def _invoice_from_row(self, row: dict) -> InvoiceResponse:
        return InvoiceResponse(
            id=row["id"],
            order_id=row["order_id"],
            customer_id=row.get("customer_id"),
            invoice_number=row["invoice_number"],
            total_amount=Decimal(str(row.get("total_amount") or 0)),
            balance_due=Decimal(str(row.get("balance_due") or 0)),
            due_date=row.get("due_date"),
            status=row.get("status") or InvoiceStatus.PENDING,
            sent_to_accounting=bool(row.get("sent_to_accounting")),
            external_invoice_id=row.get("external_invoice_id"),
            created_at=row["created_at"],
            updated_at=row.get("updated_at"),
        )

    def _entry_from_row(self, row: dict) -> InvoiceQueueEntryResponse:
        return InvoiceQueueEntryResponse(
            id=row["id"],
            entity_type=row.get("entity_type") or QUEUE_ENTITY_TYPE,
            entity_id=row["entity_id"],
            action=row.get("action") or QUEUE_ACTION,
            priority=row.get("priority") or settings.invoice_queue_priority,
            scheduled_for=row.get("scheduled_for") or row["created_at"],
            status=row.get("status") or QueueEntryStatus.PENDING,
            processed_at=row.get("processed_at"),
            error_message=row.get("error_message"),
            created_at=row["created_at"],
            updated_at=row.get("updated_at"),
        )


# Singleton instance
_invoice_queue_service: Optional[InvoiceQueueService] = None


def get_invoice_queue_service() -> InvoiceQueueService:
    """Get or create InvoiceQueueService instance."""
    global _invoice_queue_service
    if _invoice_queue_service is None:
        _invoice_queue_service = InvoiceQueueService(
            financial=get_financial_stage_service(),
            ledger=get_stage_ledger_service(),
            accounting=get_accounting_client(),
        )
    return _invoice_queue_service
