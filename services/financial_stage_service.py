"""
Financial stage controller.

Owns orders.financial_stage and orders.ready_to_invoice. Every change is a
conditional write against the stage the guard was checked on, so two
concurrent callers cannot both win.
"""

from typing import Optional
from datetime import datetime
from decimal import Decimal
import structlog

from config import get_supabase_client
from models.order import (
    FinancialStage,
    OrderResponse,
    OrderFinancialSummary,
    MarkReadyResult,
    FinancialTransitionResult,
    PipelineStatistics,
    PipelineResponse,
    is_valid_financial_transition,
)
from models.invoice import SyncLogStatus, SyncType, ReadyMarkingResult, InvoiceStatus
from models.shipping_quote import QuoteStatus
from services.production_progress_service import ProductionProgressService
from services.sync_log_service import SyncLogService
from exceptions import (
    DatabaseError,
    OrderNotFoundError,
    ItemsNotCompletedError,
    InvalidFinancialTransitionError,
    InvoiceExistsError,
)

logger = structlog.get_logger(__name__)

# Quote statuses that mean a shipment was actually booked for the order
BOOKED_QUOTE_STATUSES = (QuoteStatus.BOOKED, QuoteStatus.SHIPPED, QuoteStatus.DELIVERED)


class FinancialStageService:
    """
    Financial stage business logic.

    Handles ready marking, the invoiced and completed transitions, and the
    finance pipeline view.
    """

    def __init__(
        self,
        progress: Optional[ProductionProgressService] = None,
        sync_logs: Optional[SyncLogService] = None
    ):
        self.db = get_supabase_client()
        self.table = "orders"
        self.progress = progress or ProductionProgressService()
        self.sync_logs = sync_logs or SyncLogService()

    # ===================
    # READ OPERATIONS
    # ===================

    def get_order(self, order_id: str) -> OrderResponse:
        """
        Get the fulfillment view of an order.

        Raises:
            OrderNotFoundError: If order doesn't exist
        """
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", order_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get_order_failed", order_id=order_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        if not result.data:
            raise OrderNotFoundError(order_id)

        return self._row_to_response(result.data[0])

    def get_active_invoices(self, order_id: str) -> list[dict]:
        """Non-void invoice rows of an order."""
        try:
            result = (
                self.db.table("invoices")
                .select("*")
                .eq("order_id", order_id)
                .neq("status", InvoiceStatus.VOID.value)
                .execute()
            )
        except Exception as e:
            logger.error("get_order_invoices_failed", order_id=order_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        return result.data

    def order_summary(self, order_id: str) -> OrderFinancialSummary:
        return self.progress.order_summary(order_id)

    def pipeline(self, financial_stage: Optional[FinancialStage] = None, limit: int = 200) -> PipelineResponse:
        """
        Orders grouped by financial stage, with counts and open value.

        Args:
            financial_stage: Only include orders at this stage
            limit: Max orders returned
        """
        logger.info("getting_financial_pipeline", financial_stage=financial_stage)

        try:
            query = self.db.table(self.table).select("*")

            if financial_stage:
                query = query.eq("financial_stage", financial_stage.value)

            result = query.order("created_at", desc=True).limit(limit).execute()
        except Exception as e:
            logger.error("get_financial_pipeline_failed", error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        orders = [self._row_to_response(row) for row in result.data]

        statistics = PipelineStatistics(total_orders=len(orders))
        open_value = Decimal("0")
        for order in orders:
            stage = order.financial_stage.value
            setattr(statistics, stage, getattr(statistics, stage) + 1)
            if order.financial_stage != FinancialStage.COMPLETED:
                open_value += order.total_amount
        statistics.total_pipeline_value = open_value

        return PipelineResponse(orders=orders, statistics=statistics)

    # ===================
    # TRANSITIONS
    # ===================

    def mark_ready(self, order_id: str) -> MarkReadyResult:
        """
        Move an order from in_production to ready_to_invoice.

        Marking an order that is already ready is a no-op.

        Raises:
            OrderNotFoundError: If order doesn't exist
            InvalidFinancialTransitionError: If the order is past ready_to_invoice
            ItemsNotCompletedError: If any item is not done or is QC locked
            InvoiceExistsError: If the order already has an invoice
        """
        order = self.get_order(order_id)

        logger.info("marking_order_ready", order_id=order_id, financial_stage=order.financial_stage.value)

        if order.financial_stage == FinancialStage.READY_TO_INVOICE:
            return MarkReadyResult(
                order_id=order_id,
                marked_ready=False,
                already_ready=True,
                financial_stage=order.financial_stage,
            )

        if order.financial_stage != FinancialStage.IN_PRODUCTION:
            raise InvalidFinancialTransitionError(
                current_stage=order.financial_stage.value,
                new_stage=FinancialStage.READY_TO_INVOICE.value,
                reason="order is already invoiced"
            )

        progress = self.progress.order_progress(order_id)
        if not progress.all_items_completed:
            raise ItemsNotCompletedError(
                order_id,
                progress.incomplete_item_ids,
                progress.qc_locked_item_ids
            )

        invoices = self.get_active_invoices(order_id)
        if invoices:
            raise InvoiceExistsError(order_id, invoices[0]["id"])

        self.transition(
            order,
            FinancialStage.READY_TO_INVOICE,
            {"ready_to_invoice": True}
        )

        self.sync_logs.record(
            SyncType.MANUAL_READY_MARKING,
            SyncLogStatus.SUCCESS,
            "Order marked ready to invoice",
            details=ReadyMarkingResult(order_id=order_id, item_count=progress.item_count),
            entity_type="order",
            entity_id=order_id,
        )

        logger.info("order_marked_ready", order_id=order_id, item_count=progress.item_count)

        return MarkReadyResult(
            order_id=order_id,
            marked_ready=True,
            already_ready=False,
            financial_stage=FinancialStage.READY_TO_INVOICE,
        )

    def unmark_ready(self, order_id: str) -> FinancialTransitionResult:
        """
        Move a ready order back to in_production.

        Raises:
            OrderNotFoundError: If order doesn't exist
            InvalidFinancialTransitionError: If the order is not ready_to_invoice
        """
        order = self.get_order(order_id)

        self.transition(
            order,
            FinancialStage.IN_PRODUCTION,
            {"ready_to_invoice": False},
            reason="only a ready order can be unmarked"
        )

        logger.info("order_unmarked_ready", order_id=order_id)

        return FinancialTransitionResult(
            order_id=order_id,
            previous_stage=order.financial_stage,
            financial_stage=FinancialStage.IN_PRODUCTION,
        )

    def mark_invoiced(self, order_id: str) -> FinancialTransitionResult:
        """
        Move a ready order to invoiced once its single invoice exists.

        Raises:
            InvalidFinancialTransitionError: If not ready, or invoice count is not one
        """
        order = self.get_order(order_id)

        if order.financial_stage == FinancialStage.INVOICED:
            return FinancialTransitionResult(
                order_id=order_id,
                previous_stage=order.financial_stage,
                financial_stage=order.financial_stage,
                changed=False,
            )

        invoices = self.get_active_invoices(order_id)
        if len(invoices) != 1:
            raise InvalidFinancialTransitionError(
                current_stage=order.financial_stage.value,
                new_stage=FinancialStage.INVOICED.value,
                reason=f"expected exactly one invoice, found {len(invoices)}"
            )

        self.transition(
            order,
            FinancialStage.INVOICED,
            {"ready_to_invoice": False},
            reason="order is not ready to invoice"
        )

        logger.info("order_invoiced", order_id=order_id, invoice_id=invoices[0]["id"])

        return FinancialTransitionResult(
            order_id=order_id,
            previous_stage=order.financial_stage,
            financial_stage=FinancialStage.INVOICED,
        )

    def mark_completed(self, order_id: str) -> FinancialTransitionResult:
        """
        Close out an invoiced order.

        Raises:
            InvalidFinancialTransitionError: If the order is not invoiced
        """
        order = self.get_order(order_id)

        if order.financial_stage == FinancialStage.COMPLETED:
            return FinancialTransitionResult(
                order_id=order_id,
                previous_stage=order.financial_stage,
                financial_stage=order.financial_stage,
                changed=False,
            )

        self.transition(
            order,
            FinancialStage.COMPLETED,
            {},
            reason="order has not been invoiced"
        )

        logger.info("order_completed", order_id=order_id)

        return FinancialTransitionResult(
            order_id=order_id,
            previous_stage=order.financial_stage,
            financial_stage=FinancialStage.COMPLETED,
        )

    def complete_if_delivered(self, order_id: str) -> bool:
        """
        Complete an invoiced order once every booked shipment is delivered.

        Returns:
            True if the order moved to completed
        """
        order = self.get_order(order_id)
        if order.financial_stage != FinancialStage.INVOICED:
            return False

        try:
            result = (
                self.db.table("shipping_quotes")
                .select("id, status")
                .eq("order_id", order_id)
                .in_("status", [status.value for status in BOOKED_QUOTE_STATUSES])
                .execute()
            )
        except Exception as e:
            logger.error("get_order_shipments_failed", order_id=order_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        if not result.data:
            return False

        if any(row["status"] != QuoteStatus.DELIVERED.value for row in result.data):
            return False

        self.mark_completed(order_id)
        return True

    def on_production_changed(self, order_id: str) -> None:
        """Stage ledger listener: refresh the order's production display fields."""
        self.progress.refresh_order_cache(order_id)

    # ===================
    # UTILITY METHODS
    # ===================

    def transition(
        self,
        order: OrderResponse,
        new_stage: FinancialStage,
        extra: dict,
        reason: str = "transition not allowed"
    ) -> None:
        """Conditionally move an order along one financial stage edge."""
        current = order.financial_stage

        if not is_valid_financial_transition(current, new_stage):
            raise InvalidFinancialTransitionError(current.value, new_stage.value, reason)

        update_data = {
            "financial_stage": new_stage.value,
            "updated_at": datetime.utcnow().isoformat(),
            **extra,
        }

        try:
            result = (
                self.db.table(self.table)
                .update(update_data)
                .eq("id", order.id)
                .eq("financial_stage", current.value)
                .execute()
            )
        except Exception as e:
            logger.error("financial_transition_failed", order_id=order.id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("update", str(e))

        if not result.data:
            fresh = self.get_order(order.id)
            raise InvalidFinancialTransitionError(
                fresh.financial_stage.value,
                new_stage.value,
                "order changed concurrently"
            )

        logger.info(
            "financial_stage_changed",
            order_id=order.id,
            from_stage=current.value,
            to_stage=new_stage.value
        )

    def _row_to_response(self, row: dict) -> OrderResponse:
        """Convert database row to OrderResponse."""
        return OrderResponse(
            id=row["id"],
            order_number=row["order_number"],
            customer_id=row.get("customer_id"),
            total_amount=Decimal(str(row.get("total_amount") or 0)),
            status=row.get("status"),
            financial_stage=row.get("financial_stage") or FinancialStage.IN_PRODUCTION,
            ready_to_invoice=bool(row.get("ready_to_invoice")),
            production_progress=row.get("production_progress"),
            production_stage=row.get("production_stage"),
            created_at=row["created_at"],
            updated_at=row.get("updated_at"),
        )


# Singleton instance
_financial_stage_service: Optional[FinancialStageService] = None


def get_financial_stage_service() -> FinancialStageService:
    """Get or create FinancialStageService instance."""
    global _financial_stage_service
    if _financial_stage_service is None:
        _financial_stage_service = FinancialStageService()
    return _financial_stage_service
