"""
Production aggregator: order-level progress derived from production items.

Nothing here is stored as truth. orders.production_progress and
orders.production_stage are a display cache refreshed from these numbers.
"""

from typing import Optional
from collections import Counter
from datetime import datetime
import structlog

from config import get_supabase_client
from models.production import (
    ProductionItemResponse,
    OrderProgress,
    STAGE_ORDER,
)
from models.order import OrderFinancialSummary
from services.stage_ledger_service import StageLedgerService
from exceptions import DatabaseError, OrderNotFoundError

logger = structlog.get_logger(__name__)


def calculate_order_progress(order_id: str, items: list[ProductionItemResponse]) -> OrderProgress:
    """
    Aggregate production items into an OrderProgress.

    - Progress is the plain average of item absolute progress
    - Current stage is the most common item stage, ties go to the earlier stage
    - An order is complete when every item is done and none is QC locked
    - An order with no items is vacuously complete
    """
    incomplete_ids = [item.id for item in items if not item.is_done]
    locked_ids = [item.id for item in items if item.qc_locked]

    if items:
        progress = round(sum(item.absolute_progress for item in items) / len(items), 2)
        counts = Counter(item.current_stage for item in items)
        current_stage = min(counts, key=lambda stage: (-counts[stage], STAGE_ORDER[stage]))
    else:
        progress = 0.0
        current_stage = None

    return OrderProgress(
        order_id=order_id,
        item_count=len(items),
        completed_count=len(items) - len(incomplete_ids),
        qc_locked_count=len(locked_ids),
        production_progress_percent=progress,
        current_stage=current_stage,
        all_items_completed=not incomplete_ids and not locked_ids,
        incomplete_item_ids=incomplete_ids,
        qc_locked_item_ids=locked_ids,
    )


class ProductionProgressService:
    """Read model over the stage ledger for one order."""

    def __init__(self, ledger: Optional[StageLedgerService] = None):
        self.db = get_supabase_client()
        self.orders_table = "orders"
        self.ledger = ledger or StageLedgerService()

    def order_progress(self, order_id: str) -> OrderProgress:
        """Compute the production read model for an order."""
        items = self.ledger.list_for_order(order_id)
        progress = calculate_order_progress(order_id, items)

        logger.debug(
            "order_progress_calculated",
            order_id=order_id,
            item_count=progress.item_count,
            progress=progress.production_progress_percent
        )
        return progress

    def all_items_completed(self, order_id: str) -> bool:
        """True iff every item is done and none is QC locked."""
        return self.order_progress(order_id).all_items_completed

    def order_summary(self, order_id: str) -> OrderFinancialSummary:
        """
        Financial summary for dashboards.

        Raises:
            OrderNotFoundError: If the order doesn't exist
        """
        order = self._get_order_row(order_id)
        progress = self.order_progress(order_id)

        return OrderFinancialSummary(
            order_id=order_id,
            order_number=order["order_number"],
            financial_stage=order.get("financial_stage") or "in_production",
            ready_to_invoice=bool(order.get("ready_to_invoice")),
            production_progress_percent=progress.production_progress_percent,
            current_stage=progress.current_stage,
        )

    def refresh_order_cache(self, order_id: str) -> OrderProgress:
        """Write the computed progress and stage onto the order row."""
        progress = self.order_progress(order_id)

        try:
            (
                self.db.table(self.orders_table)
                .update({
                    "production_progress": progress.production_progress_percent,
                    "production_stage": progress.current_stage.value if progress.current_stage else None,
                    "updated_at": datetime.utcnow().isoformat(),
                })
                .eq("id", order_id)
                .execute()
            )
        except Exception as e:
            logger.error("refresh_order_cache_failed", order_id=order_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("update", str(e))

        logger.info(
            "order_cache_refreshed",
            order_id=order_id,
            progress=progress.production_progress_percent,
            stage=progress.current_stage.value if progress.current_stage else None
        )
        return progress

    def _get_order_row(self, order_id: str) -> dict:
        try:
            result = (
                self.db.table(self.orders_table)
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

        return result.data[0]


# Singleton instance
_production_progress_service: Optional[ProductionProgressService] = None


def get_production_progress_service() -> ProductionProgressService:
    """Get or create ProductionProgressService instance."""
    global _production_progress_service
    if _production_progress_service is None:
        _production_progress_service = ProductionProgressService()
    return _production_progress_service
