"""
Stage ledger service: per-item manufacturing progress and stage history.

Only this service writes current_stage, stage_progress, stage_history and
completed_at on production_items.
"""

from typing import Callable, Optional
from datetime import datetime
import json
import structlog

from config import get_supabase_client
from models.production import (
    ProductionStage,
    ProductionItemsCreate,
    ProductionItemResponse,
    StageAdvance,
    StageHistoryEntry,
    next_stage,
    is_valid_stage_transition,
    is_terminal_stage,
    is_past_quality_check,
)
from exceptions import (
    AppError,
    DatabaseError,
    OrderNotFoundError,
    ProductionItemNotFoundError,
    InvalidStageTransitionError,
    StageBlockedByQCError,
    ProgressRegressionError,
)

logger = structlog.get_logger(__name__)

# Called with the order id after every accepted stage/progress change
TransitionListener = Callable[[str], None]


class StageLedgerService:
    """
    Stage ledger business logic.

    Advances items one stage at a time, records stage history, and notifies
    listeners so order-level state can be recomputed.
    """

    def __init__(self, listeners: Optional[list[TransitionListener]] = None):
        self.db = get_supabase_client()
        self.table = "production_items"
        self.listeners: list[TransitionListener] = list(listeners or [])

    def add_listener(self, listener: TransitionListener) -> None:
        self.listeners.append(listener)

    # ===================
    # READ OPERATIONS
    # ===================

    def get_item(self, item_id: str) -> ProductionItemResponse:
        """
        Get a single production item by ID.

        Raises:
            ProductionItemNotFoundError: If item doesn't exist
        """
        logger.debug("getting_production_item", item_id=item_id)

        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", item_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get_production_item_failed", item_id=item_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        if not result.data:
            raise ProductionItemNotFoundError(item_id)

        return self._row_to_response(result.data[0])

    def list_for_order(self, order_id: str) -> list[ProductionItemResponse]:
        """Get all production items of an order, oldest first."""
        logger.debug("listing_production_items", order_id=order_id)

        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("order_id", order_id)
                .order("created_at")
                .execute()
            )
        except Exception as e:
            logger.error("list_production_items_failed", order_id=order_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        return [self._row_to_response(row) for row in result.data]

    def get_history(self, item_id: str) -> list[StageHistoryEntry]:
        """Get the stage history of an item, in transition order."""
        return self.get_item(item_id).stage_history

    # ===================
    # WRITE OPERATIONS
    # ===================

    def create_items(self, order_id: str, data: ProductionItemsCreate) -> list[ProductionItemResponse]:
        """
        Create production items for a confirmed order.

        Every item starts at cutting with zero progress.

        Raises:
            OrderNotFoundError: If the order doesn't exist
        """
        logger.info("creating_production_items", order_id=order_id, count=len(data.items))

        try:
            order = self.db.table("orders").select("id").eq("id", order_id).limit(1).execute()
        except Exception as e:
            logger.error("order_lookup_failed", order_id=order_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        if not order.data:
            raise OrderNotFoundError(order_id)

        now = datetime.utcnow().isoformat()
        rows = [
            {
                "order_id": order_id,
                "item_name": item.item_name,
                "quantity": item.quantity,
                "assigned_to": item.assigned_to,
                "notes": item.notes,
                "current_stage": ProductionStage.CUTTING.value,
                "stage_progress": 0,
                "stage_entered_at": now,
                "stage_history": [],
                "completed_at": None,
                "qc_locked": False,
            }
            for item in data.items
        ]

        try:
            result = self.db.table(self.table).insert(rows).execute()
        except Exception as e:
            logger.error("create_production_items_failed", order_id=order_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("insert", str(e))

        items = [self._row_to_response(row) for row in result.data]

        logger.info(
            "production_items_created",
            order_id=order_id,
            item_ids=[item.id for item in items]
        )
        self._notify(order_id)

        return items

    def advance_stage(self, item_id: str, data: StageAdvance) -> ProductionItemResponse:
        """
        Move an item into its next stage.

        Appends one history entry for the stage being left (exit progress 100),
        stamps the new stage's entry time, and sets completed_at when entering
        the completed stage.

        Raises:
            ProductionItemNotFoundError: If item doesn't exist
            InvalidStageTransitionError: If new_stage is not the next stage
            StageBlockedByQCError: If a QC lock forbids passing quality_check
        """
        item = self.get_item(item_id)
        current = item.current_stage
        new = data.new_stage

        logger.info(
            "advancing_stage",
            item_id=item_id,
            from_stage=current.value,
            to_stage=new.value
        )

        if not is_valid_stage_transition(current, new):
            expected = next_stage(current)
            raise InvalidStageTransitionError(
                current_stage=current.value,
                new_stage=new.value,
                expected_stage=expected.value if expected else None
            )

        if item.qc_locked and is_past_quality_check(new):
            logger.warning(
                "stage_blocked_by_qc",
                item_id=item_id,
                inspection_id=item.qc_lock_inspection_id
            )
            raise StageBlockedByQCError(
                item_id=item_id,
                current_stage=current.value,
                new_stage=new.value,
                inspection_id=item.qc_lock_inspection_id
            )

        now = datetime.utcnow()
        exit_entry = StageHistoryEntry(
            stage=current,
            entered_at=item.stage_entered_at,
            exited_at=now,
            progress_at_exit=100,
        )
        history = [entry.model_dump(mode="json") for entry in item.stage_history]
        history.append(exit_entry.model_dump(mode="json"))

        if data.progress is not None:
            progress = data.progress
        else:
            progress = 100 if is_terminal_stage(new) else 0

        update_data = {
            "current_stage": new.value,
            "stage_progress": progress,
            "stage_entered_at": now.isoformat(),
            "stage_history": history,
            "updated_at": now.isoformat(),
        }
        if new == ProductionStage.COMPLETED:
            update_data["completed_at"] = now.isoformat()
        if data.notes is not None:
            update_data["notes"] = data.notes

        try:
            # Conditional on the stage we validated against
            result = (
                self.db.table(self.table)
                .update(update_data)
                .eq("id", item_id)
                .eq("current_stage", current.value)
                .execute()
            )
        except Exception as e:
            logger.error("advance_stage_failed", item_id=item_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("update", str(e))

        if not result.data:
            fresh = self.get_item(item_id)
            expected = next_stage(fresh.current_stage)
            raise InvalidStageTransitionError(
                current_stage=fresh.current_stage.value,
                new_stage=new.value,
                expected_stage=expected.value if expected else None
            )

        logger.info(
            "stage_advanced",
            item_id=item_id,
            order_id=item.order_id,
            from_stage=current.value,
            to_stage=new.value,
            history_length=len(history)
        )
        self._notify(item.order_id)

        return self._row_to_response(result.data[0])

    def update_progress(self, item_id: str, progress: int) -> ProductionItemResponse:
        """
        Set progress within the current stage.

        Raises:
            ProductionItemNotFoundError: If item doesn't exist
            ProgressRegressionError: If progress would decrease
        """
        item = self.get_item(item_id)

        logger.info(
            "updating_progress",
            item_id=item_id,
            stage=item.current_stage.value,
            from_progress=item.stage_progress,
            to_progress=progress
        )

        if progress < item.stage_progress:
            raise ProgressRegressionError(item_id, item.stage_progress, progress)

        if progress == item.stage_progress:
            return item

        try:
            result = (
                self.db.table(self.table)
                .update({
                    "stage_progress": progress,
                    "updated_at": datetime.utcnow().isoformat(),
                })
                .eq("id", item_id)
                .eq("current_stage", item.current_stage.value)
                .execute()
            )
        except Exception as e:
            logger.error("update_progress_failed", item_id=item_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("update", str(e))

        if not result.data:
            # Stage moved underneath us; report against the fresh state
            fresh = self.get_item(item_id)
            raise ProgressRegressionError(item_id, fresh.stage_progress, progress)

        logger.info("progress_updated", item_id=item_id, progress=progress)
        self._notify(item.order_id)

        return self._row_to_response(result.data[0])

    def mark_invoiced(self, order_id: str, invoice_id: str) -> int:
        """
        Link every item of an order to its invoice.

        Returns:
            Number of items updated
        """
        try:
            result = (
                self.db.table(self.table)
                .update({
                    "invoice_id": invoice_id,
                    "invoiced_at": datetime.utcnow().isoformat(),
                })
                .eq("order_id", order_id)
                .execute()
            )
        except Exception as e:
            logger.error("mark_items_invoiced_failed", order_id=order_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("update", str(e))

        logger.info("production_items_invoiced", order_id=order_id, invoice_id=invoice_id, count=len(result.data))
        return len(result.data)

    def unlink_invoice(self, order_id: str, invoice_id: str) -> int:
        """Clear the invoice link on items still pointing at a voided invoice."""
        try:
            result = (
                self.db.table(self.table)
                .update({"invoice_id": None, "invoiced_at": None})
                .eq("order_id", order_id)
                .eq("invoice_id", invoice_id)
                .execute()
            )
        except Exception as e:
            logger.error("unlink_items_invoice_failed", order_id=order_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("update", str(e))

        logger.info("production_items_unlinked", order_id=order_id, invoice_id=invoice_id, count=len(result.data))
        return len(result.data)

    # ===================
    # UTILITY METHODS
    # ===================

    def _notify(self, order_id: str) -> None:
        for listener in self.listeners:
            try:
                listener(order_id)
            except AppError as e:
                # The stage change is already committed; listeners only refresh derived state
                logger.warning("stage_listener_failed", order_id=order_id, error=e.message, code=e.code)

    def _row_to_response(self, row: dict) -> ProductionItemResponse:
        """Convert database row to ProductionItemResponse."""
        history = row.get("stage_history") or []
        if isinstance(history, str):
            history = json.loads(history)

        return ProductionItemResponse(
            id=row["id"],
            order_id=row["order_id"],
            item_name=row.get("item_name"),
            quantity=row.get("quantity") or 1,
            current_stage=row["current_stage"],
            stage_progress=row.get("stage_progress") or 0,
            stage_entered_at=row.get("stage_entered_at"),
            stage_history=history,
            completed_at=row.get("completed_at"),
            assigned_to=row.get("assigned_to"),
            notes=row.get("notes"),
            qc_locked=bool(row.get("qc_locked")),
            qc_lock_inspection_id=row.get("qc_lock_inspection_id"),
            invoice_id=row.get("invoice_id"),
            invoiced_at=row.get("invoiced_at"),
            created_at=row["created_at"],
            updated_at=row.get("updated_at"),
        )


# Singleton instance
_stage_ledger_service: Optional[StageLedgerService] = None


def get_stage_ledger_service() -> StageLedgerService:
    """Get or create StageLedgerService instance, wired to the financial controller."""
    global _stage_ledger_service
    if _stage_ledger_service is None:
        from services.financial_stage_service import get_financial_stage_service

        _stage_ledger_service = StageLedgerService(
            listeners=[get_financial_stage_service().on_production_changed]
        )
    return _stage_ledger_service
