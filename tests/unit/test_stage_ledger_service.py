"""
Unit tests for StageLedgerService.

Run: pytest tests/unit/test_stage_ledger_service.py -v
"""

import pytest
from unittest.mock import MagicMock, patch

from services.stage_ledger_service import StageLedgerService
from models.production import (
    ProductionStage,
    ProductionItemsCreate,
    ProductionItemCreate,
    StageAdvance,
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

from tests.factories import OrderFactory, ProductionItemFactory


@pytest.fixture
def order(mock_db):
    row = OrderFactory.create()
    mock_db.seed("orders", row)
    return row


class TestCreateItems:
    """Tests for StageLedgerService.create_items()"""

    def test_items_start_at_cutting(self, mock_db, order):
        """Should create every item at cutting with no progress or history."""
        # Arrange
        service = StageLedgerService()
        data = ProductionItemsCreate(items=[
            ProductionItemCreate(item_name="Oak Sideboard"),
            ProductionItemCreate(item_name="Oak Bench", quantity=2),
        ])

        # Act
        items = service.create_items(order["id"], data)

        # Assert
        assert len(items) == 2
        assert all(item.current_stage == ProductionStage.CUTTING for item in items)
        assert all(item.stage_progress == 0 for item in items)
        assert all(item.stage_history == [] for item in items)
        assert items[1].quantity == 2
        assert len(mock_db.rows("production_items")) == 2

    def test_unknown_order_raises(self, mock_db):
        """Should raise OrderNotFoundError for a missing order."""
        service = StageLedgerService()
        data = ProductionItemsCreate(items=[ProductionItemCreate(item_name="Oak Bench")])

        with pytest.raises(OrderNotFoundError):
            service.create_items("missing-order", data)

        assert mock_db.rows("production_items") == []

    def test_notifies_listeners(self, mock_db, order):
        """Should call each listener with the order id."""
        listener = MagicMock()
        service = StageLedgerService(listeners=[listener])
        data = ProductionItemsCreate(items=[ProductionItemCreate(item_name="Oak Bench")])

        service.create_items(order["id"], data)

        listener.assert_called_once_with(order["id"])


class TestAdvanceStage:
    """Tests for StageLedgerService.advance_stage()"""

    def test_advance_appends_history(self, mock_db, order):
        """Should move to the next stage and record the stage left."""
        # Arrange
        item = ProductionItemFactory.create(order_id=order["id"], current_stage="assembly", stage_progress=60)
        mock_db.seed("production_items", item)
        service = StageLedgerService()

        # Act
        result = service.advance_stage(item["id"], StageAdvance(new_stage=ProductionStage.FINISHING))

        # Assert
        assert result.current_stage == ProductionStage.FINISHING
        assert result.stage_progress == 0
        assert len(result.stage_history) == 2
        assert result.stage_history[-1].stage == ProductionStage.ASSEMBLY
        assert result.stage_history[-1].progress_at_exit == 100
        assert result.completed_at is None

    def test_skipping_a_stage_raises(self, mock_db, order):
        """Should reject a move that skips the next stage."""
        item = ProductionItemFactory.create(order_id=order["id"], current_stage="assembly")
        mock_db.seed("production_items", item)
        service = StageLedgerService()

        with pytest.raises(InvalidStageTransitionError) as exc_info:
            service.advance_stage(item["id"], StageAdvance(new_stage=ProductionStage.QUALITY_CHECK))

        assert exc_info.value.details["expected_stage"] == "finishing"
        assert mock_db.find("production_items", item["id"])["current_stage"] == "assembly"

    def test_backward_move_raises(self, mock_db, order):
        """Should reject moving to an earlier stage."""
        item = ProductionItemFactory.create(order_id=order["id"], current_stage="packaging")
        mock_db.seed("production_items", item)
        service = StageLedgerService()

        with pytest.raises(InvalidStageTransitionError):
            service.advance_stage(item["id"], StageAdvance(new_stage=ProductionStage.FINISHING))

    def test_shipped_is_terminal(self, mock_db, order):
        """Should reject any advance from shipped."""
        item = ProductionItemFactory.create(order_id=order["id"], current_stage="shipped")
        mock_db.seed("production_items", item)
        service = StageLedgerService()

        with pytest.raises(InvalidStageTransitionError) as exc_info:
            service.advance_stage(item["id"], StageAdvance(new_stage=ProductionStage.CUTTING))

        assert exc_info.value.details["expected_stage"] is None
        assert "final stage" in exc_info.value.message

    def test_entering_completed_sets_completed_at(self, mock_db, order):
        """Should stamp completed_at and default progress to 100."""
        item = ProductionItemFactory.create(order_id=order["id"], current_stage="packaging")
        mock_db.seed("production_items", item)
        service = StageLedgerService()

        result = service.advance_stage(item["id"], StageAdvance(new_stage=ProductionStage.COMPLETED))

        assert result.current_stage == ProductionStage.COMPLETED
        assert result.completed_at is not None
        assert result.stage_progress == 100

    def test_qc_lock_blocks_packaging(self, mock_db, order):
        """Should refuse to pass quality_check while the item is locked."""
        item = ProductionItemFactory.create(
            order_id=order["id"],
            current_stage="quality_check",
            qc_locked=True,
            qc_lock_inspection_id="insp-1",
        )
        mock_db.seed("production_items", item)
        service = StageLedgerService()

        with pytest.raises(StageBlockedByQCError) as exc_info:
            service.advance_stage(item["id"], StageAdvance(new_stage=ProductionStage.PACKAGING))

        assert exc_info.value.code == "STAGE_BLOCKED_BY_QC"
        assert exc_info.value.details["blocking_inspection_id"] == "insp-1"
        assert mock_db.find("production_items", item["id"])["current_stage"] == "quality_check"

    def test_qc_lock_allows_entering_quality_check(self, mock_db, order):
        """Should let a locked item move up to quality_check."""
        item = ProductionItemFactory.create(order_id=order["id"], current_stage="finishing", qc_locked=True)
        mock_db.seed("production_items", item)
        service = StageLedgerService()

        result = service.advance_stage(item["id"], StageAdvance(new_stage=ProductionStage.QUALITY_CHECK))

        assert result.current_stage == ProductionStage.QUALITY_CHECK
        assert result.qc_locked is True

    def test_concurrent_advance_reports_fresh_stage(self, mock_db, order):
        """Should fail the loser of two concurrent advances against the fresh stage."""
        # Arrange: the row already moved to finishing, but this caller read assembly
        item = ProductionItemFactory.create(order_id=order["id"], current_stage="finishing")
        mock_db.seed("production_items", item)
        service = StageLedgerService()
        fresh = service.get_item(item["id"])
        stale = fresh.model_copy(update={"current_stage": ProductionStage.ASSEMBLY})

        # Act
        with patch.object(service, "get_item", side_effect=[stale, fresh]):
            with pytest.raises(InvalidStageTransitionError) as exc_info:
                service.advance_stage(item["id"], StageAdvance(new_stage=ProductionStage.FINISHING))

        # Assert
        assert exc_info.value.details["current_stage"] == "finishing"
        assert len(mock_db.find("production_items", item["id"])["stage_history"]) == 2

    def test_listener_failure_does_not_fail_advance(self, mock_db, order):
        """Should log and swallow listener errors once the advance is committed."""
        item = ProductionItemFactory.create(order_id=order["id"], current_stage="cutting")
        mock_db.seed("production_items", item)
        listener = MagicMock(side_effect=AppError("BOOM", "refresh failed"))
        service = StageLedgerService(listeners=[listener])

        result = service.advance_stage(item["id"], StageAdvance(new_stage=ProductionStage.ASSEMBLY))

        assert result.current_stage == ProductionStage.ASSEMBLY
        listener.assert_called_once_with(order["id"])

    def test_unknown_item_raises(self, mock_db):
        """Should raise ProductionItemNotFoundError."""
        service = StageLedgerService()

        with pytest.raises(ProductionItemNotFoundError):
            service.advance_stage("missing", StageAdvance(new_stage=ProductionStage.ASSEMBLY))

    def test_database_failure_is_wrapped(self, mock_db, order):
        """Should raise DatabaseError without the store's message."""
        mock_db.fail("production_items", "select")
        service = StageLedgerService()

        with pytest.raises(DatabaseError) as exc_info:
            service.get_item("any")

        assert exc_info.value.message == "Database select failed"
        assert "connection reset" not in str(exc_info.value.to_dict())

    def test_database_failure_logs_error_type(self, mock_db, order):
        """Should log the store error with its exception type."""
        mock_db.fail("production_items", "select")
        service = StageLedgerService()

        with patch("services.stage_ledger_service.logger") as logger:
            with pytest.raises(DatabaseError):
                service.get_item("any")

        assert logger.error.call_args.args == ("get_production_item_failed",)
        assert logger.error.call_args.kwargs["error_type"] == "Exception"
        assert logger.error.call_args.kwargs["error"] == "connection reset by peer"


class TestUpdateProgress:
    """Tests for StageLedgerService.update_progress()"""

    def test_progress_moves_forward(self, mock_db, order):
        """Should store higher progress within the stage."""
        item = ProductionItemFactory.create(order_id=order["id"], current_stage="finishing", stage_progress=20)
        mock_db.seed("production_items", item)
        service = StageLedgerService()

        result = service.update_progress(item["id"], 75)

        assert result.stage_progress == 75
        assert result.current_stage == ProductionStage.FINISHING

    def test_progress_regression_raises(self, mock_db, order):
        """Should reject lowering progress."""
        item = ProductionItemFactory.create(order_id=order["id"], current_stage="finishing", stage_progress=50)
        mock_db.seed("production_items", item)
        service = StageLedgerService()

        with pytest.raises(ProgressRegressionError) as exc_info:
            service.update_progress(item["id"], 30)

        assert exc_info.value.details["current_progress"] == 50
        assert mock_db.find("production_items", item["id"])["stage_progress"] == 50

    def test_same_progress_is_noop(self, mock_db, order):
        """Should return the item unchanged without notifying."""
        item = ProductionItemFactory.create(order_id=order["id"], stage_progress=40)
        mock_db.seed("production_items", item)
        listener = MagicMock()
        service = StageLedgerService(listeners=[listener])

        result = service.update_progress(item["id"], 40)

        assert result.stage_progress == 40
        listener.assert_not_called()


class TestHistoryAndInvoicing:
    """Tests for get_history() and mark_invoiced()"""

    def test_history_accumulates_in_order(self, mock_db, order):
        """Should keep one entry per stage left, in transition order."""
        item = ProductionItemFactory.create(order_id=order["id"])
        mock_db.seed("production_items", item)
        service = StageLedgerService()

        for stage in ("assembly", "finishing", "quality_check"):
            service.advance_stage(item["id"], StageAdvance(new_stage=stage))

        history = service.get_history(item["id"])
        assert [entry.stage.value for entry in history] == ["cutting", "assembly", "finishing"]

    def test_mark_invoiced_links_all_items(self, mock_db, order):
        """Should set the invoice id on every item of the order."""
        items = ProductionItemFactory.create_batch(3, order_id=order["id"], current_stage="completed")
        mock_db.seed("production_items", *items)
        service = StageLedgerService()

        count = service.mark_invoiced(order["id"], "invoice-1")

        assert count == 3
        assert all(row["invoice_id"] == "invoice-1" for row in mock_db.rows("production_items"))

    def test_unlink_invoice_clears_only_that_invoice(self, mock_db, order):
        """Should clear the link on items pointing at the given invoice."""
        linked = ProductionItemFactory.create(order_id=order["id"], current_stage="completed")
        other = ProductionItemFactory.create(order_id=order["id"], current_stage="completed")
        linked["invoice_id"] = "invoice-void"
        other["invoice_id"] = "invoice-live"
        mock_db.seed("production_items", linked, other)
        service = StageLedgerService()

        count = service.unlink_invoice(order["id"], "invoice-void")

        assert count == 1
        assert mock_db.find("production_items", linked["id"])["invoice_id"] is None
        assert mock_db.find("production_items", other["id"])["invoice_id"] == "invoice-live"

    def test_list_for_order_filters(self, mock_db, order):
        """Should only return the order's items."""
        mock_db.seed("production_items", ProductionItemFactory.create(order_id=order["id"]))
        mock_db.seed("production_items", ProductionItemFactory.create(order_id="other-order"))
        service = StageLedgerService()

        items = service.list_for_order(order["id"])

        assert len(items) == 1
        assert items[0].order_id == order["id"]
