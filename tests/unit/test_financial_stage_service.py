"""
Unit tests for FinancialStageService.

Run: pytest tests/unit/test_financial_stage_service.py -v
"""

import pytest
from decimal import Decimal

from services.financial_stage_service import FinancialStageService
from models.order import FinancialStage
from exceptions import (
    OrderNotFoundError,
    ItemsNotCompletedError,
    InvalidFinancialTransitionError,
    InvoiceExistsError,
)

from tests.factories import (
    OrderFactory,
    ProductionItemFactory,
    InvoiceFactory,
    ShippingQuoteFactory,
)


def seed_order(mock_db, stages=("completed", "completed"), **order_fields) -> dict:
    order = OrderFactory.create(**order_fields)
    mock_db.seed("orders", order)
    for stage in stages:
        mock_db.seed("production_items", ProductionItemFactory.create(order_id=order["id"], current_stage=stage))
    return order


class TestMarkReady:
    """Tests for FinancialStageService.mark_ready()"""

    def test_marks_ready_and_logs(self, mock_db):
        """Should move a fully produced order to ready_to_invoice and write a sync log."""
        # Arrange
        order = seed_order(mock_db)
        service = FinancialStageService()

        # Act
        result = service.mark_ready(order["id"])

        # Assert
        assert result.marked_ready is True
        assert result.financial_stage == FinancialStage.READY_TO_INVOICE
        row = mock_db.find("orders", order["id"])
        assert row["financial_stage"] == "ready_to_invoice"
        assert row["ready_to_invoice"] is True

        logs = mock_db.rows("sync_logs")
        assert len(logs) == 1
        assert logs[0]["sync_type"] == "manual_ready_marking"
        assert logs[0]["details"]["item_count"] == 2

    def test_already_ready_is_noop(self, mock_db):
        """Should report already_ready without writing."""
        order = seed_order(mock_db, financial_stage="ready_to_invoice", ready_to_invoice=True)
        service = FinancialStageService()

        result = service.mark_ready(order["id"])

        assert result.already_ready is True
        assert result.marked_ready is False
        assert mock_db.rows("sync_logs") == []

    def test_incomplete_item_raises_with_count(self, mock_db):
        """Should refuse while any item is not completed, reporting how many."""
        order = seed_order(mock_db, stages=("completed", "completed", "assembly"))
        service = FinancialStageService()

        with pytest.raises(ItemsNotCompletedError) as exc_info:
            service.mark_ready(order["id"])

        assert exc_info.value.message == "1 production items not completed"
        assert exc_info.value.details["incomplete_count"] == 1
        assert mock_db.find("orders", order["id"])["financial_stage"] == "in_production"

    def test_qc_locked_item_blocks(self, mock_db):
        """Should refuse while a completed item still holds a QC lock."""
        order = OrderFactory.create()
        mock_db.seed("orders", order)
        mock_db.seed("production_items", ProductionItemFactory.create(
            order_id=order["id"], current_stage="completed", qc_locked=True
        ))
        service = FinancialStageService()

        with pytest.raises(ItemsNotCompletedError) as exc_info:
            service.mark_ready(order["id"])

        assert len(exc_info.value.details["qc_locked_item_ids"]) == 1

    def test_shipped_items_count_as_completed(self, mock_db):
        """Should accept shipped items as done."""
        order = seed_order(mock_db, stages=("shipped", "completed"))
        service = FinancialStageService()

        result = service.mark_ready(order["id"])

        assert result.marked_ready is True

    def test_existing_invoice_raises(self, mock_db):
        """Should refuse to mark an order that already has an invoice."""
        order = seed_order(mock_db)
        mock_db.seed("invoices", InvoiceFactory.create(order_id=order["id"]))
        service = FinancialStageService()

        with pytest.raises(InvoiceExistsError):
            service.mark_ready(order["id"])

    def test_void_invoice_is_ignored(self, mock_db):
        """Should not count void invoices."""
        order = seed_order(mock_db)
        mock_db.seed("invoices", InvoiceFactory.create(order_id=order["id"], status="void"))
        service = FinancialStageService()

        result = service.mark_ready(order["id"])

        assert result.marked_ready is True

    def test_invoiced_order_raises(self, mock_db):
        """Should refuse to move an invoiced order backwards."""
        order = seed_order(mock_db, financial_stage="invoiced")
        service = FinancialStageService()

        with pytest.raises(InvalidFinancialTransitionError):
            service.mark_ready(order["id"])

    def test_order_without_items_is_ready(self, mock_db):
        """Should treat an order with no items as fully produced."""
        order = seed_order(mock_db, stages=())
        service = FinancialStageService()

        result = service.mark_ready(order["id"])

        assert result.marked_ready is True

    def test_unknown_order_raises(self, mock_db):
        """Should raise OrderNotFoundError."""
        service = FinancialStageService()

        with pytest.raises(OrderNotFoundError):
            service.mark_ready("missing")

    def test_item_regression_after_check_fails_again(self, mock_db):
        """Should fail once any item is moved back out of completed."""
        order = seed_order(mock_db, stages=("completed", "completed"))
        item_id = mock_db.rows("production_items")[0]["id"]
        for row in mock_db.tables["production_items"]:
            if row["id"] == item_id:
                row["current_stage"] = "packaging"
        service = FinancialStageService()

        with pytest.raises(ItemsNotCompletedError) as exc_info:
            service.mark_ready(order["id"])

        assert exc_info.value.details["incomplete_item_ids"] == [item_id]


class TestUnmarkReady:
    """Tests for FinancialStageService.unmark_ready()"""

    def test_unmark_returns_to_production(self, mock_db):
        """Should move a ready order back to in_production and clear the flag."""
        order = seed_order(mock_db, financial_stage="ready_to_invoice", ready_to_invoice=True)
        service = FinancialStageService()

        result = service.unmark_ready(order["id"])

        assert result.previous_stage == FinancialStage.READY_TO_INVOICE
        row = mock_db.find("orders", order["id"])
        assert row["financial_stage"] == "in_production"
        assert row["ready_to_invoice"] is False

    def test_unmark_from_production_raises(self, mock_db):
        """Should reject unmarking an order that is not ready."""
        order = seed_order(mock_db)
        service = FinancialStageService()

        with pytest.raises(InvalidFinancialTransitionError):
            service.unmark_ready(order["id"])


class TestMarkInvoicedAndCompleted:
    """Tests for mark_invoiced() and mark_completed()"""

    def test_mark_invoiced_with_one_invoice(self, mock_db):
        """Should move a ready order with exactly one invoice to invoiced."""
        order = seed_order(mock_db, financial_stage="ready_to_invoice")
        mock_db.seed("invoices", InvoiceFactory.create(order_id=order["id"]))
        service = FinancialStageService()

        result = service.mark_invoiced(order["id"])

        assert result.financial_stage == FinancialStage.INVOICED
        assert mock_db.find("orders", order["id"])["financial_stage"] == "invoiced"

    def test_mark_invoiced_without_invoice_raises(self, mock_db):
        """Should refuse while the order has no invoice."""
        order = seed_order(mock_db, financial_stage="ready_to_invoice")
        service = FinancialStageService()

        with pytest.raises(InvalidFinancialTransitionError) as exc_info:
            service.mark_invoiced(order["id"])

        assert "found 0" in exc_info.value.message

    def test_mark_invoiced_twice_is_noop(self, mock_db):
        """Should report changed=False for an invoiced order."""
        order = seed_order(mock_db, financial_stage="invoiced")
        service = FinancialStageService()

        result = service.mark_invoiced(order["id"])

        assert result.changed is False

    def test_mark_completed_from_invoiced(self, mock_db):
        """Should close out an invoiced order."""
        order = seed_order(mock_db, financial_stage="invoiced")
        service = FinancialStageService()

        result = service.mark_completed(order["id"])

        assert result.financial_stage == FinancialStage.COMPLETED

    def test_mark_completed_from_ready_raises(self, mock_db):
        """Should refuse to complete an order that was never invoiced."""
        order = seed_order(mock_db, financial_stage="ready_to_invoice")
        service = FinancialStageService()

        with pytest.raises(InvalidFinancialTransitionError):
            service.mark_completed(order["id"])

    def test_concurrent_transition_loses(self, mock_db):
        """Should fail when the stage changed after it was read."""
        order = seed_order(mock_db, financial_stage="invoiced")
        service = FinancialStageService()
        stale = service.get_order(order["id"]).model_copy(
            update={"financial_stage": FinancialStage.READY_TO_INVOICE}
        )

        with pytest.raises(InvalidFinancialTransitionError) as exc_info:
            service.transition(stale, FinancialStage.INVOICED, {})

        assert exc_info.value.details["current_stage"] == "invoiced"
        assert exc_info.value.details["reason"] == "order changed concurrently"


class TestCompleteIfDelivered:
    """Tests for FinancialStageService.complete_if_delivered()"""

    def test_completes_when_all_shipments_delivered(self, mock_db):
        """Should complete an invoiced order whose booked shipments all arrived."""
        order = seed_order(mock_db, financial_stage="invoiced")
        mock_db.seed("shipping_quotes", ShippingQuoteFactory.create(order_id=order["id"], status="delivered"))
        mock_db.seed("shipping_quotes", ShippingQuoteFactory.create(order_id=order["id"], status="rejected"))
        service = FinancialStageService()

        assert service.complete_if_delivered(order["id"]) is True
        assert mock_db.find("orders", order["id"])["financial_stage"] == "completed"

    def test_waits_for_shipment_in_transit(self, mock_db):
        """Should not complete while a booked shipment is still moving."""
        order = seed_order(mock_db, financial_stage="invoiced")
        mock_db.seed("shipping_quotes", ShippingQuoteFactory.create(order_id=order["id"], status="delivered"))
        mock_db.seed("shipping_quotes", ShippingQuoteFactory.create(order_id=order["id"], status="shipped"))
        service = FinancialStageService()

        assert service.complete_if_delivered(order["id"]) is False
        assert mock_db.find("orders", order["id"])["financial_stage"] == "invoiced"

    def test_requires_invoiced_order(self, mock_db):
        """Should leave orders that are not invoiced alone."""
        order = seed_order(mock_db, financial_stage="ready_to_invoice")
        mock_db.seed("shipping_quotes", ShippingQuoteFactory.create(order_id=order["id"], status="delivered"))
        service = FinancialStageService()

        assert service.complete_if_delivered(order["id"]) is False

    def test_requires_a_booked_shipment(self, mock_db):
        """Should not complete an order that never shipped."""
        order = seed_order(mock_db, financial_stage="invoiced")
        service = FinancialStageService()

        assert service.complete_if_delivered(order["id"]) is False


class TestPipelineAndCache:
    """Tests for pipeline() and on_production_changed()"""

    def test_pipeline_statistics(self, mock_db):
        """Should count orders per stage and sum the open value."""
        seed_order(mock_db, stages=(), total_amount="1000.00")
        seed_order(mock_db, stages=(), total_amount="500.00", financial_stage="invoiced")
        seed_order(mock_db, stages=(), total_amount="700.00", financial_stage="completed")
        service = FinancialStageService()

        result = service.pipeline()

        assert result.statistics.total_orders == 3
        assert result.statistics.in_production == 1
        assert result.statistics.invoiced == 1
        assert result.statistics.completed == 1
        assert result.statistics.total_pipeline_value == Decimal("1500.00")

    def test_pipeline_stage_filter(self, mock_db):
        """Should only include orders at the requested stage."""
        seed_order(mock_db, stages=())
        seed_order(mock_db, stages=(), financial_stage="invoiced")
        service = FinancialStageService()

        result = service.pipeline(FinancialStage.INVOICED)

        assert len(result.orders) == 1
        assert result.orders[0].financial_stage == FinancialStage.INVOICED

    def test_on_production_changed_refreshes_cache(self, mock_db):
        """Should write computed progress and stage onto the order."""
        order = seed_order(mock_db, stages=("completed", "cutting"))
        service = FinancialStageService()

        service.on_production_changed(order["id"])

        row = mock_db.find("orders", order["id"])
        assert row["production_progress"] == 50.0
        assert row["production_stage"] == "cutting"

    def test_order_summary(self, mock_db):
        """Should combine order fields and production progress."""
        order = seed_order(mock_db, stages=("completed", "completed"))
        service = FinancialStageService()

        summary = service.order_summary(order["id"])

        assert summary.order_number == order["order_number"]
        assert summary.production_progress_percent == 100.0
        assert summary.current_stage.value == "completed"
