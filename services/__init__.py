"""
Business logic services.

Each service handles one stage of order fulfillment.
"""

from services.stage_ledger_service import StageLedgerService, get_stage_ledger_service
from services.qc_service import QCService, get_qc_service
from services.production_progress_service import (
    ProductionProgressService,
    get_production_progress_service,
    calculate_order_progress,
)
from services.sync_log_service import SyncLogService, get_sync_log_service
from services.financial_stage_service import FinancialStageService, get_financial_stage_service
from services.invoice_queue_service import InvoiceQueueService, get_invoice_queue_service
from services.shipping_quote_service import ShippingQuoteService, get_shipping_quote_service
from services.permission_service import PermissionChecker, get_permission_checker

__all__ = [
    "StageLedgerService",
    "get_stage_ledger_service",
    "QCService",
    "get_qc_service",
    "ProductionProgressService",
    "get_production_progress_service",
    "calculate_order_progress",
    "SyncLogService",
    "get_sync_log_service",
    "FinancialStageService",
    "get_financial_stage_service",
    "InvoiceQueueService",
    "get_invoice_queue_service",
    "ShippingQuoteService",
    "get_shipping_quote_service",
    "PermissionChecker",
    "get_permission_checker",
]
