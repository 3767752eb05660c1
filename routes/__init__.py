"""
API route modules.

Each module defines routes for one stage of order fulfillment.
"""

from routes.production import router as production_router
from routes.qc_inspections import router as qc_inspections_router
from routes.finance import router as finance_router
from routes.shipping_quotes import router as shipping_quotes_router

__all__ = [
    "production_router",
    "qc_inspections_router",
    "finance_router",
    "shipping_quotes_router",
]
