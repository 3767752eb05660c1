"""
Production API routes: production items, stage advances, order progress.
"""

from fastapi import APIRouter, Depends
import structlog

from models.permission import ActorContext
from models.production import (
    ProductionItemsCreate,
    ProductionItemResponse,
    StageAdvance,
    ProgressUpdate,
    StageHistoryEntry,
    OrderProgress,
)
from services.stage_ledger_service import get_stage_ledger_service
from services.production_progress_service import get_production_progress_service
from services.permission_service import PRODUCTION_READ, PRODUCTION_UPDATE, PRODUCTION_WRITE
from routes.deps import handle_error, require_scopes

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/production", tags=["Production"])


# ===================
# ORDER ITEMS
# ===================

@router.post("/orders/{order_id}/items", response_model=list[ProductionItemResponse], status_code=201)
async def create_items(
    order_id: str,
    data: ProductionItemsCreate,
    actor: ActorContext = Depends(require_scopes(PRODUCTION_WRITE)),
):
    """
    Create the production items of a confirmed order.

    Raises:
        404: Order not found
    """
    try:
        service = get_stage_ledger_service()
        return service.create_items(order_id, data)

    except Exception as e:
        return handle_error(e)


@router.get("/orders/{order_id}/items", response_model=list[ProductionItemResponse])
async def list_items(
    order_id: str,
    actor: ActorContext = Depends(require_scopes(PRODUCTION_READ)),
):
    """List the production items of an order."""
    try:
        service = get_stage_ledger_service()
        return service.list_for_order(order_id)

    except Exception as e:
        return handle_error(e)


@router.get("/orders/{order_id}/progress", response_model=OrderProgress)
async def get_order_progress(
    order_id: str,
    actor: ActorContext = Depends(require_scopes(PRODUCTION_READ)),
):
    """Order production progress, current stage and completion."""
    try:
        service = get_production_progress_service()
        return service.order_progress(order_id)

    except Exception as e:
        return handle_error(e)


# ===================
# SINGLE ITEM
# ===================

@router.get("/items/{item_id}", response_model=ProductionItemResponse)
async def get_item(
    item_id: str,
    actor: ActorContext = Depends(require_scopes(PRODUCTION_READ)),
):
    """
    Get a production item.

    Raises:
        404: Item not found
    """
    try:
        service = get_stage_ledger_service()
        return service.get_item(item_id)

    except Exception as e:
        return handle_error(e)


@router.get("/items/{item_id}/history", response_model=list[StageHistoryEntry])
async def get_item_history(
    item_id: str,
    actor: ActorContext = Depends(require_scopes(PRODUCTION_READ)),
):
    """Stage history of a production item."""
    try:
        service = get_stage_ledger_service()
        return service.get_history(item_id)

    except Exception as e:
        return handle_error(e)


@router.post("/items/{item_id}/advance", response_model=ProductionItemResponse)
async def advance_stage(
    item_id: str,
    data: StageAdvance,
    actor: ActorContext = Depends(require_scopes(PRODUCTION_UPDATE)),
):
    """
    Advance an item to its next stage.

    Raises:
        404: Item not found
        409: Not the next stage, or blocked by a QC lock
    """
    try:
        service = get_stage_ledger_service()
        item = service.advance_stage(item_id, data)

        logger.info("stage_advance_requested", item_id=item_id, user_id=actor.user_id, stage=data.new_stage.value)
        return item

    except Exception as e:
        return handle_error(e)


@router.patch("/items/{item_id}/progress", response_model=ProductionItemResponse)
async def update_progress(
    item_id: str,
    data: ProgressUpdate,
    actor: ActorContext = Depends(require_scopes(PRODUCTION_UPDATE)),
):
    """
    Set progress within the current stage.

    Raises:
        404: Item not found
        422: Progress would decrease
    """
    try:
        service = get_stage_ledger_service()
        return service.update_progress(item_id, data.progress)

    except Exception as e:
        return handle_error(e)
