"""
Shipping quote API routes.
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional
import structlog

from models.permission import ActorContext
from models.shipping_quote import (
    QuoteStatus,
    ShippingQuoteCreate,
    CarrierQuoteUpdate,
    QuoteActionRequest,
    ShippingQuoteResponse,
    ShippingQuoteActionResponse,
    QuoteActionResult,
)
from services.shipping_quote_service import get_shipping_quote_service
from services.permission_service import SHIPPING_READ, SHIPPING_MANAGE
from routes.deps import handle_error, require_scopes

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/shipping/quotes", tags=["Shipping Quotes"])


@router.get("", response_model=list[ShippingQuoteResponse])
async def list_quotes(
    order_id: Optional[str] = Query(None, description="Filter by order"),
    status: Optional[QuoteStatus] = Query(None, description="Filter by status"),
    limit: int = Query(100, ge=1, le=500),
    actor: ActorContext = Depends(require_scopes(SHIPPING_READ)),
):
    """List quotes, newest first."""
    try:
        service = get_shipping_quote_service()
        return service.list_quotes(order_id=order_id, status=status, limit=limit)

    except Exception as e:
        return handle_error(e)


@router.post("", response_model=ShippingQuoteResponse, status_code=201)
async def create_quote(
    data: ShippingQuoteCreate,
    actor: ActorContext = Depends(require_scopes(SHIPPING_MANAGE)),
):
    """
    Request a shipping quote for an order.

    Raises:
        404: Order not found
    """
    try:
        service = get_shipping_quote_service()
        return service.create_quote(data, actor)

    except Exception as e:
        return handle_error(e)


@router.get("/{quote_id}", response_model=ShippingQuoteResponse)
async def get_quote(
    quote_id: str,
    actor: ActorContext = Depends(require_scopes(SHIPPING_READ)),
):
    """
    Get a quote.

    Raises:
        404: Quote not found
    """
    try:
        service = get_shipping_quote_service()
        return service.get_quote(quote_id)

    except Exception as e:
        return handle_error(e)


@router.get("/{quote_id}/actions", response_model=list[ShippingQuoteActionResponse])
async def list_quote_actions(
    quote_id: str,
    actor: ActorContext = Depends(require_scopes(SHIPPING_READ)),
):
    """Audit trail of a quote."""
    try:
        service = get_shipping_quote_service()
        return service.list_actions(quote_id)

    except Exception as e:
        return handle_error(e)


@router.post("/{quote_id}/carrier-quote", response_model=ShippingQuoteResponse)
async def record_carrier_quote(
    quote_id: str,
    data: CarrierQuoteUpdate,
    actor: ActorContext = Depends(require_scopes(SHIPPING_MANAGE)),
):
    """
    Store the carrier's price on a pending quote.

    Raises:
        404: Quote not found
        409: Quote is not pending
    """
    try:
        service = get_shipping_quote_service()
        return service.record_carrier_quote(quote_id, data, actor)

    except Exception as e:
        return handle_error(e)


@router.post("/{quote_id}/action", response_model=QuoteActionResult)
async def perform_action(
    quote_id: str,
    data: QuoteActionRequest,
    actor: ActorContext = Depends(require_scopes(SHIPPING_MANAGE)),
):
    """
    Approve, reject, book, ship, deliver or track a quote.

    Raises:
        404: Quote not found
        409: Quote status does not allow the action
        503: Carrier tracking unavailable
    """
    try:
        service = get_shipping_quote_service()
        return service.perform_action(quote_id, data.action, actor, data.notes)

    except Exception as e:
        return handle_error(e)
