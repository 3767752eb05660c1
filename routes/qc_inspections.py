"""
QC inspection API routes.
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional
import structlog

from models.permission import ActorContext
from models.quality import QCInspectionCreate, QCInspectionUpdate, QCInspectionResponse
from services.qc_service import get_qc_service
from services.permission_service import PRODUCTION_READ, PRODUCTION_WRITE, PRODUCTION_UPDATE
from routes.deps import handle_error, require_scopes

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/qc-inspections", tags=["QC Inspections"])


@router.get("", response_model=list[QCInspectionResponse])
async def list_inspections(
    order_id: Optional[str] = Query(None, description="Filter by order"),
    item_id: Optional[str] = Query(None, description="Filter by production item"),
    limit: int = Query(100, ge=1, le=500),
    actor: ActorContext = Depends(require_scopes(PRODUCTION_READ)),
):
    """List inspections, newest first."""
    try:
        service = get_qc_service()
        return service.list_inspections(order_id=order_id, item_id=item_id, limit=limit)

    except Exception as e:
        return handle_error(e)


@router.get("/{inspection_id}", response_model=QCInspectionResponse)
async def get_inspection(
    inspection_id: str,
    actor: ActorContext = Depends(require_scopes(PRODUCTION_READ)),
):
    """
    Get an inspection.

    Raises:
        404: Inspection not found
    """
    try:
        service = get_qc_service()
        return service.get_inspection(inspection_id)

    except Exception as e:
        return handle_error(e)


@router.post("", response_model=QCInspectionResponse, status_code=201)
async def record_inspection(
    data: QCInspectionCreate,
    actor: ActorContext = Depends(require_scopes(PRODUCTION_WRITE)),
):
    """
    Record an inspection. A failing result locks the item at quality_check.

    Raises:
        404: Item not found
        422: Item does not belong to the order
    """
    try:
        service = get_qc_service()
        return service.record_inspection(data)

    except Exception as e:
        return handle_error(e)


@router.patch("/{inspection_id}", response_model=QCInspectionResponse)
async def update_inspection(
    inspection_id: str,
    data: QCInspectionUpdate,
    actor: ActorContext = Depends(require_scopes(PRODUCTION_UPDATE)),
):
    """
    Update an inspection. Corrective actions are appended.

    Raises:
        404: Inspection not found
    """
    try:
        service = get_qc_service()
        return service.update_inspection(inspection_id, data)

    except Exception as e:
        return handle_error(e)
