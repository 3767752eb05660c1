"""
QC gate service.

Records inspections and owns the QC lock on production items. Any failed
inspection (or one demanding reinspection) locks the item, whatever its
inspection date. Only the item's latest inspection can clear the lock, and
only when it passes with no reinspection.
"""

from typing import Optional
from datetime import datetime
import structlog

from config import get_supabase_client
from models.quality import (
    QCInspectionCreate,
    QCInspectionUpdate,
    QCInspectionResponse,
    inspection_clears_lock,
)
from models.production import ProductionItemResponse
from services.stage_ledger_service import StageLedgerService
from exceptions import (
    DatabaseError,
    ValidationError,
    InspectionNotFoundError,
)

logger = structlog.get_logger(__name__)


class QCService:
    """
    QC gate business logic.

    Handles inspection CRUD and lock/unlock of production items.
    """

    def __init__(self, ledger: Optional[StageLedgerService] = None):
        self.db = get_supabase_client()
        self.table = "qc_inspections"
        self.items_table = "production_items"
        self.ledger = ledger or StageLedgerService()

    # ===================
    # READ OPERATIONS
    # ===================

    def get_inspection(self, inspection_id: str) -> QCInspectionResponse:
        """
        Get a single inspection by ID.

        Raises:
            InspectionNotFoundError: If inspection doesn't exist
        """
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", inspection_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("get_inspection_failed", inspection_id=inspection_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        if not result.data:
            raise InspectionNotFoundError(inspection_id)

        return self._row_to_response(result.data[0])

    def list_inspections(
        self,
        order_id: Optional[str] = None,
        item_id: Optional[str] = None,
        limit: int = 100
    ) -> list[QCInspectionResponse]:
        """
        List inspections, newest first.

        Args:
            order_id: Filter by order
            item_id: Filter by production item
            limit: Max rows
        """
        logger.debug("listing_inspections", order_id=order_id, item_id=item_id)

        try:
            query = self.db.table(self.table).select("*")

            if order_id:
                query = query.eq("order_id", order_id)
            if item_id:
                query = query.eq("item_id", item_id)

            result = (
                query
                .order("inspection_date", desc=True)
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.error("list_inspections_failed", error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        return [self._row_to_response(row) for row in result.data]

    def is_locked(self, item_id: str) -> bool:
        """True if the item is currently held by a QC lock."""
        return self.ledger.get_item(item_id).qc_locked

    # ===================
    # WRITE OPERATIONS
    # ===================

    def record_inspection(self, data: QCInspectionCreate) -> QCInspectionResponse:
        """
        Record an inspection and apply its lock effect.

        Raises:
            ProductionItemNotFoundError: If item doesn't exist
            ValidationError: If the item doesn't belong to the order
        """
        item = self.ledger.get_item(data.item_id)

        if item.order_id != data.order_id:
            raise ValidationError(
                "Production item does not belong to this order",
                code="QC_ITEM_ORDER_MISMATCH",
                details={"item_id": data.item_id, "order_id": data.order_id}
            )

        logger.info(
            "recording_inspection",
            item_id=data.item_id,
            order_id=data.order_id,
            pass_fail=data.pass_fail,
            reinspection_required=data.reinspection_required
        )

        inspection_date = data.inspection_date or datetime.utcnow()
        insert_data = {
            "order_id": data.order_id,
            "item_id": data.item_id,
            "inspector_name": data.inspector_name,
            "inspection_date": inspection_date.isoformat(),
            "inspection_type": data.inspection_type,
            "quality_score": str(data.quality_score) if data.quality_score is not None else None,
            "defects_found": data.defects_found,
            "defect_types": data.defect_types,
            "pass_fail": data.pass_fail,
            "corrective_actions": data.corrective_actions,
            "reinspection_required": data.reinspection_required,
            "notes": data.notes,
            "photos": data.photos,
        }

        try:
            result = self.db.table(self.table).insert(insert_data).execute()
        except Exception as e:
            logger.error("record_inspection_failed", item_id=data.item_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("insert", str(e))

        inspection = self._row_to_response(result.data[0])
        self._apply_lock_effect(inspection, item)

        logger.info("inspection_recorded", inspection_id=inspection.id, blocks_item=inspection.blocks_item)
        return inspection

    def update_inspection(self, inspection_id: str, data: QCInspectionUpdate) -> QCInspectionResponse:
        """
        Update an inspection and re-apply its lock effect.

        corrective_actions is appended to the existing text.

        Raises:
            InspectionNotFoundError: If inspection doesn't exist
        """
        existing = self.get_inspection(inspection_id)

        update_data = data.model_dump(exclude_unset=True, mode="json")

        if data.corrective_actions:
            if existing.corrective_actions:
                update_data["corrective_actions"] = f"{existing.corrective_actions}\n{data.corrective_actions}"
        elif "corrective_actions" in update_data:
            del update_data["corrective_actions"]

        if not update_data:
            return existing

        update_data["updated_at"] = datetime.utcnow().isoformat()

        logger.info("updating_inspection", inspection_id=inspection_id, fields=list(update_data.keys()))

        try:
            result = (
                self.db.table(self.table)
                .update(update_data)
                .eq("id", inspection_id)
                .execute()
            )
        except Exception as e:
            logger.error("update_inspection_failed", inspection_id=inspection_id, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("update", str(e))

        if not result.data:
            raise InspectionNotFoundError(inspection_id)

        inspection = self._row_to_response(result.data[0])
        self._apply_lock_effect(inspection, self.ledger.get_item(inspection.item_id))

        return inspection

    def lock_item(self, item_id: str, inspection_id: str) -> None:
        """Hold an item at quality_check until a passing reinspection."""
        self._write_lock(item_id, True, inspection_id)
        logger.warning("item_qc_locked", item_id=item_id, inspection_id=inspection_id)

    def clear_lock(self, item_id: str) -> None:
        """Release an item's QC lock."""
        self._write_lock(item_id, False, None)
        logger.info("item_qc_lock_cleared", item_id=item_id)

    # ===================
    # UTILITY METHODS
    # ===================

    def _apply_lock_effect(self, inspection: QCInspectionResponse, item: ProductionItemResponse) -> None:
        # Any recorded defect locks, whatever its date
        if inspection.blocks_item:
            self.lock_item(item.id, inspection.id)
            return

        if not item.qc_locked:
            return

        if not inspection_clears_lock(inspection.pass_fail, inspection.reinspection_required):
            return

        # Only the most recent inspection can release the lock
        latest = self.list_inspections(item_id=item.id, limit=1)
        if latest and latest[0].id == inspection.id:
            self.clear_lock(item.id)
        else:
            logger.info("superseded_pass_ignored", item_id=item.id, inspection_id=inspection.id)

    def _write_lock(self, item_id: str, locked: bool, inspection_id: Optional[str]) -> None:
        try:
            (
                self.db.table(self.items_table)
                .update({
                    "qc_locked": locked,
                    "qc_lock_inspection_id": inspection_id,
                    "updated_at": datetime.utcnow().isoformat(),
                })
                .eq("id", item_id)
                .execute()
            )
        except Exception as e:
            logger.error("write_qc_lock_failed", item_id=item_id, locked=locked, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("update", str(e))

    def _row_to_response(self, row: dict) -> QCInspectionResponse:
        """Convert database row to QCInspectionResponse."""
        return QCInspectionResponse(
            id=row["id"],
            order_id=row["order_id"],
            item_id=row["item_id"],
            inspector_name=row["inspector_name"],
            inspection_date=row.get("inspection_date") or row["created_at"],
            inspection_type=row.get("inspection_type") or "quality_check",
            quality_score=row.get("quality_score"),
            defects_found=row.get("defects_found") or 0,
            defect_types=row.get("defect_types") or [],
            pass_fail=row.get("pass_fail"),
            corrective_actions=row.get("corrective_actions") or "",
            reinspection_required=bool(row.get("reinspection_required")),
            notes=row.get("notes") or "",
            photos=row.get("photos") or [],
            created_at=row["created_at"],
            updated_at=row.get("updated_at"),
        )


# Singleton instance
_qc_service: Optional[QCService] = None


def get_qc_service() -> QCService:
    """Get or create QCService instance."""
    global _qc_service
    if _qc_service is None:
        from services.stage_ledger_service import get_stage_ledger_service

        _qc_service = QCService(ledger=get_stage_ledger_service())
    return _qc_service
