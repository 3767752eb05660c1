"""
Sync log service: append-only audit trail of queue and invoicing actions.
"""

from typing import Optional, Union
from datetime import datetime
import structlog

from config import get_supabase_client
from models.invoice import (
    SyncLogResponse,
    SyncLogStatus,
    SyncType,
    BulkInvoiceResult,
    SingleInvoiceResult,
    ReadyMarkingResult,
)
from exceptions import DatabaseError

logger = structlog.get_logger(__name__)

SyncDetails = Union[BulkInvoiceResult, SingleInvoiceResult, ReadyMarkingResult]


class SyncLogService:
    """Writes and reads sync_logs rows. Rows are never updated."""

    def __init__(self):
        self.db = get_supabase_client()
        self.table = "sync_logs"

    def record(
        self,
        sync_type: SyncType,
        status: SyncLogStatus,
        message: str,
        details: Optional[SyncDetails] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> SyncLogResponse:
        """Append one sync log."""
        insert_data = {
            "sync_type": sync_type.value,
            "status": status.value,
            "message": message,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "details": details.model_dump(mode="json") if details else None,
            "synced_at": datetime.utcnow().isoformat(),
        }

        try:
            result = self.db.table(self.table).insert(insert_data).execute()
        except Exception as e:
            logger.error("record_sync_log_failed", sync_type=sync_type.value, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("insert", str(e))

        logger.info(
            "sync_log_recorded",
            sync_type=sync_type.value,
            status=status.value,
            entity_id=entity_id
        )
        return self._row_to_response(result.data[0])

    def latest_by_entity(self, entity_type: str = "order", limit: int = 500) -> dict[str, SyncLogResponse]:
        """Most recent log per entity id, over the last `limit` logs."""
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("entity_type", entity_type)
                .order("synced_at", desc=True)
                .limit(limit)
                .execute()
            )
        except Exception as e:
            logger.error("list_sync_logs_failed", entity_type=entity_type, error=str(e), error_type=type(e).__name__)
            raise DatabaseError("select", str(e))

        latest: dict[str, SyncLogResponse] = {}
        for row in result.data:
            entity_id = row.get("entity_id")
            if entity_id and entity_id not in latest:
                latest[entity_id] = self._row_to_response(row)
        return latest

    def latest_for_entity(self, entity_type: str, entity_id: str) -> Optional[SyncLogResponse]:
        """Most recent log of one entity, however old."""
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("entity_type", entity_type)
                .eq("entity_id", entity_id)
                .order("synced_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(
                "get_latest_sync_log_failed",
                entity_type=entity_type,
                entity_id=entity_id,
                error=str(e),
                error_type=type(e).__name__
            )
            raise DatabaseError("select", str(e))

        return self._row_to_response(result.data[0]) if result.data else None

    def _row_to_response(self, row: dict) -> SyncLogResponse:
        return SyncLogResponse(
            id=row["id"],
            sync_type=row["sync_type"],
            status=row["status"],
            message=row.get("message") or "",
            entity_type=row.get("entity_type"),
            entity_id=row.get("entity_id"),
            details=row.get("details"),
            synced_at=row.get("synced_at") or row["created_at"],
        )


# Singleton instance
_sync_log_service: Optional[SyncLogService] = None


def get_sync_log_service() -> SyncLogService:
    """Get or create SyncLogService instance."""
    global _sync_log_service
    if _sync_log_service is None:
        _sync_log_service = SyncLogService()
    return _sync_log_service
