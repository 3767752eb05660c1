"""
Supabase client for the fulfillment tables.

Services take the client from get_supabase_client(); tests patch it per
service module.
"""

from supabase import create_client, Client
from functools import lru_cache
import structlog

from config.settings import settings
from exceptions.errors import DatabaseError

logger = structlog.get_logger(__name__)

# Tables the fulfillment services read and write
FULFILLMENT_TABLES = (
    "orders",
    "production_items",
    "qc_inspections",
    "invoices",
    "sync_queue",
    "sync_logs",
    "shipping_quotes",
    "shipping_quote_actions",
)


@lru_cache()
def get_supabase_client() -> Client:
    """
    Cached Supabase client.

    Call reset_connection() to reconnect.

    Raises:
        DatabaseError: If the client cannot reach the orders table
    """
    logger.info("connecting_to_supabase", url=settings.supabase_url[:30] + "...")

    try:
        client = create_client(settings.supabase_url, settings.supabase_key)
        client.table("orders").select("id").limit(1).execute()
    except Exception as e:
        logger.error("supabase_connection_failed", error=str(e), error_type=type(e).__name__)
        raise DatabaseError("connect", str(e)) from e

    logger.info("supabase_connected")
    return client


def check_connection() -> dict:
    """
    Row counts per fulfillment table, for startup and health checks.

    Returns:
        dict: {"status": "healthy", "tables": {...}} or {"status": "unhealthy", "error": ...}
    """
    try:
        client = get_supabase_client()
        counts = {}
        for table in FULFILLMENT_TABLES:
            result = client.table(table).select("id", count="exact").limit(1).execute()
            counts[table] = result.count
    except Exception as e:
        message = e.internal_message if isinstance(e, DatabaseError) else str(e)
        return {"status": "unhealthy", "error": message}

    return {"status": "healthy", "tables": counts}


def reset_connection() -> None:
    """Drop the cached client."""
    get_supabase_client.cache_clear()
    logger.info("database_connection_reset")
