"""
Configuration: environment settings and the database client.
"""

from config.settings import settings, get_settings, Settings
from config.database import (
    get_supabase_client,
    check_connection,
    reset_connection,
    FULFILLMENT_TABLES,
)

__all__ = [
    "settings",
    "get_settings",
    "Settings",
    "get_supabase_client",
    "check_connection",
    "reset_connection",
    "FULFILLMENT_TABLES",
]
