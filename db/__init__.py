"""
db/ — PostgreSQL Database Layer

All data access goes through this package.

Usage:
    from db.connection import get_connection
    from db.matters import MatterStore
    from db.reference import ReferenceStore
    from db.notifications import NotificationStore
    from db.sync_progress import SyncProgressStore
    from db.dashboard import DashboardStatsStore

Connection pool is initialized on first use from DATABASE_URL env var.
"""
from db.connection import get_connection, get_pool, close_pool


def ensure_all_tables():
    """Initialize all database tables. Call once at application startup."""
    from db.accounts import ensure_accounts_tables
    from db.reference import ensure_reference_tables
    from db.matters import ensure_matters_tables
    from db.notifications import ensure_notifications_tables
    from db.sync_progress import ensure_sync_progress_tables
    from db.dashboard import ensure_dashboard_tables

    ensure_accounts_tables()
    ensure_reference_tables()
    ensure_matters_tables()
    ensure_notifications_tables()
    ensure_sync_progress_tables()
    ensure_dashboard_tables()


__all__ = [
    "get_connection",
    "get_pool",
    "close_pool",
    "ensure_all_tables",
]
