"""
Sync progress — PostgreSQL

One row per (user_id, sync_type). Read by the settings screen to show
status, percentage and failure reason.
"""
import logging
from typing import List, Optional

from db.connection import get_connection

logger = logging.getLogger(__name__)


SYNC_PROGRESS_SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_progress (
    id SERIAL PRIMARY KEY,
    user_id TEXT NOT NULL,
    sync_type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'idle',
    last_synced_id INTEGER,
    last_sync_date TIMESTAMP,
    total_processed INTEGER DEFAULT 0,
    total_failed INTEGER DEFAULT 0,
    total_records INTEGER DEFAULT 0,
    failure_reason TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (user_id, sync_type)
);
"""

_PROGRESS_COLUMNS = (
    "status",
    "last_synced_id",
    "last_sync_date",
    "total_processed",
    "total_failed",
    "total_records",
    "failure_reason",
    "updated_at",
)


def ensure_sync_progress_tables():
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(SYNC_PROGRESS_SCHEMA)
    logger.info("Sync progress tables ensured")


class SyncProgressStore:
    """Data access for sync_progress."""

    def get(self, user_id: str, sync_type: str) -> Optional[dict]:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM sync_progress WHERE user_id = %s AND sync_type = %s",
                (user_id, sync_type),
            )
            row = cur.fetchone()
            return dict(row) if row else None

    def save(self, user_id: str, sync_type: str, **fields) -> dict:
        """Insert or update the progress row with the given columns."""
        unknown = set(fields) - set(_PROGRESS_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown sync_progress columns: {sorted(unknown)}")
        columns = list(fields)
        insert_cols = ", ".join(["user_id", "sync_type", *columns])
        placeholders = ", ".join(["%s"] * (len(columns) + 2))
        assignments = ", ".join(f"{c} = EXCLUDED.{c}" for c in columns) or "status = sync_progress.status"
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                INSERT INTO sync_progress ({insert_cols})
                VALUES ({placeholders})
                ON CONFLICT (user_id, sync_type) DO UPDATE SET {assignments}
                RETURNING *
                """,
                (user_id, sync_type, *fields.values()),
            )
            return dict(cur.fetchone())

    def list_for_user(self, user_id: str) -> List[dict]:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM sync_progress WHERE user_id = %s ORDER BY sync_type",
                (user_id,),
            )
            return [dict(r) for r in cur.fetchall()]


def progress_percent(row: dict) -> int:
    """Share of total_records handled (processed or failed), 0-100."""
    if row.get("status") == "completed":
        return 100
    total = row.get("total_records") or 0
    if not total:
        return 0
    done = (row.get("total_processed") or 0) + (row.get("total_failed") or 0)
    return min(100, round(done / total * 100))
