"""
Matters — PostgreSQL

Local copy of Docketwise matters, keyed by (user_id, docketwise_id).
Sync passes upsert only the sync-owned columns; user-owned columns
(billing, deadlines, fees, quality counters) are written by the
matter-update handler and never touched here. Rows with is_edited = TRUE
are skipped by every sync write except last_synced_at.

Tables:
    matters, matter_status_history
"""
import logging
from datetime import datetime, date
from typing import Dict, Iterable, List, Optional

import psycopg2.extensions
from psycopg2.extras import execute_values

from config import BATCH_TRANSACTION_TIMEOUT_MS
from db.connection import get_connection

logger = logging.getLogger(__name__)


# ============================================================
# Schema
# ============================================================

MATTERS_SCHEMA = """
CREATE TABLE IF NOT EXISTS matters (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id TEXT NOT NULL,
    docketwise_id INTEGER NOT NULL,
    title TEXT,
    description TEXT,
    client_id INTEGER,
    client_name TEXT,
    matter_type_id INTEGER,
    matter_type TEXT,
    status_id INTEGER,
    status TEXT,
    status_for_filing_id INTEGER,
    status_for_filing TEXT,
    assignees TEXT,
    docketwise_user_ids TEXT DEFAULT '[]',
    team_id INTEGER,
    billing_status TEXT,
    total_hours REAL,
    flat_fee REAL,
    rfe_count INTEGER DEFAULT 0,
    revision_count INTEGER DEFAULT 0,
    error_count INTEGER DEFAULT 0,
    docketwise_created_at TIMESTAMP,
    docketwise_updated_at TIMESTAMP,
    opened_at TIMESTAMP,
    closed_at TIMESTAMP,
    assigned_date TIMESTAMP,
    estimated_deadline TIMESTAMP,
    actual_deadline TIMESTAMP,
    last_synced_at TIMESTAMP,
    edited_at TIMESTAMP,
    edited_by TEXT,
    archived BOOLEAN DEFAULT FALSE,
    discarded BOOLEAN DEFAULT FALSE,
    is_edited BOOLEAN DEFAULT FALSE,
    is_stale BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (user_id, docketwise_id)
);
CREATE INDEX IF NOT EXISTS idx_matters_user_dw ON matters(user_id, docketwise_id DESC);
CREATE INDEX IF NOT EXISTS idx_matters_deadline ON matters(estimated_deadline) WHERE is_stale = FALSE;

CREATE TABLE IF NOT EXISTS matter_status_history (
    id SERIAL PRIMARY KEY,
    matter_id UUID NOT NULL REFERENCES matters(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL,
    old_status TEXT,
    new_status TEXT,
    source TEXT NOT NULL DEFAULT 'sync',
    changed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_msh_matter ON matter_status_history(matter_id, changed_at);
"""

# Columns a sync pass is allowed to write
SYNC_COLUMNS = (
    "title",
    "description",
    "client_id",
    "client_name",
    "matter_type_id",
    "matter_type",
    "status_id",
    "status",
    "status_for_filing_id",
    "status_for_filing",
    "assignees",
    "docketwise_user_ids",
    "team_id",
    "docketwise_created_at",
    "docketwise_updated_at",
    "opened_at",
    "closed_at",
    "archived",
    "discarded",
    "is_stale",
    "last_synced_at",
)

_BOOLEAN_COLUMNS = {"archived", "discarded", "is_stale"}


def ensure_matters_tables():
    """Create matter tables if they don't exist."""
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(MATTERS_SCHEMA)
    logger.info("Matter tables ensured")


def _row_values(row: dict) -> list:
    values = []
    for column in SYNC_COLUMNS:
        value = row.get(column)
        if column in _BOOLEAN_COLUMNS:
            value = bool(value)
        values.append(value)
    return values


class MatterStore:
    """Data access for the matters table."""

    def get(self, user_id: str, docketwise_id: int) -> Optional[dict]:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM matters WHERE user_id = %s AND docketwise_id = %s",
                (user_id, docketwise_id),
            )
            row = cur.fetchone()
            return dict(row) if row else None

    def get_by_docketwise_ids(self, user_id: str, docketwise_ids: Iterable[int]) -> Dict[int, dict]:
        """Return docketwise_id -> row for the given ids."""
        ids = list(docketwise_ids)
        if not ids:
            return {}
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT * FROM matters WHERE user_id = %s AND docketwise_id = ANY(%s)",
                (user_id, ids),
            )
            return {row["docketwise_id"]: dict(row) for row in cur.fetchall()}

    def touch_synced(self, user_id: str, docketwise_ids: List[int], synced_at: datetime):
        """Advance last_synced_at only (used for locally edited matters)."""
        if not docketwise_ids:
            return
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE matters SET last_synced_at = %s
                WHERE user_id = %s AND docketwise_id = ANY(%s)
                """,
                (synced_at, user_id, list(docketwise_ids)),
            )

    def upsert_batch(self, user_id: str, rows: List[dict]) -> Dict[int, str]:
        """
        Upsert one batch of resolved matters in a single transaction.

        The transaction runs with an extended statement timeout. Returns
        docketwise_id -> internal id for every written row.
        """
        if not rows:
            return {}
        values = [(user_id, row["docketwise_id"], *_row_values(row)) for row in rows]
        columns = ", ".join(SYNC_COLUMNS)
        assignments = ",\n                ".join(f"{c} = EXCLUDED.{c}" for c in SYNC_COLUMNS)
        sql = f"""
            INSERT INTO matters (user_id, docketwise_id, {columns})
            VALUES %s
            ON CONFLICT (user_id, docketwise_id) DO UPDATE SET
                {assignments},
                updated_at = CURRENT_TIMESTAMP
            WHERE matters.is_edited = FALSE
            RETURNING docketwise_id, id
        """
        with get_connection(statement_timeout_ms=BATCH_TRANSACTION_TIMEOUT_MS) as conn:
            cur = conn.cursor(cursor_factory=psycopg2.extensions.cursor)
            written = execute_values(cur, sql, values, page_size=len(values), fetch=True)
        logger.info("Upserted %d matters for user %s", len(written), user_id)
        return {dw_id: str(matter_id) for dw_id, matter_id in written}

    def update_synced_fields(self, user_id: str, docketwise_id: int, fields: dict) -> bool:
        """Write sync-owned columns of a single non-edited matter."""
        updates = {k: v for k, v in fields.items() if k in SYNC_COLUMNS}
        if not updates:
            return False
        assignments = ", ".join(f"{column} = %s" for column in updates)
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                UPDATE matters SET {assignments}, updated_at = CURRENT_TIMESTAMP
                WHERE user_id = %s AND docketwise_id = %s AND is_edited = FALSE
                """,
                (*updates.values(), user_id, docketwise_id),
            )
            return cur.rowcount > 0

    def list_for_backfill(self, user_id: str, before_id: Optional[int] = None) -> List[dict]:
        """Non-discarded matters in descending docketwise_id order, below the cursor."""
        sql = "SELECT * FROM matters WHERE user_id = %s AND discarded = FALSE"
        params: list = [user_id]
        if before_id is not None:
            sql += " AND docketwise_id < %s"
            params.append(before_id)
        sql += " ORDER BY docketwise_id DESC"
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(sql, params)
            return [dict(r) for r in cur.fetchall()]

    def record_status_change(
        self,
        matter_id: str,
        user_id: str,
        old_status: Optional[str],
        new_status: Optional[str],
        source: str = "sync",
    ):
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO matter_status_history (matter_id, user_id, old_status, new_status, source)
                VALUES (%s, %s, %s, %s, %s)
                """,
                (matter_id, user_id, old_status, new_status, source),
            )

    def list_for_dashboard(self, user_id: str) -> List[dict]:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT * FROM matters
                WHERE user_id = %s AND archived = FALSE AND discarded = FALSE
                ORDER BY docketwise_id
                """,
                (user_id,),
            )
            return [dict(r) for r in cur.fetchall()]

    def list_upcoming_deadlines(self, start: date, end: datetime) -> List[dict]:
        """Non-stale matters with an estimated deadline in [start, end], with owner contact."""
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT m.*, u.email AS owner_email, u.name AS owner_name
                FROM matters m
                JOIN users u ON u.id = m.user_id
                WHERE m.estimated_deadline >= %s
                  AND m.estimated_deadline <= %s
                  AND m.is_stale = FALSE
                ORDER BY m.estimated_deadline
                """,
                (start, end),
            )
            return [dict(r) for r in cur.fetchall()]
