"""
Dashboard stats — PostgreSQL

A single precomputed row per user, read by the dashboard cards.
"""
import json
import logging
from typing import Optional

from db.connection import get_connection

logger = logging.getLogger(__name__)


DASHBOARD_SCHEMA = """
CREATE TABLE IF NOT EXISTS dashboard_stats (
    user_id TEXT PRIMARY KEY,
    stats JSONB NOT NULL,
    computed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


def ensure_dashboard_tables():
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(DASHBOARD_SCHEMA)
    logger.info("Dashboard tables ensured")


class DashboardStatsStore:
    def upsert(self, user_id: str, stats: dict):
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO dashboard_stats (user_id, stats, computed_at)
                VALUES (%s, %s, CURRENT_TIMESTAMP)
                ON CONFLICT (user_id) DO UPDATE SET
                    stats = EXCLUDED.stats,
                    computed_at = EXCLUDED.computed_at
                """,
                (user_id, json.dumps(stats, sort_keys=True, default=str)),
            )

    def get(self, user_id: str) -> Optional[dict]:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute("SELECT stats FROM dashboard_stats WHERE user_id = %s", (user_id,))
            row = cur.fetchone()
            return row["stats"] if row else None
