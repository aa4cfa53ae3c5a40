"""
Docketwise reference entities — PostgreSQL

Statuses, matter types, team members and contacts, each keyed by the
Docketwise id. Also rebuilds the id -> name maps when Redis is cold.

Tables:
    matter_statuses, matter_types, teams, contacts
"""
import logging
from typing import List

import psycopg2.extensions
from psycopg2.extras import execute_values

from config import BATCH_TRANSACTION_TIMEOUT_MS
from db.connection import get_connection
from models import ReferenceMaps

logger = logging.getLogger(__name__)


REFERENCE_SCHEMA = """
CREATE TABLE IF NOT EXISTS matter_types (
    docketwise_id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    complexity_weight REAL DEFAULT 1,
    flat_fee REAL,
    last_synced_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS matter_statuses (
    docketwise_id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    matter_type_id INTEGER REFERENCES matter_types(docketwise_id) ON DELETE SET NULL,
    sort_order INTEGER,
    last_synced_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS teams (
    docketwise_id INTEGER PRIMARY KEY,
    email TEXT,
    first_name TEXT,
    last_name TEXT,
    full_name TEXT,
    title TEXT,
    team_type TEXT DEFAULT 'inHouse',
    team_type_source TEXT DEFAULT 'heuristic',
    is_active BOOLEAN DEFAULT TRUE,
    utilization_target REAL,
    weekly_capacity_hours REAL,
    last_synced_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS contacts (
    docketwise_id INTEGER PRIMARY KEY,
    first_name TEXT,
    last_name TEXT,
    company_name TEXT,
    display_name TEXT,
    email TEXT,
    phone TEXT,
    last_synced_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


def ensure_reference_tables():
    """Create reference tables if they don't exist."""
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(REFERENCE_SCHEMA)
    logger.info("Reference tables ensured")


class ReferenceStore:
    """Data access for Docketwise reference entities."""

    def upsert_statuses(self, rows: List[dict]):
        """rows: {docketwise_id, name, matter_type_id, sort_order}"""
        if not rows:
            return
        values = [
            (r["docketwise_id"], r["name"], r.get("matter_type_id"), r.get("sort_order"))
            for r in rows
        ]
        sql = """
            INSERT INTO matter_statuses (docketwise_id, name, matter_type_id, sort_order)
            VALUES %s
            ON CONFLICT (docketwise_id) DO UPDATE SET
                name = EXCLUDED.name,
                matter_type_id = COALESCE(EXCLUDED.matter_type_id, matter_statuses.matter_type_id),
                sort_order = EXCLUDED.sort_order,
                last_synced_at = CURRENT_TIMESTAMP
        """
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=psycopg2.extensions.cursor)
            execute_values(cur, sql, values, page_size=500)
        logger.info("Upserted %d matter statuses", len(values))

    def upsert_types(self, rows: List[dict]):
        """rows: {docketwise_id, name}; weights and fees are maintained locally."""
        if not rows:
            return
        values = [(r["docketwise_id"], r["name"]) for r in rows]
        sql = """
            INSERT INTO matter_types (docketwise_id, name)
            VALUES %s
            ON CONFLICT (docketwise_id) DO UPDATE SET
                name = EXCLUDED.name,
                last_synced_at = CURRENT_TIMESTAMP
        """
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=psycopg2.extensions.cursor)
            execute_values(cur, sql, values, page_size=500)
        logger.info("Upserted %d matter types", len(values))

    def upsert_team_members(self, rows: List[dict]):
        """
        rows: {docketwise_id, email, first_name, last_name, full_name, title,
        team_type, is_active}

        A team type set by an administrator (team_type_source = 'manual')
        survives every sync.
        """
        if not rows:
            return
        values = [
            (
                r["docketwise_id"], r.get("email"), r.get("first_name"), r.get("last_name"),
                r.get("full_name"), r.get("title"), r.get("team_type"), bool(r.get("is_active", True)),
            )
            for r in rows
        ]
        sql = """
            INSERT INTO teams
                (docketwise_id, email, first_name, last_name, full_name, title, team_type, is_active)
            VALUES %s
            ON CONFLICT (docketwise_id) DO UPDATE SET
                email = EXCLUDED.email,
                first_name = EXCLUDED.first_name,
                last_name = EXCLUDED.last_name,
                full_name = EXCLUDED.full_name,
                title = EXCLUDED.title,
                team_type = CASE WHEN teams.team_type_source = 'manual'
                                 THEN teams.team_type ELSE EXCLUDED.team_type END,
                is_active = EXCLUDED.is_active,
                last_synced_at = CURRENT_TIMESTAMP
        """
        with get_connection() as conn:
            cur = conn.cursor(cursor_factory=psycopg2.extensions.cursor)
            execute_values(cur, sql, values, page_size=500)
        logger.info("Upserted %d team members", len(values))

    def upsert_contacts_batch(self, rows: List[dict]):
        """One contact batch, in its own transaction with the extended timeout."""
        if not rows:
            return
        values = [
            (
                r["docketwise_id"], r.get("first_name"), r.get("last_name"),
                r.get("company_name"), r.get("display_name"), r.get("email"), r.get("phone"),
            )
            for r in rows
        ]
        sql = """
            INSERT INTO contacts
                (docketwise_id, first_name, last_name, company_name, display_name, email, phone)
            VALUES %s
            ON CONFLICT (docketwise_id) DO UPDATE SET
                first_name = EXCLUDED.first_name,
                last_name = EXCLUDED.last_name,
                company_name = EXCLUDED.company_name,
                display_name = EXCLUDED.display_name,
                email = EXCLUDED.email,
                phone = EXCLUDED.phone,
                last_synced_at = CURRENT_TIMESTAMP
        """
        with get_connection(statement_timeout_ms=BATCH_TRANSACTION_TIMEOUT_MS) as conn:
            cur = conn.cursor(cursor_factory=psycopg2.extensions.cursor)
            execute_values(cur, sql, values, page_size=len(values))

    def load_maps(self) -> ReferenceMaps:
        """Rebuild all four id -> name maps from the relational store."""
        maps = ReferenceMaps()
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute("SELECT docketwise_id, full_name, email FROM teams")
            for row in cur.fetchall():
                maps.users[row["docketwise_id"]] = row["full_name"] or row["email"] or "Unknown User"
            cur.execute("SELECT docketwise_id, display_name, company_name, first_name, last_name FROM contacts")
            for row in cur.fetchall():
                name = row["display_name"] or row["company_name"] or (
                    f"{row['first_name'] or ''} {row['last_name'] or ''}".strip()
                )
                maps.clients[row["docketwise_id"]] = name or "Unknown Client"
            cur.execute("SELECT docketwise_id, name FROM matter_types")
            maps.types = {row["docketwise_id"]: row["name"] for row in cur.fetchall()}
            cur.execute("SELECT docketwise_id, name FROM matter_statuses")
            maps.statuses = {row["docketwise_id"]: row["name"] for row in cur.fetchall()}
        logger.info("Loaded reference maps from database: %s", maps.summary())
        return maps

    def list_matter_types(self) -> List[dict]:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM matter_types ORDER BY docketwise_id")
            return [dict(r) for r in cur.fetchall()]

    def list_active_team(self) -> List[dict]:
        """Active members with a configured capacity."""
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT * FROM teams
                WHERE is_active = TRUE AND weekly_capacity_hours IS NOT NULL
                ORDER BY docketwise_id
                """
            )
            return [dict(r) for r in cur.fetchall()]
