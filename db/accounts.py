"""
Users and linked OAuth accounts — PostgreSQL

Both tables belong to the web application's auth layer; they are created
here only so a fresh database has what the sync jobs read.
"""
import logging
from typing import Optional

from db.connection import get_connection

logger = logging.getLogger(__name__)


ACCOUNTS_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT,
    role TEXT DEFAULT 'user',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    provider_id TEXT NOT NULL,
    access_token TEXT,
    refresh_token TEXT,
    access_token_expires_at TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_accounts_user_provider ON accounts(user_id, provider_id);
"""


def ensure_accounts_tables():
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(ACCOUNTS_SCHEMA)
    logger.info("Account tables ensured")


def get_user(user_id: str) -> Optional[dict]:
    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute("SELECT id, email, name FROM users WHERE id = %s", (user_id,))
        row = cur.fetchone()
        return dict(row) if row else None
