"""
Notification settings, recipients and records — PostgreSQL

deadline_notifications is both the in-app notification list and the audit
log of emails handed to the queue. A (matter_id, days_before_deadline) pair
is the dedupe key for deadline reminders.

Tables:
    notification_settings, notification_recipients, deadline_notifications
"""
import logging
from typing import List, Optional

from db.connection import get_connection

logger = logging.getLogger(__name__)


NOTIFICATIONS_SCHEMA = """
CREATE TABLE IF NOT EXISTS notification_settings (
    id SERIAL PRIMARY KEY,
    user_id TEXT,
    email_rfe BOOLEAN DEFAULT TRUE,
    email_approval BOOLEAN DEFAULT TRUE,
    email_denial BOOLEAN DEFAULT TRUE,
    email_status_change BOOLEAN DEFAULT FALSE,
    email_deadlines BOOLEAN DEFAULT TRUE,
    in_app_rfe BOOLEAN DEFAULT TRUE,
    in_app_approval BOOLEAN DEFAULT TRUE,
    in_app_denial BOOLEAN DEFAULT TRUE,
    in_app_status_change BOOLEAN DEFAULT TRUE,
    in_app_deadlines BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS notification_recipients (
    id SERIAL PRIMARY KEY,
    user_id TEXT NOT NULL UNIQUE,
    email_enabled BOOLEAN DEFAULT TRUE,
    in_app_enabled BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS deadline_notifications (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    matter_id UUID NOT NULL,
    user_id TEXT NOT NULL,
    recipient_email TEXT,
    notification_type TEXT NOT NULL,
    category TEXT,
    days_before_deadline INTEGER,
    subject TEXT,
    message TEXT,
    is_read BOOLEAN DEFAULT FALSE,
    sent_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_dn_matter_days ON deadline_notifications(matter_id, days_before_deadline);
CREATE INDEX IF NOT EXISTS idx_dn_user_unread ON deadline_notifications(user_id, is_read);
"""

_CHANNEL_COLUMNS = {
    "email": "email_enabled",
    "in_app": "in_app_enabled",
}


def ensure_notifications_tables():
    """Create notification tables if they don't exist."""
    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(NOTIFICATIONS_SCHEMA)
    logger.info("Notification tables ensured")


class NotificationStore:
    """Data access for notification settings, recipients and records."""

    def get_settings(self) -> Optional[dict]:
        """The admin settings row: the first one ever created."""
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM notification_settings ORDER BY created_at ASC, id ASC LIMIT 1")
            row = cur.fetchone()
            return dict(row) if row else None

    def get_recipients(self, channel: str) -> List[dict]:
        """Users explicitly added as recipients with `channel` enabled."""
        column = _CHANNEL_COLUMNS[channel]
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT u.id, u.email, u.name
                FROM notification_recipients r
                JOIN users u ON u.id = r.user_id
                WHERE r.{column} = TRUE
                ORDER BY r.id
                """
            )
            return [dict(r) for r in cur.fetchall()]

    def count_recipients(self) -> int:
        """Recipients with at least one channel enabled."""
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT COUNT(*) AS n FROM notification_recipients
                WHERE email_enabled = TRUE OR in_app_enabled = TRUE
                """
            )
            row = cur.fetchone()
            return row["n"] if row else 0

    def create_record(
        self,
        matter_id: str,
        user_id: str,
        recipient_email: Optional[str],
        notification_type: str,
        subject: str,
        message: str,
        days_before_deadline: Optional[int] = None,
        category: Optional[str] = None,
        is_read: bool = False,
    ) -> dict:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO deadline_notifications
                    (matter_id, user_id, recipient_email, notification_type, category,
                     days_before_deadline, subject, message, is_read)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id, sent_at
                """,
                (matter_id, user_id, recipient_email, notification_type, category,
                 days_before_deadline, subject, message, is_read),
            )
            row = cur.fetchone()
            return {"id": str(row["id"]), "sent_at": row["sent_at"]}

    def exists_for_threshold(self, matter_id: str, days_before_deadline: int) -> bool:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT 1 FROM deadline_notifications
                WHERE matter_id = %s AND days_before_deadline = %s
                LIMIT 1
                """,
                (matter_id, days_before_deadline),
            )
            return cur.fetchone() is not None

    def mark_read(self, notification_id: str, user_id: str) -> bool:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE deadline_notifications SET is_read = TRUE
                WHERE id = %s AND user_id = %s AND is_read = FALSE
                """,
                (notification_id, user_id),
            )
            return cur.rowcount > 0
