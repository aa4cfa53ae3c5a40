"""
Deadline Reminders

Daily check for matters whose estimated deadline is 7, 3, 1 or 0 days
away. Each (matter, days-before) pair is notified once: the in-app record
written on the first run is what the next run finds and skips.

For each reminder:
- an in-app record for the matter owner, published in real time
- an email to the owner, sent off the request path; its audit record is
  written only once the send succeeds
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Tuple

from config import APP_URL, DEADLINE_THRESHOLDS
from db.matters import MatterStore
from db.notifications import NotificationStore
from emails import deadline_subject

logger = logging.getLogger(__name__)

CATEGORY = "deadline"


@dataclass
class DeadlineCheckResult:
    success: bool
    notifications_sent: int
    matters_checked: int


def deadline_message(matter_title: str, days: int) -> str:
    return (
        f'The deadline for "{matter_title}" is approaching in {days} day{"s" if days != 1 else ""}. '
        "Please ensure all necessary actions are completed."
    )


def alert_window(today: date, thresholds: Tuple[int, ...] = DEADLINE_THRESHOLDS) -> Tuple[datetime, datetime]:
    """Start of today through the end of the furthest threshold day."""
    return (
        datetime.combine(today, time.min),
        datetime.combine(today + timedelta(days=max(thresholds)), time.max),
    )


class DeadlineScheduler:
    """
    Usage:
        result = DeadlineScheduler().check_and_send_deadline_notifications()
    """

    def __init__(
        self,
        matter_store: MatterStore = None,
        notification_store: NotificationStore = None,
        publisher=None,
        mailer=None,
        dispatcher=None,
        today: Callable[[], date] = date.today,
        app_url: str = APP_URL,
        thresholds: Tuple[int, ...] = DEADLINE_THRESHOLDS,
    ):
        if publisher is None:
            from publisher import get_publisher
            publisher = get_publisher()
        if mailer is None:
            from emails import get_mailer
            mailer = get_mailer()
        if dispatcher is None:
            from dispatcher import get_dispatcher
            dispatcher = get_dispatcher()
        self.matter_store = matter_store or MatterStore()
        self.notification_store = notification_store or NotificationStore()
        self.publisher = publisher
        self.mailer = mailer
        self.dispatcher = dispatcher
        self._today = today
        self.app_url = app_url.rstrip("/")
        self.thresholds = tuple(thresholds)

    def check_and_send_deadline_notifications(self) -> DeadlineCheckResult:
        today = self._today()
        start, end = alert_window(today, self.thresholds)
        matters = self.matter_store.list_upcoming_deadlines(start, end)
        logger.info("Found %d matters with upcoming deadlines", len(matters))

        sent = 0
        for matter in matters:
            deadline = matter.get("estimated_deadline")
            if deadline is None:
                continue
            deadline_day = deadline.date() if isinstance(deadline, datetime) else deadline
            days = (deadline_day - today).days
            if days not in self.thresholds:
                continue
            try:
                if self.notification_store.exists_for_threshold(matter["id"], days):
                    logger.debug("Reminder already sent for matter %s at %d days", matter["id"], days)
                    continue
                self._notify(matter, days)
                sent += 1
            except Exception as e:
                logger.error("Failed to create deadline reminder for matter %s: %s", matter["id"], e)

        logger.info("Deadline check completed: %d notifications sent", sent)
        return DeadlineCheckResult(success=True, notifications_sent=sent, matters_checked=len(matters))

    def _notify(self, matter: dict, days: int):
        title = matter.get("title") or "Untitled Matter"
        subject = deadline_subject(title, days)
        message = deadline_message(title, days)
        matter_id = str(matter["id"])

        record = self.notification_store.create_record(
            matter_id=matter_id,
            user_id=matter["user_id"],
            recipient_email=matter.get("owner_email"),
            notification_type="in-app",
            subject=subject,
            message=message,
            days_before_deadline=days,
            category=CATEGORY,
            is_read=False,
        )
        self.publisher.publish_created({
            "id": record["id"],
            "user_id": matter["user_id"],
            "matter_id": matter_id,
            "subject": subject,
            "message": message,
            "days_before_deadline": days,
            "sent_at": record["sent_at"],
        })
        logger.info("Created deadline reminder for matter %s (%d days)", matter_id, days)

        if matter.get("owner_email"):
            self.dispatcher.submit(self._send_email, matter, days, subject, message)

    def _send_email(self, matter: dict, days: int, subject: str, message: str):
        matter_id = str(matter["id"])
        ok = self.mailer.send_deadline_reminder({
            "to": matter["owner_email"],
            "matter_title": matter.get("title") or "Untitled Matter",
            "client_name": matter.get("client_name"),
            "matter_type": matter.get("matter_type"),
            "deadline_date": matter["estimated_deadline"],
            "days_remaining": days,
            "workflow_stage": matter.get("status"),
            "paralegal_name": matter.get("assignees") or matter.get("owner_name"),
            "matter_url": f"{self.app_url}/dashboard/matters?matterId={matter_id}",
        })
        if not ok:
            logger.warning("Deadline email for matter %s was not sent", matter_id)
            return
        self.notification_store.create_record(
            matter_id=matter_id,
            user_id=matter["user_id"],
            recipient_email=matter["owner_email"],
            notification_type="email",
            subject=subject,
            message=message,
            days_before_deadline=days,
            category=CATEGORY,
            is_read=True,
        )


def check_and_send_deadline_notifications() -> DeadlineCheckResult:
    return DeadlineScheduler().check_and_send_deadline_notifications()
