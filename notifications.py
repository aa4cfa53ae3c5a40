"""
Notifications Module

Matter change detection and delivery:
- detect_notification_type: classify a filing-status transition (RFE,
  approval, denial) for the automated syncs
- NotificationService.check_matter_changes_and_notify: status, deadline and
  billing changes from direct user edits
- NotificationService.send_notification: fan out one notification to the
  configured recipients, in-app (record + real-time event) and email
  (queued job + audit record)

Which (type, channel) pairs are enabled comes from the admin settings row.
Types without a dedicated setting borrow one:

    workflowChange, billingChange -> statusChange
    pastDeadline                  -> deadlines
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from config import APP_URL, DEADLINE_ALERT_WINDOW_DAYS
from db.notifications import NotificationStore

logger = logging.getLogger(__name__)


class NotificationType(Enum):
    RFE = "rfe"
    APPROVAL = "approval"
    DENIAL = "denial"
    STATUS_CHANGE = "statusChange"
    DEADLINE = "deadline"
    PAST_DEADLINE = "pastDeadline"
    WORKFLOW_CHANGE = "workflowChange"
    BILLING_CHANGE = "billingChange"


class Channel(Enum):
    EMAIL = "email"
    IN_APP = "in_app"


# Notification type -> settings column suffix
SETTINGS_KEYS = {
    NotificationType.RFE: "rfe",
    NotificationType.APPROVAL: "approval",
    NotificationType.DENIAL: "denial",
    NotificationType.STATUS_CHANGE: "status_change",
    NotificationType.WORKFLOW_CHANGE: "status_change",
    NotificationType.BILLING_CHANGE: "status_change",
    NotificationType.DEADLINE: "deadlines",
    NotificationType.PAST_DEADLINE: "deadlines",
}

# Used when no settings row exists
DEFAULT_SETTINGS = {
    "email_rfe": True,
    "email_approval": True,
    "email_denial": True,
    "email_status_change": False,
    "email_deadlines": True,
    "in_app_rfe": True,
    "in_app_approval": True,
    "in_app_denial": True,
    "in_app_status_change": True,
    "in_app_deadlines": True,
}

DEADLINE_TYPES = (NotificationType.DEADLINE, NotificationType.PAST_DEADLINE)

RECORD_TYPE_IN_APP = "in-app"
RECORD_TYPE_EMAIL = "email"


def is_enabled(settings: Dict[str, Any], notification_type: NotificationType, channel: Channel) -> bool:
    key = f"{channel.value}_{SETTINGS_KEYS[notification_type]}"
    return settings.get(key) is True


def detect_notification_type(
    old_status: Optional[str],
    new_status: Optional[str],
) -> Optional[NotificationType]:
    """
    Classify a filing-status transition.

    Returns RFE, APPROVAL or DENIAL by keyword, otherwise None. Plain status
    changes are not reported here; automated syncs would be too noisy.
    """
    if not new_status:
        return None
    status = new_status.lower()
    if "rfe" in status or "request for evidence" in status:
        return NotificationType.RFE
    if "approved" in status or "approval" in status:
        return NotificationType.APPROVAL
    if "denied" in status or "denial" in status or "rejected" in status:
        return NotificationType.DENIAL
    return None


@dataclass
class NotificationData:
    """Everything a notification template can mention."""
    type: NotificationType
    matter_id: str
    matter_title: str
    client_name: Optional[str] = None
    matter_type: Optional[str] = None
    workflow_stage: Optional[str] = None
    status: Optional[str] = None
    old_status: Optional[str] = None
    billing_status: Optional[str] = None
    old_billing_status: Optional[str] = None
    deadline_date: Optional[datetime] = None
    days_remaining: Optional[int] = None
    paralegal_name: Optional[str] = None
    custom_message: Optional[str] = None


@dataclass
class NotificationContent:
    subject: str
    greeting: str
    body: str
    closing: str

    @property
    def message(self) -> str:
        return self.body


def _plural(n: int, word: str = "day") -> str:
    return f"{n} {word}{'' if n == 1 else 's'}"


def build_content(data: NotificationData) -> NotificationContent:
    """Subject, greeting, body and closing for a notification type."""
    title = data.matter_title
    client = f" (Client: {data.client_name})" if data.client_name else ""
    for_client = f" for {data.client_name}" if data.client_name else ""
    t = data.type

    if t == NotificationType.PAST_DEADLINE:
        overdue = abs(data.days_remaining or 0)
        return NotificationContent(
            subject=f"Past Deadline: {title}",
            greeting="Attention required,",
            body=f'The deadline for "{title}"{client} passed {_plural(overdue)} ago.',
            closing="Please update the matter or its deadline as soon as possible.",
        )
    if t == NotificationType.DEADLINE:
        days = data.days_remaining or 0
        urgency = "URGENT" if days <= 1 else "Important" if days <= 3 else "Reminder"
        when = "today" if days == 0 else f"in {_plural(days)}"
        return NotificationContent(
            subject=f"Deadline Reminder: {title}",
            greeting=f"{urgency}:",
            body=f'The deadline for "{title}"{client} is {when}.',
            closing="Please ensure all necessary actions are completed.",
        )
    if t == NotificationType.WORKFLOW_CHANGE:
        source = f' from "{data.old_status}"' if data.old_status else ""
        return NotificationContent(
            subject=f"Workflow Update: {title}",
            greeting="Hello,",
            body=f'The workflow stage of "{title}" moved{source} to "{data.workflow_stage or data.status or "Unknown"}".',
            closing="No action is needed unless the change was unexpected.",
        )
    if t == NotificationType.BILLING_CHANGE:
        source = f' from "{data.old_billing_status}"' if data.old_billing_status else ""
        return NotificationContent(
            subject=f"Billing Update: {title}",
            greeting="Hello,",
            body=f'The billing status of "{title}"{for_client} changed{source} to "{data.billing_status or "Unknown"}".',
            closing="Please review the billing details if needed.",
        )
    if t == NotificationType.STATUS_CHANGE:
        source = f' from "{data.old_status}"' if data.old_status else ""
        return NotificationContent(
            subject=f"Status Update: {title}",
            greeting="Hello,",
            body=f'The status of "{title}" has changed{source} to "{data.status or "Unknown"}".',
            closing="Open the matter for the full history.",
        )
    if t == NotificationType.RFE:
        return NotificationContent(
            subject=f"RFE Received: {title}",
            greeting="Action required,",
            body=f'A Request for Evidence (RFE) has been received for "{title}"{client}.',
            closing="Please review and respond promptly.",
        )
    if t == NotificationType.APPROVAL:
        return NotificationContent(
            subject=f"Case Approved: {title}",
            greeting="Great news!",
            body=f'The case "{title}"{for_client} has been approved.',
            closing="Congratulations to the team.",
        )
    if t == NotificationType.DENIAL:
        return NotificationContent(
            subject=f"Case Denied: {title}",
            greeting="Hello,",
            body=f'The case "{title}"{for_client} has been denied.',
            closing="Please review the decision and consider next steps.",
        )
    return NotificationContent(
        subject=f"Notification: {title}",
        greeting="Hello,",
        body=data.custom_message or f'An update has occurred for "{title}".',
        closing="",
    )


def status_notification(
    matter: dict,
    old_status: Optional[str],
    new_status: Optional[str],
) -> Optional[NotificationData]:
    """Notification for a synced status transition, or None when it is not notifiable."""
    notification_type = detect_notification_type(old_status, new_status)
    if notification_type is None:
        return None
    return NotificationData(
        type=notification_type,
        matter_id=str(matter["id"]),
        matter_title=matter.get("title") or "Untitled Matter",
        client_name=matter.get("client_name"),
        matter_type=matter.get("matter_type"),
        workflow_stage=matter.get("status"),
        status=new_status,
        old_status=old_status,
        paralegal_name=matter.get("assignees"),
    )


@dataclass
class MatterChangeSet:
    """Old and new values of the notifiable fields of one matter edit."""
    matter_id: str
    matter_title: str
    client_name: Optional[str] = None
    matter_type: Optional[str] = None
    paralegal_name: Optional[str] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    old_billing_status: Optional[str] = None
    new_billing_status: Optional[str] = None
    old_estimated_deadline: Optional[datetime] = None
    new_estimated_deadline: Optional[datetime] = None
    old_actual_deadline: Optional[datetime] = None
    new_actual_deadline: Optional[datetime] = None


@dataclass
class NotificationOutcome:
    emails_queued: int = 0
    in_app_created: int = 0
    errors: List[str] = field(default_factory=list)


def _as_date(value) -> date:
    return value.date() if isinstance(value, datetime) else value


class NotificationService:
    """
    Notification fan-out.

    Usage:
        service = get_notification_service()
        if service.has_configured_recipients():
            service.send_notification(NotificationData(...))
    """

    def __init__(
        self,
        store: NotificationStore = None,
        publisher=None,
        email_queue=None,
        dispatcher=None,
        app_url: str = APP_URL,
        today=date.today,
    ):
        if publisher is None:
            from publisher import get_publisher
            publisher = get_publisher()
        if email_queue is None:
            from email_queue import get_email_queue
            email_queue = get_email_queue()
        if dispatcher is None:
            from dispatcher import get_dispatcher
            dispatcher = get_dispatcher()
        self.store = store or NotificationStore()
        self.publisher = publisher
        self.email_queue = email_queue
        self.dispatcher = dispatcher
        self.app_url = app_url.rstrip("/")
        self._today = today

    def matter_url(self, matter_id: str) -> str:
        return f"{self.app_url}/dashboard/matters?matterId={matter_id}"

    def get_settings(self) -> Dict[str, Any]:
        return self.store.get_settings() or dict(DEFAULT_SETTINGS)

    def has_configured_recipients(self) -> bool:
        """True when at least one recipient has a channel enabled."""
        try:
            return self.store.count_recipients() > 0
        except Exception as e:
            logger.error("Failed to count notification recipients: %s", e)
            return False

    def _email_payload(self, data: NotificationData, content: NotificationContent, to: str) -> dict:
        payload = {
            "to": to,
            "notification_type": data.type.value,
            "matter_title": data.matter_title,
            "client_name": data.client_name,
            "matter_type": data.matter_type,
            "workflow_stage": data.workflow_stage,
            "paralegal_name": data.paralegal_name,
            "matter_url": self.matter_url(data.matter_id),
        }
        if data.type in DEADLINE_TYPES:
            payload["deadline_date"] = data.deadline_date
            payload["days_remaining"] = data.days_remaining or 0
        else:
            payload.update(
                subject=content.subject,
                greeting=content.greeting,
                body=content.body,
                closing=content.closing,
            )
        return payload

    def send_notification(self, data: NotificationData) -> NotificationOutcome:
        """Deliver one notification to every enabled recipient."""
        settings = self.get_settings()
        content = build_content(data)
        outcome = NotificationOutcome()

        if is_enabled(settings, data.type, Channel.IN_APP):
            for recipient in self.store.get_recipients(Channel.IN_APP.value):
                try:
                    record = self.store.create_record(
                        matter_id=data.matter_id,
                        user_id=recipient["id"],
                        recipient_email=recipient.get("email"),
                        notification_type=RECORD_TYPE_IN_APP,
                        subject=content.subject,
                        message=content.message,
                        days_before_deadline=data.days_remaining,
                        category=data.type.value,
                        is_read=False,
                    )
                    self.publisher.publish_created({
                        "id": record["id"],
                        "user_id": recipient["id"],
                        "matter_id": data.matter_id,
                        "subject": content.subject,
                        "message": content.message,
                        "days_before_deadline": data.days_remaining,
                        "sent_at": record["sent_at"],
                    })
                    outcome.in_app_created += 1
                except Exception as e:
                    logger.error("Failed to create in-app notification for user %s: %s", recipient["id"], e)
                    outcome.errors.append(str(e))

        if is_enabled(settings, data.type, Channel.EMAIL):
            for recipient in self.store.get_recipients(Channel.EMAIL.value):
                try:
                    self.email_queue.add(data.type.value, self._email_payload(data, content, recipient["email"]))
                    self.store.create_record(
                        matter_id=data.matter_id,
                        user_id=recipient["id"],
                        recipient_email=recipient["email"],
                        notification_type=RECORD_TYPE_EMAIL,
                        subject=content.subject,
                        message=content.message,
                        days_before_deadline=data.days_remaining,
                        category=data.type.value,
                        is_read=True,
                    )
                    outcome.emails_queued += 1
                except Exception as e:
                    logger.error("Failed to queue email for %s: %s", recipient.get("email"), e)
                    outcome.errors.append(str(e))

        logger.info(
            "Notification %s for matter %s: %d emails queued, %d in-app",
            data.type.value, data.matter_id, outcome.emails_queued, outcome.in_app_created,
        )
        return outcome

    def notify_async(self, data: NotificationData):
        """Hand a notification to the dispatcher; never blocks the caller."""
        self.dispatcher.submit(self.send_notification, data)

    def check_matter_changes_and_notify(self, change: MatterChangeSet) -> List[NotificationData]:
        """
        Raise notifications for a direct matter edit.

        Each qualifying change (status, deadline, billing status) is
        dispatched independently. Returns what was dispatched.

        At most one deadline notification is raised per change: the
        estimated deadline is checked first, then the actual deadline.
        """
        if not self.has_configured_recipients():
            logger.debug("No notification recipients configured; skipping matter %s", change.matter_id)
            return []

        common = dict(
            matter_id=change.matter_id,
            matter_title=change.matter_title,
            client_name=change.client_name,
            matter_type=change.matter_type,
            paralegal_name=change.paralegal_name,
            workflow_stage=change.new_status,
        )
        pending: List[NotificationData] = []

        if change.new_status is not None and change.new_status != change.old_status:
            pending.append(NotificationData(
                type=NotificationType.STATUS_CHANGE,
                status=change.new_status,
                old_status=change.old_status,
                **common,
            ))

        today = self._today()
        for old, new in (
            (change.old_estimated_deadline, change.new_estimated_deadline),
            (change.old_actual_deadline, change.new_actual_deadline),
        ):
            if new is None or new == old:
                continue
            days = (_as_date(new) - today).days
            if days > DEADLINE_ALERT_WINDOW_DAYS:
                continue
            pending.append(NotificationData(
                type=NotificationType.PAST_DEADLINE if days < 0 else NotificationType.DEADLINE,
                deadline_date=new,
                days_remaining=days,
                **common,
            ))
            break

        if change.new_billing_status is not None and change.new_billing_status != change.old_billing_status:
            pending.append(NotificationData(
                type=NotificationType.BILLING_CHANGE,
                billing_status=change.new_billing_status,
                old_billing_status=change.old_billing_status,
                **common,
            ))

        for data in pending:
            self.notify_async(data)
        return pending

    def mark_read(self, notification_id: str, user_id: str) -> bool:
        if not self.store.mark_read(notification_id, user_id):
            return False
        self.publisher.publish_read(notification_id, user_id)
        return True


_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    global _service
    if _service is None:
        _service = NotificationService()
    return _service
