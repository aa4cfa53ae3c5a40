"""
Email Transport and Templates

SMTP delivery for the email queue:
- SMTPPool: up to 3 live connections, each recycled after 100 messages,
  with a shared limit of 5 messages per second
- Mailer: renders the deadline-reminder and generic notification emails
  (HTML + plain text, Jinja2) and sends them through the pool

Send functions return True/False and never raise; the queue decides
whether to retry.
"""
import logging
import smtplib
import threading
import time
from datetime import date, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, List, Optional, Tuple

from jinja2 import DictLoader, Environment, select_autoescape

from config import (
    EMAIL_FROM,
    SMTP_HOST,
    SMTP_MAX_CONNECTIONS,
    SMTP_MAX_MESSAGES_PER_CONNECTION,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_RATE_LIMIT_PER_SECOND,
    SMTP_USER,
)

logger = logging.getLogger(__name__)

FROM_NAME = "Case Notifications"

# Queue job kinds rendered with the deadline reminder template
DEADLINE_KINDS = ("deadline", "pastDeadline", "deadline_reminder")


class RateLimiter:
    """Token bucket shared by every pooled connection."""

    def __init__(
        self,
        max_per_second: int = SMTP_RATE_LIMIT_PER_SECOND,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_per_second = max_per_second
        self.tokens = max_per_second
        self._clock = clock
        self._sleep = sleep
        self.last_update = clock()
        self._lock = threading.Lock()

    def acquire(self):
        """Wait if necessary to acquire a send token."""
        with self._lock:
            now = self._clock()
            time_passed = now - self.last_update
            self.tokens = min(
                self.max_per_second,
                self.tokens + time_passed * self.max_per_second
            )
            self.last_update = now

            if self.tokens < 1:
                sleep_time = (1 - self.tokens) / self.max_per_second
                self._sleep(sleep_time)
                self.tokens = 0
            else:
                self.tokens -= 1


class SMTPPool:
    """
    Bounded pool of authenticated SMTP connections.

    Usage:
        pool = SMTPPool()
        pool.send(message, "from@firm.com", ["to@firm.com"])
        pool.close()
    """

    def __init__(
        self,
        host: str = SMTP_HOST,
        port: int = SMTP_PORT,
        user: str = SMTP_USER,
        password: str = SMTP_PASSWORD,
        max_connections: int = SMTP_MAX_CONNECTIONS,
        max_messages: int = SMTP_MAX_MESSAGES_PER_CONNECTION,
        rate_limiter: RateLimiter = None,
        smtp_factory: Callable[[], smtplib.SMTP] = None,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.max_messages = max_messages
        self.rate_limiter = rate_limiter or RateLimiter()
        self._factory = smtp_factory or self._connect
        self._slots = threading.BoundedSemaphore(max_connections)
        self._idle: List[Tuple[smtplib.SMTP, int]] = []
        self._lock = threading.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def _connect(self) -> smtplib.SMTP:
        if self.port == 465:
            server = smtplib.SMTP_SSL(self.host, self.port, timeout=30)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=30)
            server.starttls()
        server.login(self.user, self.password)
        logger.debug("Opened SMTP connection to %s:%s", self.host, self.port)
        return server

    def _checkout(self) -> Tuple[smtplib.SMTP, int]:
        with self._lock:
            if self._idle:
                return self._idle.pop()
        return self._factory(), 0

    @staticmethod
    def _discard(server: smtplib.SMTP):
        try:
            server.quit()
        except (smtplib.SMTPException, OSError):
            pass

    def send(self, message: MIMEMultipart, from_addr: str, recipients: List[str]):
        """Send one message. SMTP errors propagate to the caller."""
        self.rate_limiter.acquire()
        with self._slots:
            server, sent = self._checkout()
            try:
                server.sendmail(from_addr, recipients, message.as_string())
            except (smtplib.SMTPException, OSError):
                self._discard(server)
                raise
            sent += 1
            if sent >= self.max_messages:
                self._discard(server)
            else:
                with self._lock:
                    self._idle.append((server, sent))

    def close(self):
        with self._lock:
            idle, self._idle = self._idle, []
        for server, _ in idle:
            self._discard(server)


# ============================================================
# Templates
# ============================================================

_TEMPLATES = {
    "base.html": """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{{ subject }}</title>
</head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: #4f46e5; color: #fff; padding: 24px 30px; border-radius: 8px 8px 0 0;">
      <h1 style="margin: 0; font-size: 22px;">{% block heading %}{% endblock %}</h1>
    </div>
    <div style="background: #fff; padding: 30px; border: 1px solid #e5e7eb; border-top: none;">
      {% block content %}{% endblock %}
      {% if details %}
      <table role="presentation" style="width: 100%; border-collapse: collapse; margin: 20px 0;">
        {% for label, value in details %}
        <tr>
          <td style="padding: 10px 0; border-bottom: 1px solid #f3f4f6; width: 150px; font-weight: 600; color: #6b7280;">{{ label }}:</td>
          <td style="padding: 10px 0; border-bottom: 1px solid #f3f4f6; color: #111827;">{{ value }}</td>
        </tr>
        {% endfor %}
      </table>
      {% endif %}
      {% if matter_url %}
      <a href="{{ matter_url }}" style="display: inline-block; background: #4f46e5; color: #fff; padding: 12px 24px; text-decoration: none; border-radius: 6px;">View Matter Details</a>
      {% endif %}
    </div>
    <div style="text-align: center; padding: 20px; color: #6b7280; font-size: 13px;">
      You are receiving this because you are a notification recipient.
    </div>
  </div>
</body>
</html>
""",
    "deadline_reminder.html": """{% extends "base.html" %}
{% block heading %}Deadline Reminder{% endblock %}
{% block content %}
<div style="background: {{ alert_background }}; border-left: 4px solid {{ alert_border }}; padding: 16px; margin: 0 0 20px 0; border-radius: 4px;">
  {% if days_remaining < 0 %}
  <strong>{{ urgency }}:</strong> This matter's deadline passed <strong>{{ -days_remaining }} day{{ "s" if days_remaining != -1 }} ago</strong>.
  {% else %}
  <strong>{{ urgency }}:</strong> This matter's deadline is approaching in <strong>{{ days_remaining }} day{{ "s" if days_remaining != 1 }}</strong>.
  {% endif %}
</div>
{% endblock %}
""",
    "deadline_reminder.txt": """{{ urgency }}: {% if days_remaining < 0 %}deadline passed {{ -days_remaining }} day{{ "s" if days_remaining != -1 }} ago{% else %}deadline in {{ days_remaining }} day{{ "s" if days_remaining != 1 }}{% endif %}

{% for label, value in details %}
{{ label }}: {{ value }}
{% endfor %}

View matter: {{ matter_url }}
""",
    "notification.html": """{% extends "base.html" %}
{% block heading %}{{ subject }}{% endblock %}
{% block content %}
<p>{{ greeting }}</p>
<p>{{ body }}</p>
<p>{{ closing }}</p>
{% endblock %}
""",
    "notification.txt": """{{ greeting }}

{{ body }}

{% for label, value in details %}
{{ label }}: {{ value }}
{% endfor %}

{{ closing }}

View matter: {{ matter_url }}
""",
}


def _long_date(value) -> str:
    if isinstance(value, (datetime, date)):
        return value.strftime("%A, %B %d, %Y")
    return str(value) if value else ""


def urgency_level(days_remaining: int) -> str:
    if days_remaining < 0:
        return "OVERDUE"
    if days_remaining <= 1:
        return "URGENT"
    if days_remaining <= 3:
        return "Important"
    return "Reminder"


def deadline_subject(matter_title: str, days_remaining: int) -> str:
    urgency = urgency_level(days_remaining)
    if days_remaining < 0:
        days = -days_remaining
        return f"{urgency}: Deadline passed {days} day{'s' if days != 1 else ''} ago - {matter_title}"
    return (
        f"{urgency}: Deadline in {days_remaining} day{'s' if days_remaining != 1 else ''}"
        f" - {matter_title}"
    )


def _alert_colors(days_remaining: int) -> Tuple[str, str]:
    if days_remaining <= 1:
        return "#fee2e2", "#ef4444"
    if days_remaining <= 3:
        return "#fef3c7", "#f59e0b"
    return "#dbeafe", "#3b82f6"


def _details(data: dict, include_deadline: bool) -> List[Tuple[str, str]]:
    rows = [("Matter", data.get("matter_title") or "")]
    if data.get("client_name"):
        rows.append(("Client", data["client_name"]))
    if data.get("matter_type"):
        rows.append(("Matter Type", data["matter_type"]))
    if include_deadline and data.get("deadline_date"):
        rows.append(("Deadline", _long_date(data["deadline_date"])))
    if data.get("workflow_stage"):
        rows.append(("Workflow Stage", data["workflow_stage"]))
    if data.get("paralegal_name"):
        rows.append(("Assigned To", data["paralegal_name"]))
    return rows


class Mailer:
    """
    Renders and sends notification emails.

    Usage:
        mailer = Mailer()
        ok = mailer.send_deadline_reminder({"to": ..., "matter_title": ..., ...})
    """

    def __init__(self, pool: SMTPPool = None, from_email: str = EMAIL_FROM, from_name: str = FROM_NAME):
        self.pool = pool or SMTPPool()
        self.from_email = from_email or self.pool.user
        self.from_name = from_name
        self.env = Environment(
            loader=DictLoader(_TEMPLATES),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render_deadline_reminder(self, data: dict) -> Tuple[str, str, str]:
        """Returns (subject, text, html)."""
        days = int(data.get("days_remaining") or 0)
        background, border = _alert_colors(days)
        context = {
            **data,
            "days_remaining": days,
            "urgency": urgency_level(days),
            "subject": deadline_subject(data.get("matter_title") or "", days),
            "details": _details(data, include_deadline=True),
            "alert_background": background,
            "alert_border": border,
        }
        return (
            context["subject"],
            self.env.get_template("deadline_reminder.txt").render(context),
            self.env.get_template("deadline_reminder.html").render(context),
        )

    def render_notification(self, data: dict) -> Tuple[str, str, str]:
        context = {**data, "details": _details(data, include_deadline=False)}
        return (
            data["subject"],
            self.env.get_template("notification.txt").render(context),
            self.env.get_template("notification.html").render(context),
        )

    def _send(self, to_email: str, subject: str, body_text: str, body_html: str) -> bool:
        if not self.pool.configured:
            logger.warning("SMTP not configured, skipping email to %s", to_email)
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(body_text, "plain"))
        msg.attach(MIMEText(body_html, "html"))

        try:
            self.pool.send(msg, self.from_email, [to_email])
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email to %s: %s", to_email, e)
            return False
        logger.info("Email sent to %s: %s", to_email, subject)
        return True

    def send_deadline_reminder(self, data: dict) -> bool:
        subject, text, html = self.render_deadline_reminder(data)
        return self._send(data["to"], subject, text, html)

    def send_notification_email(self, data: dict) -> bool:
        subject, text, html = self.render_notification(data)
        return self._send(data["to"], subject, text, html)

    def send_job(self, job) -> bool:
        """Queue sender: pick the template by job kind."""
        if job.kind in DEADLINE_KINDS:
            return self.send_deadline_reminder(job.payload)
        return self.send_notification_email(job.payload)

    def close(self):
        self.pool.close()


_mailer: Optional[Mailer] = None


def get_mailer() -> Mailer:
    global _mailer
    if _mailer is None:
        _mailer = Mailer()
    return _mailer
