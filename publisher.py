"""
In-process notification event publisher.

Emits `notification:created` and `notification:read` events to per-user
subscribers (the SSE stream in sync_routes.py) and keeps the last five
minutes of events so a reconnecting client can catch up.
"""
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional

from config import NOTIFICATION_REPLAY_SECONDS

logger = logging.getLogger(__name__)

EVENT_CREATED = "notification:created"
EVENT_READ = "notification:read"


@dataclass
class NotificationEvent:
    event: str
    user_id: str
    data: dict
    published_at: float = field(default_factory=time.time)


Subscriber = Callable[[NotificationEvent], None]


class NotificationPublisher:
    """Thread-safe pub/sub keyed by user id, with a replay buffer."""

    def __init__(self, replay_seconds: int = NOTIFICATION_REPLAY_SECONDS, clock: Callable[[], float] = time.time):
        self.replay_seconds = replay_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._buffer: Deque[NotificationEvent] = deque()

    def subscribe(self, user_id: str, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for one user's events. Returns an unsubscribe function."""
        with self._lock:
            self._subscribers.setdefault(user_id, []).append(callback)
        logger.debug("User %s subscribed to notifications", user_id)

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(user_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(user_id, None)
            logger.debug("User %s unsubscribed from notifications", user_id)

        return unsubscribe

    def _publish(self, event: NotificationEvent):
        with self._lock:
            self._buffer.append(event)
            self._prune()
            callbacks = list(self._subscribers.get(event.user_id, []))
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception("Notification subscriber for user %s failed", event.user_id)

    def publish_created(self, notification: dict):
        """notification: {id, user_id, matter_id, subject, message, days_before_deadline, sent_at}"""
        logger.debug("Publishing %s for user %s", EVENT_CREATED, notification["user_id"])
        self._publish(NotificationEvent(EVENT_CREATED, notification["user_id"], notification, self._clock()))

    def publish_read(self, notification_id: str, user_id: str):
        self._publish(NotificationEvent(EVENT_READ, user_id, {"id": notification_id, "user_id": user_id}, self._clock()))

    def replay(self, user_id: str, since: Optional[float] = None) -> List[NotificationEvent]:
        """Buffered events for a user, optionally only those after `since`."""
        with self._lock:
            self._prune()
            return [
                e for e in self._buffer
                if e.user_id == user_id and (since is None or e.published_at > since)
            ]

    def _prune(self):
        cutoff = self._clock() - self.replay_seconds
        while self._buffer and self._buffer[0].published_at < cutoff:
            self._buffer.popleft()


_publisher: Optional[NotificationPublisher] = None


def get_publisher() -> NotificationPublisher:
    global _publisher
    if _publisher is None:
        _publisher = NotificationPublisher()
    return _publisher
