"""
Tests for the in-process notification publisher and the task dispatcher.

Run with: pytest tests/test_publisher_dispatcher.py -v
"""
import threading

from dispatcher import TaskDispatcher
from publisher import EVENT_CREATED, EVENT_READ, NotificationPublisher


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _created(user_id, notification_id="n-1"):
    return {"id": notification_id, "user_id": user_id, "matter_id": "m-1", "subject": "s",
            "message": "m", "days_before_deadline": None, "sent_at": None}


class TestNotificationPublisher:

    def test_events_routed_by_user(self):
        publisher = NotificationPublisher()
        mine, theirs = [], []
        publisher.subscribe("user-1", mine.append)
        publisher.subscribe("user-2", theirs.append)

        publisher.publish_created(_created("user-1"))
        publisher.publish_read("n-1", "user-1")

        assert [e.event for e in mine] == [EVENT_CREATED, EVENT_READ]
        assert theirs == []

    def test_unsubscribe(self):
        publisher = NotificationPublisher()
        seen = []
        unsubscribe = publisher.subscribe("user-1", seen.append)

        unsubscribe()
        publisher.publish_created(_created("user-1"))

        assert seen == []

    def test_failing_subscriber_isolated(self):
        publisher = NotificationPublisher()
        seen = []

        def broken(event):
            raise RuntimeError("socket closed")

        publisher.subscribe("user-1", broken)
        publisher.subscribe("user-1", seen.append)

        publisher.publish_created(_created("user-1"))

        assert len(seen) == 1

    def test_replay_window(self):
        clock = Clock()
        publisher = NotificationPublisher(replay_seconds=300, clock=clock)
        publisher.publish_created(_created("user-1", "old"))
        clock.now += 200
        publisher.publish_created(_created("user-1", "recent"))
        publisher.publish_created(_created("user-2", "other"))
        clock.now += 150

        replayed = publisher.replay("user-1")

        assert [e.data["id"] for e in replayed] == ["recent"]

    def test_replay_since(self):
        clock = Clock()
        publisher = NotificationPublisher(clock=clock)
        publisher.publish_created(_created("user-1", "a"))
        clock.now += 10
        publisher.publish_created(_created("user-1", "b"))

        assert [e.data["id"] for e in publisher.replay("user-1", since=1005.0)] == ["b"]


class TestTaskDispatcher:

    def test_synchronous_runs_inline(self):
        dispatcher = TaskDispatcher(synchronous=True)
        seen = []

        dispatcher.submit(seen.append, 1)

        assert seen == [1]
        assert dispatcher.completed == 1

    def test_errors_stay_inside(self):
        dispatcher = TaskDispatcher(synchronous=True)

        def boom():
            raise ValueError("bad")

        dispatcher.submit(boom)
        dispatcher.submit(lambda: None)

        assert dispatcher.failed == 1
        assert dispatcher.completed == 1

    def test_worker_thread_preserves_order(self):
        dispatcher = TaskDispatcher(name="test-worker")
        seen = []
        worker_threads = set()

        def record(i):
            worker_threads.add(threading.current_thread().name)
            seen.append(i)

        for i in range(5):
            dispatcher.submit(record, i)
        dispatcher.join()
        dispatcher.stop()

        assert seen == [0, 1, 2, 3, 4]
        assert worker_threads == {"test-worker"}
        assert dispatcher.running is False
