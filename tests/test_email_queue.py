"""
Tests for the in-memory email queue and the SMTP transport.

Run with: pytest tests/test_email_queue.py -v
"""
import smtplib
import threading
from datetime import datetime, timedelta
from unittest.mock import MagicMock

from email_queue import EmailQueue, JobStatus, new_job_id
from emails import Mailer, RateLimiter, SMTPPool, deadline_subject, urgency_level


class TestJobs:

    def test_job_id_format(self):
        job_id = new_job_id(datetime(2026, 3, 2, 13, 0))
        prefix, millis, suffix = job_id.split("_")
        assert prefix == "email"
        assert millis.isdigit()
        assert len(suffix) == 7

    def test_add_and_get(self):
        queue = EmailQueue(sender=lambda job: True)
        job_id = queue.add("rfe", {"to": "a@firm.com"})

        job = queue.get(job_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert queue.get_stats() == {"total": 1, "pending": 1, "processing": 0, "completed": 0, "failed": 0}

    def test_unknown_job(self):
        assert EmailQueue(sender=lambda job: True).get("email_0_missing") is None


class TestProcessQueue:

    def test_success(self):
        sent = []
        queue = EmailQueue(sender=lambda job: sent.append(job.payload["to"]) or True, sleep=lambda s: None)
        queue.add("rfe", {"to": "a@firm.com"})
        queue.add("rfe", {"to": "b@firm.com"})

        assert queue.process_queue() == 2
        assert sorted(sent) == ["a@firm.com", "b@firm.com"]
        assert queue.get_stats()["completed"] == 2

    def test_retry_then_success(self):
        outcomes = iter([Exception("421 try later"), True])
        sleeps = []

        def sender(job):
            outcome = next(outcomes)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        queue = EmailQueue(sender=sender, sleep=sleeps.append, retry_delay=5)
        job_id = queue.add("rfe", {"to": "a@firm.com"})

        queue.process_queue()

        job = queue.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 2
        assert job.error is None
        assert sleeps == [5]

    def test_permanent_failure_after_three_attempts(self):
        calls = []

        def sender(job):
            calls.append(job.attempts)
            raise smtplib.SMTPServerDisconnected("gone")

        queue = EmailQueue(sender=sender, sleep=lambda s: None)
        job_id = queue.add("rfe", {"to": "a@firm.com"})

        queue.process_queue()

        job = queue.get(job_id)
        assert calls == [1, 2, 3]
        assert job.status == JobStatus.FAILED
        assert "gone" in job.error

    def test_false_return_is_a_failure(self):
        queue = EmailQueue(sender=lambda job: False, sleep=lambda s: None)
        job_id = queue.add("rfe", {"to": "a@firm.com"})

        queue.process_queue()

        job = queue.get(job_id)
        assert job.status == JobStatus.FAILED
        assert job.attempts == 3
        assert job.error == "Email send returned false"

    def test_concurrency_capped(self):
        lock = threading.Lock()
        active = {"now": 0, "peak": 0}
        release = threading.Event()

        def sender(job):
            with lock:
                active["now"] += 1
                active["peak"] = max(active["peak"], active["now"])
            release.wait(0.05)
            with lock:
                active["now"] -= 1
            return True

        queue = EmailQueue(sender=sender, sleep=lambda s: None)
        for i in range(7):
            queue.add("rfe", {"to": f"{i}@firm.com"})

        assert queue.process_queue() == 7
        assert active["peak"] <= 3
        assert queue.get_stats()["completed"] == 7

    def test_reentrant_call_returns_immediately(self):
        queue = EmailQueue(sender=lambda job: True)
        inner = []

        def sender(job):
            inner.append(queue.process_queue())
            return True

        queue.sender = sender
        queue.add("rfe", {"to": "a@firm.com"})

        assert queue.process_queue() == 1
        assert inner == [0]

    def test_old_finished_jobs_pruned(self):
        now = {"t": datetime(2026, 3, 2, 12, 0)}
        queue = EmailQueue(sender=lambda job: True, clock=lambda: now["t"], sleep=lambda s: None)
        old_id = queue.add("rfe", {"to": "a@firm.com"})
        queue.process_queue()

        now["t"] += timedelta(hours=2)
        pending_id = queue.add("rfe", {"to": "b@firm.com"})

        assert queue.prune() == 1
        assert queue.get(old_id) is None
        assert queue.get(pending_id) is not None

    def test_worker_drains_after_start(self):
        done = threading.Event()

        def sender(job):
            done.set()
            return True

        queue = EmailQueue(sender=sender)
        queue.start()
        try:
            queue.add("rfe", {"to": "a@firm.com"})
            assert done.wait(5)
        finally:
            queue.stop()


class TestSMTPPool:

    def _pool(self, connections, **kwargs):
        made = iter(connections)
        return SMTPPool(
            host="smtp.test", user="u", password="p",
            rate_limiter=RateLimiter(sleep=lambda s: None),
            smtp_factory=lambda: next(made),
            **kwargs,
        )

    def test_connection_reused(self):
        server = MagicMock()
        pool = self._pool([server])
        message = MagicMock()

        pool.send(message, "from@firm.com", ["a@firm.com"])
        pool.send(message, "from@firm.com", ["b@firm.com"])

        assert server.sendmail.call_count == 2

    def test_connection_recycled_after_max_messages(self):
        first, second = MagicMock(), MagicMock()
        pool = self._pool([first, second], max_messages=2)
        message = MagicMock()

        for _ in range(3):
            pool.send(message, "from@firm.com", ["a@firm.com"])

        assert first.sendmail.call_count == 2
        first.quit.assert_called_once()
        assert second.sendmail.call_count == 1

    def test_failed_connection_discarded(self):
        broken, fresh = MagicMock(), MagicMock()
        broken.sendmail.side_effect = smtplib.SMTPServerDisconnected("eof")
        pool = self._pool([broken, fresh])
        message = MagicMock()

        try:
            pool.send(message, "from@firm.com", ["a@firm.com"])
        except smtplib.SMTPServerDisconnected:
            pass
        pool.send(message, "from@firm.com", ["a@firm.com"])

        broken.quit.assert_called_once()
        fresh.sendmail.assert_called_once()


class TestRateLimiter:

    def test_waits_when_bucket_empty(self):
        sleeps = []
        limiter = RateLimiter(max_per_second=2, clock=lambda: 100.0, sleep=sleeps.append)

        limiter.acquire()
        limiter.acquire()
        limiter.acquire()

        assert sleeps == [0.5]


class TestMailer:

    def test_urgency(self):
        assert urgency_level(-2) == "OVERDUE"
        assert urgency_level(0) == "URGENT"
        assert urgency_level(3) == "Important"
        assert urgency_level(7) == "Reminder"

    def test_deadline_subject(self):
        assert deadline_subject("Garcia I-130", 1) == "URGENT: Deadline in 1 day - Garcia I-130"
        assert deadline_subject("Garcia I-130", -2) == "OVERDUE: Deadline passed 2 days ago - Garcia I-130"

    def test_render_deadline_reminder(self):
        mailer = Mailer(SMTPPool(host="", user="", password=""))
        subject, text, html = mailer.render_deadline_reminder({
            "to": "a@firm.com",
            "matter_title": "Garcia <I-130>",
            "client_name": "Maria Garcia",
            "deadline_date": datetime(2026, 3, 5),
            "days_remaining": 3,
            "matter_url": "https://app.test/dashboard/matters?matterId=m-1",
        })

        assert subject == "Important: Deadline in 3 days - Garcia <I-130>"
        assert "Thursday, March 05, 2026" in text
        assert "Garcia &lt;I-130&gt;" in html
        assert "#f59e0b" in html

    def test_unconfigured_smtp_returns_false(self):
        mailer = Mailer(SMTPPool(host="", user="", password=""))
        assert mailer.send_notification_email({
            "to": "a@firm.com", "subject": "s", "greeting": "g", "body": "b", "closing": "c",
        }) is False

    def test_send_job_picks_template(self):
        pool = MagicMock()
        pool.configured = True
        mailer = Mailer(pool, from_email="noreply@firm.com")
        job = MagicMock(kind="deadline", payload={"to": "a@firm.com", "matter_title": "T", "days_remaining": 0})

        assert mailer.send_job(job) is True

        message = pool.send.call_args[0][0]
        assert message["Subject"] == "URGENT: Deadline in 0 days - T"
