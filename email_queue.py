"""
In-memory email queue.

Jobs live only in this process: a restart drops everything pending.
Up to three jobs are sent concurrently per drain iteration; a failed job
goes back to pending until it has used its three attempts. Terminal jobs
older than an hour are pruned after each drain.

Usage:
    queue = EmailQueue(sender=get_mailer().send_job)
    queue.start()
    job_id = queue.add("deadline", payload)
    ...
    queue.stop()

Without start() nothing is sent until process_queue() is called, which
is how tests drive it.
"""
import logging
import random
import string
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

from config import (
    EMAIL_JOB_RETENTION_SECONDS,
    EMAIL_MAX_ATTEMPTS,
    EMAIL_MAX_CONCURRENT,
    EMAIL_RETRY_DELAY_SECONDS,
)

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


def new_job_id(now: datetime = None) -> str:
    now = now or datetime.utcnow()
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"email_{int(now.timestamp() * 1000)}_{suffix}"


@dataclass
class EmailJob:
    id: str
    kind: str
    payload: dict
    attempts: int = 0
    max_attempts: int = EMAIL_MAX_ATTEMPTS
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=datetime.utcnow)
    error: Optional[str] = None


class EmailQueue:
    """FIFO email queue with bounded concurrent sends."""

    def __init__(
        self,
        sender: Callable[[EmailJob], bool] = None,
        max_concurrent: int = EMAIL_MAX_CONCURRENT,
        retry_delay: float = EMAIL_RETRY_DELAY_SECONDS,
        max_attempts: int = EMAIL_MAX_ATTEMPTS,
        retention_seconds: int = EMAIL_JOB_RETENTION_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        if sender is None:
            from emails import get_mailer
            sender = get_mailer().send_job
        self.sender = sender
        self.max_concurrent = max_concurrent
        self.retry_delay = retry_delay
        self.max_attempts = max_attempts
        self.retention = timedelta(seconds=retention_seconds)
        self._sleep = sleep
        self._clock = clock
        self._jobs: List[EmailJob] = []
        self._lock = threading.Lock()
        self._processing = False
        self._wakeup = threading.Event()
        self._running = False
        self._worker: Optional[threading.Thread] = None

    # ---------- lifecycle ----------

    def start(self):
        if self._running:
            return
        self._running = True
        self._worker = threading.Thread(target=self._run, name="email-queue", daemon=True)
        self._worker.start()
        if self.get_stats()["pending"]:
            self._wakeup.set()
        logger.info("Email queue started")

    def stop(self, timeout: float = 30.0):
        """Stop the worker. Pending jobs are dropped with the process."""
        if not self._running:
            return
        self._running = False
        self._wakeup.set()
        if self._worker:
            self._worker.join(timeout)
        self._worker = None
        pending = self.get_stats()["pending"]
        if pending:
            logger.warning("Email queue stopped with %d pending jobs", pending)
        else:
            logger.info("Email queue stopped")

    def _run(self):
        while self._running:
            self._wakeup.wait()
            self._wakeup.clear()
            if not self._running:
                break
            try:
                self.process_queue()
            except Exception:
                logger.exception("Email queue drain failed")

    # ---------- jobs ----------

    def add(self, kind: str, payload: dict) -> str:
        """Append a job and wake the worker. Returns the job id."""
        now = self._clock()
        job = EmailJob(
            id=new_job_id(now),
            kind=kind,
            payload=payload,
            max_attempts=self.max_attempts,
            created_at=now,
        )
        with self._lock:
            self._jobs.append(job)
            size = len(self._jobs)
        logger.info("Added job %s (%s) to email queue. Queue size: %d", job.id, kind, size)
        if self._running:
            self._wakeup.set()
        return job.id

    def get(self, job_id: str) -> Optional[EmailJob]:
        with self._lock:
            return next((j for j in self._jobs if j.id == job_id), None)

    def _next_batch(self) -> List[EmailJob]:
        with self._lock:
            batch = [j for j in self._jobs if j.status == JobStatus.PENDING][:self.max_concurrent]
            for job in batch:
                job.status = JobStatus.PROCESSING
                job.attempts += 1
        return batch

    def _process_job(self, job: EmailJob) -> bool:
        """Send one job. Returns True when it was put back for another attempt."""
        try:
            if not self.sender(job):
                raise RuntimeError("Email send returned false")
        except Exception as e:
            job.error = str(e)
            if job.attempts < job.max_attempts:
                logger.warning(
                    "Email job %s failed (attempt %d/%d): %s",
                    job.id, job.attempts, job.max_attempts, e,
                )
                job.status = JobStatus.PENDING
                return True
            job.status = JobStatus.FAILED
            logger.error("Email job %s permanently failed after %d attempts: %s", job.id, job.attempts, e)
            return False

        job.status = JobStatus.COMPLETED
        job.error = None
        logger.info("Email job %s completed", job.id)
        return False

    def process_queue(self) -> int:
        """
        Drain pending jobs. Returns the number of jobs attempted.

        A second caller while a drain is running returns 0 immediately.
        """
        with self._lock:
            if self._processing:
                return 0
            self._processing = True

        attempted = 0
        try:
            with ThreadPoolExecutor(max_workers=self.max_concurrent, thread_name_prefix="email") as pool:
                while True:
                    batch = self._next_batch()
                    if not batch:
                        break
                    attempted += len(batch)
                    retried = list(pool.map(self._process_job, batch))
                    if any(retried):
                        self._sleep(self.retry_delay)
        finally:
            with self._lock:
                self._processing = False
            self.prune()
        return attempted

    def prune(self) -> int:
        """Drop terminal jobs created more than an hour ago."""
        cutoff = self._clock() - self.retention
        with self._lock:
            before = len(self._jobs)
            self._jobs = [
                j for j in self._jobs
                if j.status not in TERMINAL_STATUSES or j.created_at > cutoff
            ]
            removed = before - len(self._jobs)
        if removed:
            logger.debug("Pruned %d finished email jobs", removed)
        return removed

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            jobs = list(self._jobs)
        stats = {"total": len(jobs)}
        for status in JobStatus:
            stats[status.value] = sum(1 for j in jobs if j.status == status)
        return stats


_queue: Optional[EmailQueue] = None


def get_email_queue() -> EmailQueue:
    """Process-wide queue, started on first use."""
    global _queue
    if _queue is None:
        _queue = EmailQueue()
        _queue.start()
    return _queue
