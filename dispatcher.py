"""
Background task dispatcher.

Sync jobs hand notification work to a dispatcher instead of running it
inline. Submitted callables run on a single worker thread in submission
order; any exception they raise is logged there and never reaches the
code that submitted them.
"""
import logging
import queue
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

_STOP = object()


class TaskDispatcher:
    """
    Message-passing task queue with its own error boundary.

    Usage:
        dispatcher = TaskDispatcher()
        dispatcher.start()
        dispatcher.submit(service.send_notification, data)
        ...
        dispatcher.stop()

    With synchronous=True (tests, CLI one-shots) tasks run inline on
    submit, still inside the error boundary.
    """

    def __init__(self, name: str = "dispatcher", synchronous: bool = False):
        self.name = name
        self.synchronous = synchronous
        self._queue: "queue.Queue" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.completed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        with self._lock:
            if self.running or self.synchronous:
                return
            self._thread = threading.Thread(target=self._worker, name=self.name, daemon=True)
            self._thread.start()
            logger.debug("Dispatcher %s started", self.name)

    def stop(self, timeout: float = 10.0):
        """Finish queued tasks, then stop the worker."""
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._queue.put(_STOP)
        thread.join(timeout)
        self._thread = None
        logger.debug("Dispatcher %s stopped", self.name)

    def submit(self, fn: Callable[..., Any], *args, **kwargs):
        if self.synchronous:
            self._run(fn, args, kwargs)
            return
        if not self.running:
            self.start()
        self._queue.put((fn, args, kwargs))

    def join(self):
        """Block until every submitted task has run."""
        if not self.synchronous:
            self._queue.join()

    def _run(self, fn, args, kwargs):
        try:
            fn(*args, **kwargs)
            self.completed += 1
        except Exception:
            self.failed += 1
            logger.exception("Background task %s failed", getattr(fn, "__name__", fn))

    def _worker(self):
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                fn, args, kwargs = item
                self._run(fn, args, kwargs)
            finally:
                self._queue.task_done()


_dispatcher: Optional[TaskDispatcher] = None


def get_dispatcher() -> TaskDispatcher:
    """Shared dispatcher used by the sync jobs."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = TaskDispatcher(name="notifications")
        _dispatcher.start()
    return _dispatcher
