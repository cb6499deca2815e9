"""
Session Worker - the single device session.

One daemon thread executes every task that touches the transport, in the order
submitted. Callers block on the returned Future; exceptions raised by a task
reach the caller unchanged. A task that submits further work from inside the
worker thread runs it inline, so composite operations cannot deadlock.

Usage:
    worker = SessionWorker()
    worker.start()
    value = worker.call(dispatcher.execute, Command.GET_SWITCH, 3)
    worker.stop()
"""

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Any, Callable, Optional, Tuple

from ..communication.errors import PowerBoxError

logger = logging.getLogger(__name__)


class SessionClosedError(PowerBoxError):
    """Task submitted to a worker that is not running."""
    pass


_Task = Tuple[Future, Callable[..., Any], tuple, dict]


class SessionWorker:
    """FIFO executor owning exclusive access to one device session."""

    def __init__(self, name: str = "opb-session"):
        self._name = name
        self._queue: "queue.Queue[Optional[_Task]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._running = False
        self.tasks_executed = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def in_worker_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._thread = threading.Thread(target=self._run_loop, name=self._name, daemon=True)
            self._thread.start()
        logger.debug(f"Session worker {self._name} started")

    def stop(self, timeout: float = 5.0) -> None:
        """Finish queued tasks, then stop the thread."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            thread = self._thread
        self._queue.put(None)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"Session worker {self._name} did not stop within {timeout}s")
        logger.debug(f"Session worker {self._name} stopped")

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """
        Queue *fn* for execution on the session thread.

        Raises:
            SessionClosedError: worker not running
        """
        future: Future = Future()
        if self.in_worker_thread():
            _run_task(future, fn, args, kwargs)
            return future
        with self._lock:
            if not self._running:
                raise SessionClosedError("Device session is not running")
            self._queue.put((future, fn, args, kwargs))
        return future

    def call(self, fn: Callable[..., Any], *args: Any, timeout: Optional[float] = None, **kwargs: Any) -> Any:
        """Submit *fn* and wait for its result (re-raising its exception)."""
        return self.submit(fn, *args, **kwargs).result(timeout=timeout)

    def _run_loop(self) -> None:
        while True:
            task = self._queue.get()
            if task is None:
                break
            future, fn, args, kwargs = task
            _run_task(future, fn, args, kwargs)
            self.tasks_executed += 1

        # Anything queued after stop() never runs
        while True:
            try:
                task = self._queue.get_nowait()
            except queue.Empty:
                break
            if task is not None:
                task[0].set_exception(SessionClosedError("Device session stopped"))


def _run_task(future: Future, fn: Callable[..., Any], args: tuple, kwargs: dict) -> None:
    if not future.set_running_or_notify_cancel():
        return
    try:
        result = fn(*args, **kwargs)
    except Exception as e:  # re-raised in the caller by Future.result()
        future.set_exception(e)
    else:
        future.set_result(result)
