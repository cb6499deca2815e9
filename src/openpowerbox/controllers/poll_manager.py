"""
Poll Manager - periodic poll sweeps.

Runs ``PowerBoxController.poll_once`` on a background thread every
``interval`` seconds. Each sweep is one task in the device session, so it
never interleaves with user commands. The next sweep is scheduled whatever
the outcome of the previous one; sweeps are skipped while disconnected or
paused.

Usage:
    manager = PollManager(controller)
    manager.start(interval=2.0)

    with manager.paused("wifi_update"):
        controller.set_wifi_credentials("obs", "secret")
    # Polling resumes here

    manager.stop()
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from ..models.snapshot import StateSnapshot

if TYPE_CHECKING:
    from .device_controller import PowerBoxController

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0


class PollState(Enum):
    """Polling states."""
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"


@dataclass
class PollStats:
    """Statistics about polling."""
    sweeps: int = 0
    incomplete_sweeps: int = 0
    failed_reads: int = 0
    skipped: int = 0
    errors: int = 0
    pause_count: int = 0
    last_sweep_time: Optional[datetime] = None
    last_sweep_duration: float = 0.0


class PollManager:
    """Background scheduler for poll sweeps."""

    def __init__(self, controller: "PowerBoxController", interval: float = DEFAULT_POLL_INTERVAL):
        self._controller = controller
        self._interval = interval
        self._state = PollState.STOPPED
        self._pause_reason: Optional[str] = None
        self._stats = PollStats()
        self._last_snapshot: Optional[StateSnapshot] = None

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._paused = threading.Event()
        self._sweep_done = threading.Condition()

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_paused(self) -> bool:
        return self._state == PollState.PAUSED

    @property
    def pause_reason(self) -> Optional[str]:
        """Reason for current pause, or None if not paused."""
        return self._pause_reason if self._state == PollState.PAUSED else None

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def stats(self) -> PollStats:
        return self._stats

    @property
    def last_snapshot(self) -> Optional[StateSnapshot]:
        return self._last_snapshot

    def start(self, interval: Optional[float] = None) -> bool:
        """Start polling.

        Args:
            interval: Seconds between sweeps (default: the current interval)

        Returns:
            True if polling is running
        """
        if interval is not None:
            if interval <= 0:
                raise ValueError(f"Poll interval must be positive, got {interval}")
            self._interval = interval

        if self.is_running:
            logger.debug("Polling already running")
            return True

        self._stop_event.clear()
        # A pause requested before start stays in force until resume()
        self._state = PollState.PAUSED if self._paused.is_set() else PollState.RUNNING
        self._thread = threading.Thread(target=self._run_loop, name="opb-poll", daemon=True)
        self._thread.start()
        logger.info(f"Polling started every {self._interval}s")
        return True

    def stop(self, timeout: float = 10.0) -> bool:
        """Stop polling and wait for the current sweep to finish."""
        if self._thread is None:
            self._state = PollState.STOPPED
            return True

        self._stop_event.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(f"Poll thread did not stop within {timeout}s")
                return False
        self._thread = None
        self._state = PollState.STOPPED
        logger.info("Polling stopped")
        return True

    def pause(self, reason: str) -> None:
        """Skip sweeps until ``resume``. A sweep already running completes."""
        self._paused.set()
        self._pause_reason = reason
        if self._state != PollState.STOPPED:
            self._state = PollState.PAUSED
        self._stats.pause_count += 1
        logger.info(f"Polling paused: {reason}")

    def resume(self) -> None:
        if not self._paused.is_set():
            logger.debug("Polling resume requested but not paused")
            return
        self._paused.clear()
        self._pause_reason = None
        if self._state == PollState.PAUSED:
            self._state = PollState.RUNNING if self.is_running else PollState.STOPPED
        logger.info("Polling resumed")

    @contextmanager
    def paused(self, reason: str):
        """Context manager that pauses polling around a block."""
        self.pause(reason)
        try:
            yield
        finally:
            self.resume()

    def wait_for_sweep(self, timeout: Optional[float] = None) -> Optional[StateSnapshot]:
        """Block until the next sweep completes; None on timeout."""
        with self._sweep_done:
            count = self._stats.sweeps
            finished = self._sweep_done.wait_for(lambda: self._stats.sweeps > count, timeout=timeout)
        return self._last_snapshot if finished else None

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_sweep()
            self._stop_event.wait(self._interval)

    def run_sweep(self) -> Optional[StateSnapshot]:
        """Run one scheduled sweep unless paused or disconnected."""
        if self._paused.is_set():
            self._stats.skipped += 1
            return None
        if not self._controller.is_connected():
            self._stats.skipped += 1
            logger.debug("Poll skipped: not connected")
            return None

        started = time.monotonic()
        try:
            snapshot = self._controller.poll_once()
        except Exception as e:
            self._state = PollState.ERROR
            self._stats.errors += 1
            logger.error(f"Poll sweep failed: {e}")
            self._controller.event_sink.on_error(f"Poll sweep failed: {e}", e)
            return None

        with self._sweep_done:
            self._stats.sweeps += 1
            self._stats.last_sweep_time = snapshot.timestamp
            self._stats.last_sweep_duration = time.monotonic() - started
            if snapshot.failed_indices:
                self._stats.incomplete_sweeps += 1
                self._stats.failed_reads += len(snapshot.failed_indices)
            self._last_snapshot = snapshot
            if self._state == PollState.ERROR:
                self._state = PollState.RUNNING
            self._sweep_done.notify_all()
        return snapshot

    def get_status_string(self) -> str:
        """Get human-readable status string."""
        if self._state == PollState.RUNNING:
            return f"Polling every {self._interval}s"
        elif self._state == PollState.PAUSED:
            return f"Paused: {self._pause_reason}"
        elif self._state == PollState.ERROR:
            return "Error"
        else:
            return "Stopped"
