"""
Qt adapter for controller events.

Re-emits EventSink callbacks as PyQt6 signals. Events are raised on the
session and poll threads; Qt queues them to receivers living in the GUI
thread.

Usage:
    sink = QtEventSink()
    sink.snapshot_received.connect(window.update_readings)
    controller = PowerBoxController(transport, event_sink=sink)
"""

import logging
from typing import Any, Optional

from PyQt6.QtCore import QObject, pyqtSignal

from ..models.snapshot import StateSnapshot
from ..models.topology import Topology

logger = logging.getLogger(__name__)


class QtEventSink(QObject):
    """EventSink implementation emitting Qt signals."""

    # Signals
    connected = pyqtSignal(object, bool)  # Topology, first_time
    disconnected = pyqtSignal()
    snapshot_received = pyqtSignal(object)  # StateSnapshot
    channel_changed = pyqtSignal(int, object)  # index, value
    error = pyqtSignal(str)

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)

    def on_connected(self, topology: Topology, first_time: bool) -> None:
        self.connected.emit(topology, first_time)

    def on_disconnected(self) -> None:
        self.disconnected.emit()

    def on_snapshot(self, snapshot: StateSnapshot) -> None:
        self.snapshot_received.emit(snapshot)

    def on_channel_changed(self, index: int, value: Any) -> None:
        self.channel_changed.emit(index, value)

    def on_error(self, message: str, error: Optional[Exception]) -> None:
        logger.debug(f"Forwarding error to Qt: {message}")
        self.error.emit(message)
