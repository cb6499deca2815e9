"""
Event sink interface between the protocol core and a host UI.

The controller never imports a UI framework; it reports through an object
with these methods. ``NullEventSink`` ignores everything, ``LoggingEventSink``
writes events to the log, and ``qt_bridge.QtEventSink`` re-emits them as
PyQt6 signals.
"""

import logging
from typing import Any, Optional, Protocol

from ..models.snapshot import StateSnapshot
from ..models.topology import Topology

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def on_connected(self, topology: Topology, first_time: bool) -> None: ...

    def on_disconnected(self) -> None: ...

    def on_snapshot(self, snapshot: StateSnapshot) -> None: ...

    def on_channel_changed(self, index: int, value: Any) -> None: ...

    def on_error(self, message: str, error: Optional[Exception]) -> None: ...


class NullEventSink:
    """Discards all events."""

    def on_connected(self, topology: Topology, first_time: bool) -> None:
        pass

    def on_disconnected(self) -> None:
        pass

    def on_snapshot(self, snapshot: StateSnapshot) -> None:
        pass

    def on_channel_changed(self, index: int, value: Any) -> None:
        pass

    def on_error(self, message: str, error: Optional[Exception]) -> None:
        pass


class LoggingEventSink(NullEventSink):
    """Logs events; used by the command-line tool."""

    def on_connected(self, topology: Topology, first_time: bool) -> None:
        logger.info(f"Connected: {topology} (first connection: {first_time})")

    def on_disconnected(self) -> None:
        logger.info("Disconnected")

    def on_snapshot(self, snapshot: StateSnapshot) -> None:
        logger.debug(f"Snapshot: {snapshot.input_voltage} V, {snapshot.total_current} A, "
                     f"{len(snapshot.failed_indices)} failed reads")

    def on_error(self, message: str, error: Optional[Exception]) -> None:
        logger.error(message)
