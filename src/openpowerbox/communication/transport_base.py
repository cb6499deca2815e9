"""
Open Power Box Transport Base Interface

This module defines the abstract base class for all transport implementations.
A transport is a half-duplex byte channel: the protocol engine writes one
request and then reads until the response terminator. It never frames or
parses anything itself.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Optional


logger = logging.getLogger(__name__)


class TransportState(Enum):
    """Transport connection state."""
    CLOSED = auto()
    OPEN = auto()
    ERROR = auto()


@dataclass
class TransportInfo:
    """Information about a transport endpoint."""
    port: str
    description: str
    hardware_id: str = ""
    manufacturer: str = ""
    likely_device: bool = False


class Transport(ABC):
    """Abstract base class for transport implementations."""

    def __init__(self):
        self._state = TransportState.CLOSED
        self._state_callback: Optional[Callable[[TransportState], None]] = None

    @property
    def state(self) -> TransportState:
        """Get current transport state."""
        return self._state

    @property
    def is_open(self) -> bool:
        """Check if the link is open."""
        return self._state == TransportState.OPEN

    def set_state_callback(self, callback: Optional[Callable[[TransportState], None]]) -> None:
        """Set callback for state changes, or None to clear."""
        self._state_callback = callback

    def _set_state(self, new_state: TransportState) -> None:
        if self._state != new_state:
            self._state = new_state
            if self._state_callback:
                self._state_callback(new_state)

    @property
    def transport_type(self) -> str:
        """Return transport type name."""
        return self.__class__.__name__

    @abstractmethod
    def open(self) -> None:
        """
        Open the link.

        Raises:
            TransportError: If the endpoint cannot be opened
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the link. Safe to call when already closed."""
        pass

    @abstractmethod
    def write(self, data: bytes) -> None:
        """
        Write all of *data*.

        Raises:
            TransportError: If not open or the write fails
        """
        pass

    @abstractmethod
    def read_until(self, terminator: bytes, timeout: float) -> bytes:
        """
        Read until *terminator* (inclusive) or until *timeout* seconds pass.

        Raises:
            TransportTimeout: Deadline passed before the terminator arrived
            TransportError: Read failure
        """
        pass

    def __enter__(self) -> "Transport":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


