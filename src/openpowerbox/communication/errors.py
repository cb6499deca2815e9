"""
Open Power Box Error Taxonomy

Every failure the protocol engine can report to its caller. None of them is
fatal to the session; the connection stays open and the caller decides
whether to retry or reconnect.

    PowerBoxError
    ├── TransportError          open/write/read failure
    │   └── TransportTimeout    no terminator before the read deadline
    ├── ProtocolError           bytes received but not a valid frame
    ├── DeviceError             well-formed "#E...;" response
    ├── AcknowledgmentMismatch  device acknowledged a different value
    ├── LayoutError             index/class outside the discovered topology
    └── NotConnectedError       operation issued without an open session
"""

from typing import Any, Optional


class PowerBoxError(Exception):
    """Base class for all Open Power Box errors."""
    pass


class TransportError(PowerBoxError):
    """Serial link failure (open, write or read)."""
    pass


class TransportTimeout(TransportError):
    """Read deadline expired before a complete frame arrived."""

    def __init__(self, message: str, partial: bytes = b""):
        super().__init__(message)
        self.partial = partial


class ProtocolError(PowerBoxError):
    """Frame received but not parseable per the wire grammar."""
    pass


class DeviceError(PowerBoxError):
    """Device answered with an error tag; payload is its diagnostic text."""

    def __init__(self, payload: str):
        super().__init__(f"Device returned error: {payload!r}")
        self.payload = payload


class AcknowledgmentMismatch(PowerBoxError):
    """Device acknowledged a value different from the one requested."""

    def __init__(self, command: str, index: Optional[int], requested: Any, acknowledged: Any):
        super().__init__(
            f"Command {command!r} on index {index}: requested {requested!r}, "
            f"device acknowledged {acknowledged!r}"
        )
        self.command = command
        self.index = index
        self.requested = requested
        self.acknowledged = acknowledged


class LayoutError(PowerBoxError, ValueError):
    """Index or channel class not addressable in the current topology."""
    pass


class NotConnectedError(PowerBoxError):
    """Operation requires an open device session."""
    pass
