"""
Open Power Box host library.

Drives a multi-channel power box (DC outputs, PWM dew heaters, relay, DC
bank, USB ports) over its USB serial ASCII protocol.
"""

from .communication.errors import (
    PowerBoxError,
    TransportError,
    ProtocolError,
    DeviceError,
    AcknowledgmentMismatch,
    LayoutError,
    NotConnectedError,
)
from .controllers.device_controller import PowerBoxController
from .controllers.dispatcher import AckPolicy
from .models.topology import ChannelClass, LimitKind, SensorKind, Topology

__version__ = "1.0.0"

__all__ = [
    "PowerBoxController",
    "AckPolicy",
    "ChannelClass",
    "LimitKind",
    "SensorKind",
    "Topology",
    "PowerBoxError",
    "TransportError",
    "ProtocolError",
    "DeviceError",
    "AcknowledgmentMismatch",
    "LayoutError",
    "NotConnectedError",
]
