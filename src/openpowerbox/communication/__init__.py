"""
Open Power Box Communication Package

Byte-level link to the power box and its ASCII wire grammar.

Modules:
    errors: Error taxonomy shared by every layer
    protocol: Request encoding and response decoding
    transport_base: Abstract transport interface
    serial_transport: USB serial transport (pyserial)
    device_simulator: In-process firmware simulator and transport

Example usage:
    from openpowerbox.communication import SerialTransport, FrameBuilder, encode_request

    transport = SerialTransport("/dev/ttyUSB0")
    transport.open()
    transport.write(FrameBuilder.get_topology().encode())
    print(transport.read_until(b";", timeout=2.0))
"""

from .errors import (
    PowerBoxError,
    TransportError,
    TransportTimeout,
    ProtocolError,
    DeviceError,
    AcknowledgmentMismatch,
    LayoutError,
    NotConnectedError,
)
from .protocol import (
    Command,
    FrameBuilder,
    RequestFrame,
    ResponseFrame,
    decode_response,
    encode_request,
)
from .transport_base import Transport, TransportInfo, TransportState
from .serial_transport import SerialTransport, list_serial_ports
from .device_simulator import DeviceSimulator, SimulatedTransport, SimulatorState

__all__ = [
    # Errors
    "PowerBoxError",
    "TransportError",
    "TransportTimeout",
    "ProtocolError",
    "DeviceError",
    "AcknowledgmentMismatch",
    "LayoutError",
    "NotConnectedError",
    # Protocol
    "Command",
    "FrameBuilder",
    "RequestFrame",
    "ResponseFrame",
    "decode_response",
    "encode_request",
    # Transport
    "Transport",
    "TransportInfo",
    "TransportState",
    "SerialTransport",
    "list_serial_ports",
    # Simulator
    "DeviceSimulator",
    "SimulatedTransport",
    "SimulatorState",
]
