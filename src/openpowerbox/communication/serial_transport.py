"""
Open Power Box USB Serial Transport Implementation

This module implements the USB serial transport using pyserial.

The box is an ESP32 behind a CP210x/CH340 bridge. Those boards wire DTR and
RTS to the auto-reset circuit, so both lines are set low *before* the port is
opened and HUPCL is cleared on POSIX, otherwise opening or closing the port
reboots the microcontroller.
"""

import logging
import os
import time
from typing import List, Optional

import serial
import serial.tools.list_ports

from .errors import TransportError, TransportTimeout
from .transport_base import Transport, TransportInfo, TransportState

logger = logging.getLogger(__name__)


# USB bridges used on Open Power Box boards
SILABS_VID = 0x10C4     # CP2102/CP2104
WCH_VID = 0x1A86        # CH340
KNOWN_BRIDGE_VIDS = (SILABS_VID, WCH_VID)

# Default serial settings
DEFAULT_BAUDRATE = 115200
DEFAULT_WRITE_TIMEOUT = 1.0
DEFAULT_SETTLE_DELAY = 0.5


def list_serial_ports() -> List[TransportInfo]:
    """
    List available serial ports.

    Returns:
        List of TransportInfo, with likely Open Power Box bridges first.
    """
    ports = []
    for port in serial.tools.list_ports.comports():
        ports.append(TransportInfo(
            port=port.device,
            description=port.description or "",
            hardware_id=port.hwid or "",
            manufacturer=port.manufacturer or "",
            likely_device=port.vid in KNOWN_BRIDGE_VIDS,
        ))

    ports.sort(key=lambda p: (not p.likely_device, p.port))
    logger.debug(f"Found {len(ports)} serial ports")
    return ports


class SerialTransport(Transport):
    """USB serial transport (115200 8-N-1, raw, no flow control)."""

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ):
        super().__init__()
        self.port = port
        self.baudrate = baudrate
        self.write_timeout = write_timeout
        self.settle_delay = settle_delay
        self._serial: Optional[serial.Serial] = None

    def open(self) -> None:
        if self.is_open:
            return

        ser = serial.Serial()
        ser.port = self.port
        ser.baudrate = self.baudrate
        ser.bytesize = serial.EIGHTBITS
        ser.parity = serial.PARITY_NONE
        ser.stopbits = serial.STOPBITS_ONE
        ser.xonxoff = False
        ser.rtscts = False
        ser.dsrdtr = False
        ser.write_timeout = self.write_timeout
        if os.name == "posix":
            ser.exclusive = True
        # Must be set before open() so the lines never go high
        ser.dtr = False
        ser.rts = False

        try:
            ser.open()
            _disable_hangup_on_close(ser)
            ser.dtr = False
            ser.rts = False
        except (serial.SerialException, OSError) as e:
            self._set_state(TransportState.ERROR)
            raise TransportError(f"Failed to open {self.port}: {e}") from e

        self._serial = ser
        if self.settle_delay > 0:
            time.sleep(self.settle_delay)
        ser.reset_input_buffer()

        self._set_state(TransportState.OPEN)
        logger.info(f"Opened serial port {self.port} at {self.baudrate} baud (DTR/RTS held low)")

    def close(self) -> None:
        if self._serial is not None:
            try:
                self._serial.close()
            except (serial.SerialException, OSError) as e:
                logger.warning(f"Error closing serial port {self.port}: {e}")
            self._serial = None
            logger.info(f"Closed serial port {self.port}")
        self._set_state(TransportState.CLOSED)

    def write(self, data: bytes) -> None:
        if not self.is_open or self._serial is None:
            raise TransportError("Not connected")
        try:
            # Stale bytes from an earlier, slower exchange would desync the reply
            self._serial.reset_input_buffer()
            self._serial.write(data)
            self._serial.flush()
        except (serial.SerialException, OSError) as e:
            self._set_state(TransportState.ERROR)
            raise TransportError(f"Send failed: {e}") from e
        logger.debug(f"TX {data!r}")

    def read_until(self, terminator: bytes, timeout: float) -> bytes:
        if not self.is_open or self._serial is None:
            raise TransportError("Not connected")
        try:
            self._serial.timeout = timeout
            data = self._serial.read_until(expected=terminator)
        except (serial.SerialException, OSError) as e:
            self._set_state(TransportState.ERROR)
            raise TransportError(f"Receive failed: {e}") from e

        if not data.endswith(terminator):
            raise TransportTimeout(
                f"No {terminator!r} from {self.port} within {timeout:.2f}s "
                f"({len(data)} bytes received)",
                partial=data,
            )
        logger.debug(f"RX {data!r}")
        return data


def _disable_hangup_on_close(ser: serial.Serial) -> None:
    """Clear HUPCL so closing the port does not drop DTR (POSIX only)."""
    if os.name != "posix":
        return
    import termios

    try:
        attrs = termios.tcgetattr(ser.fileno())
        attrs[2] &= ~termios.HUPCL
        termios.tcsetattr(ser.fileno(), termios.TCSANOW, attrs)
    except termios.error as e:
        logger.warning(f"Could not clear HUPCL on {ser.port}: {e}")
