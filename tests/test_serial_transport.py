"""
Serial transport tests
pyserial is replaced with a fake port; no hardware needed.
"""

from unittest.mock import Mock, patch

import pytest
import serial

from openpowerbox.communication.errors import TransportError, TransportTimeout
from openpowerbox.communication.serial_transport import (
    SILABS_VID,
    SerialTransport,
    list_serial_ports,
)
from openpowerbox.communication.transport_base import TransportState


class FakeSerial:
    """Records line state at open() and replays canned input."""

    def __init__(self):
        self.port = None
        self.dtr = True
        self.rts = True
        self.timeout = None
        self.line_state_at_open = None
        self.is_open = False
        self.written = []
        self.incoming = b""
        self.fail_open = False
        self.input_resets = 0

    def open(self):
        if self.fail_open:
            raise serial.SerialException("could not open port")
        self.line_state_at_open = (self.dtr, self.rts)
        self.is_open = True

    def close(self):
        self.is_open = False

    def reset_input_buffer(self):
        self.input_resets += 1

    def write(self, data):
        self.written.append(data)
        return len(data)

    def flush(self):
        pass

    def read_until(self, expected=b"\n"):
        pos = self.incoming.find(expected)
        if pos < 0:
            data, self.incoming = self.incoming, b""
            return data
        end = pos + len(expected)
        data, self.incoming = self.incoming[:end], self.incoming[end:]
        return data


@pytest.fixture
def fake_serial():
    fake = FakeSerial()
    with patch("openpowerbox.communication.serial_transport.serial.Serial", return_value=fake), \
            patch("openpowerbox.communication.serial_transport._disable_hangup_on_close"):
        yield fake


@pytest.fixture
def transport(fake_serial):
    transport = SerialTransport("/dev/ttyUSB0", settle_delay=0)
    transport.open()
    yield transport
    transport.close()


class TestSerialTransport:
    """Test open/close and framing reads."""

    def test_lines_low_before_open(self, transport, fake_serial):
        """DTR and RTS never go high, so the board does not reset."""
        assert fake_serial.line_state_at_open == (False, False)
        assert fake_serial.port == "/dev/ttyUSB0"
        assert transport.is_open

    def test_open_failure(self, fake_serial):
        fake_serial.fail_open = True
        transport = SerialTransport("/dev/ttyUSB9", settle_delay=0)
        with pytest.raises(TransportError):
            transport.open()
        assert transport.state == TransportState.ERROR

    def test_write_discards_stale_input(self, transport, fake_serial):
        resets = fake_serial.input_resets
        transport.write(b"# G 3\n")
        assert fake_serial.written == [b"# G 3\n"]
        assert fake_serial.input_resets == resets + 1

    def test_read_frame(self, transport, fake_serial):
        fake_serial.incoming = b"#G3:1;#G4:0;"
        assert transport.read_until(b";", 0.1) == b"#G3:1;"
        assert fake_serial.timeout == 0.1

    def test_timeout_keeps_partial(self, transport, fake_serial):
        """Bytes without a terminator are reported with the timeout."""
        fake_serial.incoming = b"#G3:1"
        with pytest.raises(TransportTimeout) as exc_info:
            transport.read_until(b";", 0.1)
        assert exc_info.value.partial == b"#G3:1"

    def test_closed_transport(self, fake_serial):
        transport = SerialTransport("/dev/ttyUSB0", settle_delay=0)
        with pytest.raises(TransportError):
            transport.write(b"# G 0\n")

    def test_state_callback(self, fake_serial):
        states = []
        transport = SerialTransport("/dev/ttyUSB0", settle_delay=0)
        transport.set_state_callback(states.append)
        transport.open()
        transport.close()
        assert states == [TransportState.OPEN, TransportState.CLOSED]


class TestListPorts:
    """Test port discovery."""

    def test_known_bridges_first(self):
        ports = [
            Mock(device="/dev/ttyS0", description="Serial", hwid="PNP0501", manufacturer=None, vid=None),
            Mock(device="/dev/ttyUSB1", description="CP2102", hwid="USB VID:PID=10C4:EA60",
                 manufacturer="Silicon Labs", vid=SILABS_VID),
        ]
        with patch("openpowerbox.communication.serial_transport.serial.tools.list_ports.comports",
                   return_value=ports):
            result = list_serial_ports()

        assert [p.port for p in result] == ["/dev/ttyUSB1", "/dev/ttyS0"]
        assert result[0].likely_device
        assert result[1].manufacturer == ""
