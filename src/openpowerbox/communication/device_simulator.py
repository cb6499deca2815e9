"""
Open Power Box Device Simulator
Simulates the box firmware for testing without hardware.

Implements:
- The ASCII command set (S/G, N/n, R/r, L/l, Z, I, F/f, H, p)
- Per-index switch and sensor values laid out like the firmware
- Fault injection: device errors, wrong acknowledgments, silence, stray bytes
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .errors import TransportError, TransportTimeout
from .protocol import Command
from .transport_base import Transport, TransportState

logger = logging.getLogger(__name__)


@dataclass
class SimulatorState:
    """Complete simulator state."""
    # Topology (DC, PWM, Relay, Bank, USB)
    num_dc: int = 7
    num_pwm: int = 3
    num_relay: int = 1
    num_bank: int = 1
    num_usb: int = 7

    # Global sensors
    input_voltage: float = 12.0
    total_current: float = 2.5

    # Per-index values, as the firmware stores them (text)
    values: Dict[int, str] = field(default_factory=dict)
    names: Dict[int, str] = field(default_factory=dict)
    reverse: List[int] = field(default_factory=lambda: [0] * 5)
    limits: List[float] = field(default_factory=lambda: [5.0, 3.0, 10.0, 20.0, 6.0, 25.0])

    # Wi-Fi
    ip: str = "192.168.4.1"
    ssid: str = "OpenPowerBox"
    password: str = ""
    pending_ssid: Optional[str] = None
    pending_password: Optional[str] = None
    reboot_count: int = 0

    @property
    def total(self) -> int:
        return self.num_dc + self.num_pwm + self.num_relay + self.num_bank + self.num_usb

    @property
    def logical_count(self) -> int:
        return (self.num_dc + self.num_pwm + self.num_bank) * 2 + self.total + 4

    @property
    def pwm_range(self) -> range:
        return range(self.num_dc, self.num_dc + self.num_pwm)


class DeviceSimulator:
    """
    Open Power Box firmware simulator.

    Call ``handle_request(line)`` with one request line; it returns the bytes
    the firmware would send back (empty for commands without a response).
    """

    def __init__(self, state: Optional[SimulatorState] = None):
        self.state = state or SimulatorState()
        self.requests: List[str] = []
        self._error_indices: Set[int] = set()
        self._silent_indices: Set[int] = set()
        self._ack_overrides: Dict[int, str] = {}
        self._index_overrides: Dict[int, int] = {}
        self._populate_defaults()

    def _populate_defaults(self) -> None:
        s = self.state
        for index in range(s.logical_count):
            s.values.setdefault(index, "0")
        sensor_base = s.total + 4
        s.values[s.total] = f"{s.input_voltage:.2f}"
        s.values[s.total + 1] = f"{s.total_current:.2f}"
        for i in range(s.num_dc):
            s.values[sensor_base + 2 * i] = f"{s.input_voltage:.2f}"
            s.values[sensor_base + 2 * i + 1] = "0.00"
        for i in range(s.num_dc + s.num_pwm):
            s.names.setdefault(i, f"Output {i + 1}")

    # ------------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------------

    def inject_error(self, index: int) -> None:
        """Answer requests for *index* with an error frame."""
        self._error_indices.add(index)

    def inject_silence(self, index: int) -> None:
        """Do not answer requests for *index* at all."""
        self._silent_indices.add(index)

    def inject_ack_override(self, index: int, value: str) -> None:
        """Acknowledge requests for *index* with *value* instead of the real one."""
        self._ack_overrides[index] = value

    def inject_index_override(self, index: int, reported_index: int) -> None:
        """Answer requests for *index* as if they were for *reported_index*."""
        self._index_overrides[index] = reported_index

    def clear_faults(self) -> None:
        self._error_indices.clear()
        self._silent_indices.clear()
        self._ack_overrides.clear()
        self._index_overrides.clear()

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    def handle_request(self, line: str) -> bytes:
        self.requests.append(line)
        parts = line.strip().split(" ", 3)
        if len(parts) < 3 or parts[0] != "#":
            return b"#E Malformed request;"

        command, index_text = parts[1], parts[2]
        value = parts[3] if len(parts) > 3 else None
        try:
            index = int(index_text)
        except ValueError:
            return b"#E Invalid index;"

        if index in self._silent_indices:
            return b""
        if index in self._error_indices:
            return f"#E Injected error on {index};".encode("ascii")

        try:
            cmd = Command(command)
        except ValueError:
            return b"#E Unknown command;"

        handler = getattr(self, f"_handle_{cmd.name.lower()}")
        response = handler(index, value)
        if response is None:
            return b""
        tag, payload = response
        if index in self._ack_overrides and tag in "Gnrl":
            payload = self._ack_overrides[index]
        reported = self._index_overrides.get(index, index)
        if tag in "Gnrl":
            return f"#{tag}{reported}:{payload};".encode("ascii")
        return f"#{tag}:{payload};".encode("ascii")

    def _handle_set_switch(self, index: int, value: Optional[str]):
        s = self.state
        if index >= s.total or value is None:
            return "E", "Invalid switch"
        number = int(float(value))
        if index in s.pwm_range:
            s.values[index] = str(max(0, min(100, number)))
        else:
            s.values[index] = "1" if number else "0"
        return "G", s.values[index]

    def _handle_get_switch(self, index: int, value: Optional[str]):
        if index >= self.state.logical_count:
            return "E", "Invalid switch"
        return "G", self.state.values.get(index, "0")

    def _handle_set_name(self, index: int, value: Optional[str]):
        if index >= self.state.total:
            return "E", "Invalid switch"
        self.state.names[index] = (value or "")[:32]
        return "n", self.state.names[index]

    def _handle_get_name(self, index: int, value: Optional[str]):
        if index >= self.state.total:
            return "E", "Invalid switch"
        return "n", self.state.names.get(index, "")

    def _handle_set_reverse(self, index: int, value: Optional[str]):
        if index >= len(self.state.reverse):
            return "E", "Invalid class"
        self.state.reverse[index] = 1 if int(value or "0") else 0
        return "r", str(self.state.reverse[index])

    def _handle_get_reverse(self, index: int, value: Optional[str]):
        if index >= len(self.state.reverse):
            return "E", "Invalid class"
        return "r", str(self.state.reverse[index])

    def _handle_set_limit(self, index: int, value: Optional[str]):
        if index >= len(self.state.limits):
            return "E", "Invalid limit"
        self.state.limits[index] = float(value or "0")
        return "l", f"{self.state.limits[index]:.2f}"

    def _handle_get_limit(self, index: int, value: Optional[str]):
        if index >= len(self.state.limits):
            return "E", "Invalid limit"
        return "l", f"{self.state.limits[index]:.2f}"

    def _handle_get_topology(self, index: int, value: Optional[str]):
        s = self.state
        return "Z", f"{s.num_dc},{s.num_pwm},{s.num_relay},{s.num_bank},{s.num_usb}"

    def _handle_get_ip(self, index: int, value: Optional[str]):
        return "i", self.state.ip

    def _handle_set_ssid(self, index: int, value: Optional[str]):
        self.state.pending_ssid = value or ""
        return "f", self.state.pending_ssid

    def _handle_get_ssid(self, index: int, value: Optional[str]):
        return "f", self.state.ssid

    def _handle_set_password(self, index: int, value: Optional[str]):
        self.state.pending_password = value or ""
        return None

    def _handle_apply_settings(self, index: int, value: Optional[str]):
        s = self.state
        if s.pending_ssid is not None:
            s.ssid = s.pending_ssid
            s.pending_ssid = None
        if s.pending_password is not None:
            s.password = s.pending_password
            s.pending_password = None
        s.reboot_count += 1
        logger.info(f"Simulated device rebooting (count={s.reboot_count})")
        return None


class SimulatedTransport(Transport):
    """Transport that talks to an in-process DeviceSimulator."""

    def __init__(self, simulator: Optional[DeviceSimulator] = None):
        super().__init__()
        self.simulator = simulator or DeviceSimulator()
        self._rx_buffer = bytearray()
        self.fail_open = False

    def open(self) -> None:
        if self.fail_open:
            self._set_state(TransportState.ERROR)
            raise TransportError("Simulated open failure")
        self._rx_buffer.clear()
        self._set_state(TransportState.OPEN)
        logger.info("Simulated transport opened")

    def close(self) -> None:
        self._rx_buffer.clear()
        self._set_state(TransportState.CLOSED)

    def inject_bytes(self, data: bytes) -> None:
        """Queue raw bytes as if the device had sent them unprompted."""
        self._rx_buffer.extend(data)

    def write(self, data: bytes) -> None:
        if not self.is_open:
            raise TransportError("Not connected")
        logger.debug(f"TX {data!r}")
        self._rx_buffer.extend(self.simulator.handle_request(data.decode("ascii")))

    def read_until(self, terminator: bytes, timeout: float) -> bytes:
        if not self.is_open:
            raise TransportError("Not connected")
        pos = self._rx_buffer.find(terminator)
        if pos < 0:
            time.sleep(timeout)
            partial = bytes(self._rx_buffer)
            self._rx_buffer.clear()
            raise TransportTimeout(f"No {terminator!r} within {timeout:.2f}s", partial=partial)
        end = pos + len(terminator)
        data = bytes(self._rx_buffer[:end])
        del self._rx_buffer[:end]
        logger.debug(f"RX {data!r}")
        return data
