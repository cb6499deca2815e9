"""
Shared fixtures for the Open Power Box tests.

Provides a scripted transport for exact wire-level tests and a controller
connected to the in-process firmware simulator.
"""

from collections import deque
from typing import Callable, Deque, List, Optional

import pytest

from openpowerbox.communication.device_simulator import DeviceSimulator, SimulatedTransport
from openpowerbox.communication.errors import TransportError, TransportTimeout
from openpowerbox.communication.transport_base import Transport, TransportState
from openpowerbox.controllers.device_controller import PowerBoxController
from openpowerbox.controllers.dispatcher import CommandDispatcher
from openpowerbox.models.state_cache import DeviceStateCache
from openpowerbox.models.topology import Topology


class ScriptedTransport(Transport):
    """
    Transport replaying canned responses.

    Each ``read_until`` pops the next queued response; ``None`` in the queue
    (or an empty queue) behaves like a read timeout.
    """

    def __init__(self, responses=None, responder: Optional[Callable[[bytes], Optional[bytes]]] = None):
        super().__init__()
        self.written: List[bytes] = []
        self.responses: Deque[Optional[bytes]] = deque(responses or [])
        self.responder = responder
        self.fail_write = False

    def queue(self, *responses: Optional[bytes]) -> None:
        self.responses.extend(responses)

    def open(self) -> None:
        self._set_state(TransportState.OPEN)

    def close(self) -> None:
        self._set_state(TransportState.CLOSED)

    def write(self, data: bytes) -> None:
        if self.fail_write:
            raise TransportError("Simulated write failure")
        self.written.append(data)
        if self.responder is not None:
            self.responses.append(self.responder(data))

    def read_until(self, terminator: bytes, timeout: float) -> bytes:
        if not self.responses:
            raise TransportTimeout("No scripted response")
        response = self.responses.popleft()
        if response is None:
            raise TransportTimeout("Scripted timeout")
        return response


@pytest.fixture
def topology():
    """The 7/3/1/1/7 box used throughout the tests."""
    return Topology(num_dc=7, num_pwm=3, num_relay=1, num_bank=1, num_usb=7)


@pytest.fixture
def cache(topology):
    cache = DeviceStateCache()
    cache.install(topology)
    return cache


@pytest.fixture
def scripted():
    transport = ScriptedTransport()
    transport.open()
    return transport


@pytest.fixture
def dispatcher(scripted, cache):
    return CommandDispatcher(scripted, cache, read_timeout=0.01, command_delay=0.0)


@pytest.fixture
def simulator():
    return DeviceSimulator()


@pytest.fixture
def sim_transport(simulator):
    return SimulatedTransport(simulator)


@pytest.fixture
def controller(sim_transport):
    """Controller connected to the simulator."""
    controller = PowerBoxController(
        sim_transport,
        read_timeout=0.01,
        command_delay=0.0,
        wifi_apply_delay=0.0,
    )
    controller.connect()
    yield controller
    controller.disconnect()
