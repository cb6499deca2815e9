"""
Command Dispatcher for Open Power Box

Issues one request at a time over the transport, blocks for the ';'-terminated
response and applies the acknowledgment policy to the state cache.

Per command:
    1. Encode (invalid values are rejected before anything is sent)
    2. Set commands write the requested value into the cache speculatively
    3. Write, wait ``command_delay``, read until ';' or ``read_timeout``
    4. Validate the response:
       - decode failure         -> ProtocolError
       - '#E...;'               -> DeviceError
       - wrong tag or index     -> dropped (stale bytes), returns None
       - value disagrees        -> AcknowledgmentMismatch
       - otherwise              -> device value committed to the cache
    5. Anything short of a validated acknowledgment restores the entry the
       speculative write replaced.

The link is half-duplex with no correlation ids, so callers must serialize
access (see SessionWorker). No command is retried.
"""

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from ..communication.errors import (
    AcknowledgmentMismatch, DeviceError, ProtocolError, TransportError, TransportTimeout,
)
from ..communication.protocol import (
    Command, FRAME_START, FRAME_TERMINATOR, RequestFrame, ResponseFrame, Value, ValueKind,
    command_spec, decode_response, format_value,
)
from ..communication.transport_base import Transport
from ..models.snapshot import parse_bool, parse_duty, parse_float
from ..models.state_cache import CacheField, DeviceStateCache
from ..models.topology import ChannelClass

logger = logging.getLogger(__name__)


DEFAULT_READ_TIMEOUT = 2.0
DEFAULT_COMMAND_DELAY = 0.1
FLOAT_TOLERANCE = 0.005

_FRAME_START_BYTE = FRAME_START.encode("ascii")


class AckPolicy(Enum):
    """How set commands other than S treat the device's acknowledgment."""
    STRICT = "strict"               # verify and roll back for S, N, R and L
    TRUST_DEVICE = "trust_device"   # only S verifies; N, R, L commit what the device returns


# Cache store touched by each command
_CACHE_FIELDS: Dict[Command, CacheField] = {
    Command.SET_SWITCH: CacheField.VALUE,
    Command.GET_SWITCH: CacheField.VALUE,
    Command.SET_NAME: CacheField.NAME,
    Command.GET_NAME: CacheField.NAME,
    Command.SET_REVERSE: CacheField.REVERSE,
    Command.GET_REVERSE: CacheField.REVERSE,
    Command.SET_LIMIT: CacheField.LIMIT,
    Command.GET_LIMIT: CacheField.LIMIT,
}


@dataclass(frozen=True)
class Acknowledgment:
    """A validated device response."""
    command: Command
    index: Optional[int]
    value: str
    frame: ResponseFrame


@dataclass
class DispatchStats:
    """Counters for one dispatcher."""
    commands_sent: int = 0
    acknowledged: int = 0
    dropped: int = 0
    mismatches: int = 0
    device_errors: int = 0
    protocol_errors: int = 0
    transport_errors: int = 0
    last_error: Optional[str] = None
    last_command_time: Optional[datetime] = None


def values_match(kind: ValueKind, requested: Value, acknowledged: str) -> bool:
    """
    Compare a requested value with the device's acknowledgment.

    Raises:
        ProtocolError: acknowledgment cannot be parsed as *kind*
    """
    if kind == ValueKind.BOOL:
        return parse_bool(acknowledged) == parse_bool(format_value(requested))
    if kind == ValueKind.DUTY:
        return parse_duty(acknowledged) == parse_duty(format_value(requested))
    if kind == ValueKind.FLOAT:
        return math.isclose(parse_float(acknowledged), float(requested), abs_tol=FLOAT_TOLERANCE)
    return acknowledged == format_value(requested)


class CommandDispatcher:
    """Synchronous request/response engine over one transport."""

    def __init__(
        self,
        transport: Transport,
        cache: DeviceStateCache,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        command_delay: float = DEFAULT_COMMAND_DELAY,
        ack_policy: AckPolicy = AckPolicy.STRICT,
    ):
        self.transport = transport
        self.cache = cache
        self.read_timeout = read_timeout
        self.command_delay = command_delay
        self.ack_policy = ack_policy
        self._stats = DispatchStats()

    @property
    def stats(self) -> DispatchStats:
        return self._stats

    def value_kind(self, command: Command, index: int) -> ValueKind:
        """Comparison rule for the acknowledgment of *command* on *index*."""
        if command == Command.SET_SWITCH:
            topology = self.cache.topology
            if topology is not None and topology.is_physical(index) \
                    and topology.class_of(index) == ChannelClass.PWM:
                return ValueKind.DUTY
            return ValueKind.BOOL
        if command == Command.SET_REVERSE:
            return ValueKind.BOOL
        if command == Command.SET_LIMIT:
            return ValueKind.FLOAT
        return ValueKind.TEXT

    def _verifies(self, command: Command) -> bool:
        return command == Command.SET_SWITCH or self.ack_policy == AckPolicy.STRICT

    def execute_frame(self, frame: RequestFrame) -> Optional[Acknowledgment]:
        """Execute a frame built with FrameBuilder."""
        return self.execute(frame.command, frame.index, frame.value)

    def execute(self, command: Command, index: int, value: Optional[Value] = None) -> Optional[Acknowledgment]:
        """
        Send one command and validate its response.

        Args:
            command: Command to issue
            index: Wire index (0 for commands that ignore it)
            value: Value for set commands

        Returns:
            The validated Acknowledgment, or None when the device sends no
            response for this command or the response was dropped as stale.

        Raises:
            TransportError: write/read failure or read timeout
            ProtocolError: unparseable response
            DeviceError: device answered with the error tag
            AcknowledgmentMismatch: device acknowledged a different value
            LayoutError: index outside the installed topology
            ValueError: value cannot be encoded
        """
        spec = command_spec(command)
        data = RequestFrame(command, index, value).encode()
        field = _CACHE_FIELDS.get(command)
        if field is not None:
            self.cache.read(field, index)  # layout check before any I/O

        speculative = spec.sets_value and field is not None and value is not None
        previous: Optional[str] = None
        if speculative:
            previous = self.cache.write(field, index, format_value(value))

        confirmed = False
        try:
            self._send(data)
            if spec.ack_tag is None:
                self._stats.acknowledged += 1
                confirmed = True
                return None

            frame = self._receive()
            if frame.tag != spec.ack_tag or (spec.indexed_response and frame.index != index):
                self._stats.dropped += 1
                logger.warning(
                    f"Dropped response {frame.raw!r} to {command.value} {index} "
                    f"(expected tag {spec.ack_tag!r})"
                )
                return None

            if speculative and self._verifies(command):
                try:
                    matched = values_match(self.value_kind(command, index), value, frame.value)
                except ProtocolError:
                    self._stats.protocol_errors += 1
                    raise
                if not matched:
                    self._stats.mismatches += 1
                    self._stats.last_error = f"{command.value} {index}: acknowledged {frame.value!r}"
                    logger.warning(
                        f"Acknowledgment mismatch on {command.value} {index}: "
                        f"requested {value!r}, device reports {frame.value!r}"
                    )
                    raise AcknowledgmentMismatch(command.value, index, value, frame.value)

            if field is not None:
                self.cache.write(field, index, frame.value)
            self._stats.acknowledged += 1
            confirmed = True
            return Acknowledgment(command=command, index=frame.index, value=frame.value, frame=frame)
        finally:
            if speculative and not confirmed:
                self.cache.restore(field, index, previous)

    def _send(self, data: bytes) -> None:
        try:
            self.transport.write(data)
        except TransportError as e:
            self._record_transport_error(e)
            raise
        self._stats.commands_sent += 1
        self._stats.last_command_time = datetime.now()
        logger.debug(f"Sent {data!r}")
        if self.command_delay > 0:
            time.sleep(self.command_delay)

    def _receive(self) -> ResponseFrame:
        # Boot banners and other noise may carry their own ';'; skip chunks
        # without a frame start until the deadline
        deadline = time.monotonic() + self.read_timeout
        raw = self._read_chunk(self.read_timeout)
        while _FRAME_START_BYTE not in raw:
            logger.warning(f"Discarding noise before frame start: {raw!r}")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                error = TransportTimeout(f"No frame within {self.read_timeout:.2f}s", partial=raw)
                self._record_transport_error(error)
                raise error
            raw = self._read_chunk(remaining)
        logger.debug(f"Received {raw!r}")

        try:
            return decode_response(raw)
        except DeviceError as e:
            self._stats.device_errors += 1
            self._stats.last_error = str(e)
            logger.warning(f"Device error: {e.payload!r}")
            raise
        except ProtocolError as e:
            self._stats.protocol_errors += 1
            self._stats.last_error = str(e)
            logger.warning(f"Protocol error: {e}")
            raise

    def _read_chunk(self, timeout: float) -> bytes:
        try:
            return self.transport.read_until(FRAME_TERMINATOR, timeout)
        except TransportTimeout as e:
            if e.partial:
                logger.warning(f"Incomplete frame before timeout: {e.partial!r}")
            self._record_transport_error(e)
            raise
        except TransportError as e:
            self._record_transport_error(e)
            raise

    def _record_transport_error(self, error: TransportError) -> None:
        self._stats.transport_errors += 1
        self._stats.last_error = str(error)
        logger.error(f"Transport error: {error}")
