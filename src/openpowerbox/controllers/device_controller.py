"""
Device Controller for Open Power Box

Caller-facing session object. Owns the transport, the state cache, the
command dispatcher and the session worker that serializes every exchange.

Usage:
    controller = PowerBoxController(SerialTransport("/dev/ttyUSB0"))
    topology = controller.connect()
    controller.set_power_port(0, True)
    snapshot = controller.poll_once()
    controller.disconnect()
"""

import logging
import threading
import time
from typing import Callable, List, Optional, Set, TypeVar, Union

from ..communication.errors import (
    LayoutError, NotConnectedError, PowerBoxError, ProtocolError, TransportError,
)
from ..communication.protocol import FrameBuilder, RequestFrame
from ..communication.transport_base import Transport
from ..models.snapshot import (
    ChannelValue, StateSnapshot, build_snapshot, parse_bool, parse_channel_value, parse_float,
)
from ..models.state_cache import CacheField, DeviceStateCache, WifiInfo
from ..models.topology import (
    ChannelClass, LimitKind, REVERSE_INDEX, SensorKind, Topology,
)
from .dispatcher import (
    Acknowledgment, AckPolicy, CommandDispatcher, DEFAULT_COMMAND_DELAY, DEFAULT_READ_TIMEOUT,
    DispatchStats,
)
from .events import EventSink, NullEventSink
from .session_worker import SessionWorker

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_WIFI_APPLY_DELAY = 5.0
MAX_DUTY = 100

# Classes the firmware lets the host name
NAMED_CLASSES = (ChannelClass.DC, ChannelClass.PWM)
# Classes with a master switch
GROUP_CLASSES = (ChannelClass.DC, ChannelClass.PWM)


class PowerBoxController:
    """Controller for one Open Power Box connection."""

    def __init__(
        self,
        transport: Optional[Transport] = None,
        event_sink: Optional[EventSink] = None,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        command_delay: float = DEFAULT_COMMAND_DELAY,
        ack_policy: AckPolicy = AckPolicy.STRICT,
        wifi_apply_delay: float = DEFAULT_WIFI_APPLY_DELAY,
    ):
        self._transport = transport
        self._events: EventSink = event_sink or NullEventSink()
        self._cache = DeviceStateCache()
        self._read_timeout = read_timeout
        self._command_delay = command_delay
        self._ack_policy = ack_policy
        self.wifi_apply_delay = wifi_apply_delay

        self._dispatcher: Optional[CommandDispatcher] = None
        self._worker: Optional[SessionWorker] = None
        self._connection_lock = threading.Lock()
        self._is_connected = False

        self._already_initialized = False
        self._last_topology: Optional[Topology] = None
        self._blocked_groups: Set[ChannelClass] = set()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    def is_connected(self) -> bool:
        """Check if a device session is open."""
        return self._is_connected

    @property
    def already_initialized(self) -> bool:
        """True once a topology has been discovered in this controller's lifetime."""
        return self._already_initialized

    @property
    def topology(self) -> Optional[Topology]:
        return self._cache.topology

    @property
    def cache(self) -> DeviceStateCache:
        return self._cache

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    @property
    def stats(self) -> Optional[DispatchStats]:
        return self._dispatcher.stats if self._dispatcher else None

    @property
    def event_sink(self) -> EventSink:
        return self._events

    def set_event_sink(self, sink: Optional[EventSink]) -> None:
        self._events = sink or NullEventSink()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self, transport: Optional[Transport] = None) -> Topology:
        """
        Open the transport, discover the topology and fetch names, limits and
        reverse flags.

        Args:
            transport: Transport to use instead of the one given at construction

        Returns:
            The discovered Topology

        Raises:
            TransportError: link could not be opened or topology read timed out
            ProtocolError / DeviceError: topology response unusable
        """
        with self._connection_lock:
            if transport is not None:
                if self._is_connected:
                    raise PowerBoxError("Disconnect before switching transport")
                self._transport = transport
            if self._is_connected:
                return self._cache.topology
            if self._transport is None:
                raise NotConnectedError("No transport configured")

            self._dispatcher = CommandDispatcher(
                self._transport,
                self._cache,
                read_timeout=self._read_timeout,
                command_delay=self._command_delay,
                ack_policy=self._ack_policy,
            )
            self._worker = SessionWorker()
            self._worker.start()

            try:
                topology = self._worker.call(self._open_session)
            except Exception as e:
                logger.error(f"Connection failed: {e}")
                self._worker.call(self._transport.close)
                self._worker.stop()
                self._worker = None
                self._cache.clear()
                self._events.on_error(f"Connection failed: {e}", e)
                raise

            self._is_connected = True

        first_time = not self._already_initialized
        self._already_initialized = True
        if self._last_topology is not None and self._last_topology != topology:
            logger.warning(f"Topology changed since last connection: {self._last_topology} -> {topology}")
        self._last_topology = topology

        logger.info(f"Connected via {self._transport.transport_type}: {topology}")
        self._events.on_connected(topology, first_time)
        return topology

    def _open_session(self) -> Topology:
        self._transport.open()
        self._cache.clear()
        topology = self._discover()
        self._refresh_settings()
        return topology

    def disconnect(self) -> None:
        """Close the session; cached state is discarded."""
        with self._connection_lock:
            if not self._is_connected:
                return
            self._is_connected = False
            worker = self._worker
            self._worker = None
            try:
                worker.call(self._transport.close)
            except TransportError as e:
                logger.error(f"Error disconnecting: {e}")
            worker.stop()
            self._cache.clear()
            self._blocked_groups.clear()

        logger.info("Disconnected from device")
        self._events.on_disconnected()

    def _require_connected(self) -> SessionWorker:
        worker = self._worker
        if not self._is_connected or worker is None:
            raise NotConnectedError("Not connected to a power box")
        return worker

    def _run(self, fn: Callable[..., T], *args) -> T:
        """Run *fn* inside the device session."""
        return self._require_connected().call(fn, *args)

    def _execute(self, frame: RequestFrame) -> Optional[Acknowledgment]:
        return self._run(self._dispatcher.execute_frame, frame)

    # ------------------------------------------------------------------
    # Topology
    # ------------------------------------------------------------------

    def discover_topology(self) -> Topology:
        """
        Re-read the topology on the open connection.

        Raises:
            ProtocolError: device now reports a different topology (reconnect required)
        """
        return self._run(self._discover)

    def _discover(self) -> Topology:
        ack = self._dispatcher.execute_frame(FrameBuilder.get_topology())
        if ack is None:
            raise ProtocolError("No topology in response to Z")
        topology = Topology.parse(ack.value)

        current = self._cache.topology
        if current is None:
            self._cache.install(topology)
            logger.info(f"Discovered topology {topology}: {topology.total} switches, "
                        f"{topology.logical_switch_count} logical indices")
        elif current != topology:
            raise ProtocolError(
                f"Topology changed mid-connection ({current} -> {topology}); reconnect required"
            )
        return topology

    def _layout(self) -> Topology:
        topology = self._cache.topology
        if topology is None:
            raise NotConnectedError("No topology discovered")
        return topology

    # ------------------------------------------------------------------
    # Switches
    # ------------------------------------------------------------------

    def set_channel(self, index: int, value: Union[bool, int]) -> bool:
        """
        Set a switch (bool) or PWM duty cycle (0-100).

        Returns:
            True if the device confirmed the value, False if the response was
            dropped or the channel's group is disabled

        Raises:
            LayoutError: index is not a physical switch
            ValueError: duty cycle out of range
            AcknowledgmentMismatch: device reports a different value (cache rolled back)
        """
        self._layout().class_of(index)
        confirmed = self._run(self._guarded_set, index, value)
        if confirmed:
            self._events.on_channel_changed(index, self.cached_channel(index))
        return confirmed

    def _guarded_set(self, index: int, value: Union[bool, int]) -> bool:
        # Block check and write share one session task so a concurrent
        # master switch-off cannot slip between them
        channel_class = self._layout().class_of(index)
        if channel_class in self._blocked_groups:
            logger.warning(f"{channel_class.name} outputs are disabled; ignoring set on index {index}")
            return False
        return self._write_channel(index, value)

    def _write_channel(self, index: int, value: Union[bool, int]) -> bool:
        channel_class = self._layout().class_of(index)
        if channel_class == ChannelClass.PWM:
            duty = int(value)
            if not 0 <= duty <= MAX_DUTY:
                raise ValueError(f"Duty cycle {duty} out of range (0..{MAX_DUTY})")
            wire_value: Union[bool, int] = duty
        else:
            wire_value = bool(value)

        return self._dispatcher.execute_frame(FrameBuilder.set_switch(index, wire_value)) is not None

    def get_channel(self, index: int) -> Optional[ChannelValue]:
        """
        Read a switch or sensor from the device.

        Returns:
            bool for plain switches, int duty for PWM, float for sensors;
            None if the response was dropped
        """
        topology = self._layout()
        ack = self._execute(FrameBuilder.get_switch(index))
        if ack is None:
            return None
        return parse_channel_value(topology, index, ack.value)

    def cached_channel(self, index: int) -> Optional[ChannelValue]:
        """Last-known value of *index* without talking to the device."""
        topology = self._layout()
        text = self._cache.read(CacheField.VALUE, index)
        if text is None:
            return None
        return parse_channel_value(topology, index, text)

    # ------------------------------------------------------------------
    # Convenience setters
    # ------------------------------------------------------------------

    def set_power_port(self, port: int, enabled: bool) -> bool:
        return self.set_channel(self._layout().index_of(ChannelClass.DC, port), enabled)

    def set_dew_port(self, port: int, enabled: bool, duty_cycle: int = MAX_DUTY) -> bool:
        """Drive a PWM output at *duty_cycle* when enabled, 0 otherwise."""
        index = self._layout().index_of(ChannelClass.PWM, port)
        return self.set_channel(index, duty_cycle if enabled else 0)

    def set_usb_port(self, port: int, enabled: bool) -> bool:
        return self.set_channel(self._layout().index_of(ChannelClass.USB, port), enabled)

    def set_relay(self, enabled: bool, port: int = 0) -> bool:
        return self.set_channel(self._layout().index_of(ChannelClass.RELAY, port), enabled)

    def set_bank(self, enabled: bool, port: int = 0) -> bool:
        return self.set_channel(self._layout().index_of(ChannelClass.BANK, port), enabled)

    def read_sensor(self, channel_class: ChannelClass, port: int, kind: SensorKind) -> Optional[float]:
        index = self._layout().index_of(channel_class, port, kind)
        value = self.get_channel(index)
        return None if value is None else float(value)

    # ------------------------------------------------------------------
    # Group master switches
    # ------------------------------------------------------------------

    def is_group_enabled(self, channel_class: ChannelClass) -> bool:
        return channel_class not in self._blocked_groups

    def set_group_enabled(self, channel_class: ChannelClass, enabled: bool) -> bool:
        """
        Master switch for all DC or all PWM outputs.

        Disabling drives every channel of the class to 0 and blocks later
        ``set_channel`` calls on it. Enabling only lifts the block.

        Returns:
            True if every channel confirmed (always True when enabling)
        """
        if channel_class not in GROUP_CLASSES:
            raise LayoutError(f"{channel_class.name} outputs have no master switch")
        topology = self._layout()

        if enabled:
            self._run(self._blocked_groups.discard, channel_class)
            logger.info(f"{channel_class.name} outputs enabled")
            return True

        confirmed = self._run(self._switch_group_off, topology, channel_class)
        for index in confirmed:
            self._events.on_channel_changed(index, self.cached_channel(index))
        return len(confirmed) == topology.count(channel_class)

    def _switch_group_off(self, topology: Topology, channel_class: ChannelClass) -> List[int]:
        """Block the class and drive each of its channels to 0. Returns the confirmed indices."""
        self._blocked_groups.add(channel_class)
        logger.info(f"{channel_class.name} outputs disabled")
        confirmed = []
        for index in topology.switch_indices(channel_class):
            try:
                if self._write_channel(index, 0):
                    confirmed.append(index)
            except PowerBoxError as e:
                logger.error(f"Failed to switch off index {index}: {e}")
        return confirmed

    # ------------------------------------------------------------------
    # Names
    # ------------------------------------------------------------------

    def set_name(self, index: int, name: str) -> bool:
        """Rename physical channel *index* (stored on the device)."""
        self._layout()
        return self._execute(FrameBuilder.set_name(index, name)) is not None

    def get_name(self, index: int) -> Optional[str]:
        self._layout()
        ack = self._execute(FrameBuilder.get_name(index))
        return None if ack is None else ack.value

    def cached_name(self, index: int) -> Optional[str]:
        return self._cache.read(CacheField.NAME, index)

    # ------------------------------------------------------------------
    # Reverse polarity
    # ------------------------------------------------------------------

    def set_class_reverse(self, channel_class: ChannelClass, reversed_: bool) -> bool:
        self._layout()
        frame = FrameBuilder.set_reverse(REVERSE_INDEX[channel_class], reversed_)
        return self._execute(frame) is not None

    def get_class_reverse(self, channel_class: ChannelClass) -> Optional[bool]:
        self._layout()
        ack = self._execute(FrameBuilder.get_reverse(REVERSE_INDEX[channel_class]))
        return None if ack is None else parse_bool(ack.value)

    def cached_class_reverse(self, channel_class: ChannelClass) -> Optional[bool]:
        text = self._cache.read(CacheField.REVERSE, REVERSE_INDEX[channel_class])
        return None if text is None else parse_bool(text)

    # ------------------------------------------------------------------
    # Current limits
    # ------------------------------------------------------------------

    def set_class_limit(self, kind: LimitKind, amps: float) -> bool:
        self._layout()
        return self._execute(FrameBuilder.set_limit(int(kind), amps)) is not None

    def get_class_limit(self, kind: LimitKind) -> Optional[float]:
        self._layout()
        ack = self._execute(FrameBuilder.get_limit(int(kind)))
        return None if ack is None else parse_float(ack.value)

    def cached_class_limit(self, kind: LimitKind) -> Optional[float]:
        text = self._cache.read(CacheField.LIMIT, int(kind))
        return None if text is None else parse_float(text)

    # ------------------------------------------------------------------
    # Settings fetched at connect time
    # ------------------------------------------------------------------

    def refresh_settings(self) -> List[str]:
        """Re-read names, reverse flags, limits and Wi-Fi info. Returns the failures."""
        return self._run(self._refresh_settings)

    def _refresh_settings(self) -> List[str]:
        topology = self._layout()
        frames: List[RequestFrame] = []
        for channel_class in NAMED_CLASSES:
            frames.extend(FrameBuilder.get_name(i) for i in topology.switch_indices(channel_class))
        frames.extend(FrameBuilder.get_reverse(REVERSE_INDEX[c]) for c in REVERSE_INDEX)
        frames.extend(FrameBuilder.get_limit(int(kind)) for kind in LimitKind)

        failures = []
        for frame in frames:
            try:
                if self._dispatcher.execute_frame(frame) is None:
                    failures.append(f"{frame.command.value} {frame.index}: response dropped")
            except PowerBoxError as e:
                failures.append(f"{frame.command.value} {frame.index}: {e}")
        try:
            self._read_wifi()
        except PowerBoxError as e:
            failures.append(f"wifi: {e}")
        for failure in failures:
            logger.warning(f"Settings fetch failed: {failure}")
        return failures

    # ------------------------------------------------------------------
    # Poll cycle
    # ------------------------------------------------------------------

    def poll_once(self) -> StateSnapshot:
        """Read every logical index once and derive a snapshot."""
        snapshot = self._run(self._sweep)
        self._events.on_snapshot(snapshot)
        return snapshot

    def _sweep(self) -> StateSnapshot:
        topology = self._layout()
        failed = []
        for index in range(topology.logical_switch_count):
            try:
                if self._dispatcher.execute_frame(FrameBuilder.get_switch(index)) is None:
                    failed.append(index)
            except PowerBoxError as e:
                logger.warning(f"Poll read of index {index} failed: {e}")
                failed.append(index)
        if failed:
            logger.debug(f"Poll sweep finished with {len(failed)} failed indices: {failed}")
        return build_snapshot(topology, self._cache.values(), failed)

    # ------------------------------------------------------------------
    # Wi-Fi and reboot
    # ------------------------------------------------------------------

    def get_wifi_info(self) -> WifiInfo:
        """Read the device's IP address and SSID."""
        return self._run(self._read_wifi)

    def _read_wifi(self) -> WifiInfo:
        previous = self._cache.wifi
        ip_ack = self._dispatcher.execute_frame(FrameBuilder.get_ip())
        ssid_ack = self._dispatcher.execute_frame(FrameBuilder.get_ssid())
        info = WifiInfo(
            ip=ip_ack.value if ip_ack else (previous.ip if previous else ""),
            ssid=ssid_ack.value if ssid_ack else (previous.ssid if previous else ""),
        )
        self._cache.set_wifi(info)
        return info

    def set_wifi_credentials(self, ssid: str, password: str) -> WifiInfo:
        """
        Store new Wi-Fi credentials and apply them.

        The device reboots to apply; the IP is re-read after
        ``wifi_apply_delay`` seconds.
        """
        return self._run(self._apply_wifi, ssid, password)

    def _apply_wifi(self, ssid: str, password: str) -> WifiInfo:
        ssid_ack = self._dispatcher.execute_frame(FrameBuilder.set_ssid(ssid))
        self._dispatcher.execute_frame(FrameBuilder.set_password(password))
        self._dispatcher.execute_frame(FrameBuilder.apply_settings())
        logger.info(f"Wi-Fi credentials sent for SSID {ssid!r}; waiting {self.wifi_apply_delay}s")
        time.sleep(self.wifi_apply_delay)

        ip_ack = self._dispatcher.execute_frame(FrameBuilder.get_ip())
        info = WifiInfo(
            ip=ip_ack.value if ip_ack else "",
            ssid=ssid_ack.value if ssid_ack else ssid,
        )
        self._cache.set_wifi(info)
        return info

    def reboot(self) -> None:
        """Ask the device to restart. No response is expected."""
        self._execute(FrameBuilder.apply_settings())
        logger.info("Reboot requested")
