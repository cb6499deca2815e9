"""
Channel topology and index layout.

The device reports how many channels of each class it has; those five counts
fix every index used on the wire for the lifetime of a connection:

    0 .. total-1                 physical switches (DC, PWM, Relay, Bank, USB)
    total .. total+3             global sensors (input V, total A, 2 reserved)
    then per DC channel          voltage, current
    then per PWM channel         placeholder, current
    then per Bank channel        voltage, current

All offset arithmetic lives in ``Topology.index_of``.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, Iterator, Tuple

from ..communication.errors import LayoutError, ProtocolError


class ChannelClass(Enum):
    """Output classes, in physical index order."""
    DC = "dc"
    PWM = "pwm"
    RELAY = "relay"
    BANK = "bank"
    USB = "usb"


CLASS_ORDER: Tuple[ChannelClass, ...] = (
    ChannelClass.DC,
    ChannelClass.PWM,
    ChannelClass.RELAY,
    ChannelClass.BANK,
    ChannelClass.USB,
)

# Wire index used by the R/r commands
REVERSE_INDEX: Dict[ChannelClass, int] = {
    ChannelClass.DC: 0,
    ChannelClass.PWM: 1,
    ChannelClass.BANK: 2,
    ChannelClass.RELAY: 3,
    ChannelClass.USB: 4,
}


class SensorKind(Enum):
    SWITCH = "switch"
    VOLTAGE = "voltage"
    CURRENT = "current"


class GlobalSensor(IntEnum):
    """Offsets of the global sensors from ``total``."""
    INPUT_VOLTAGE = 0
    TOTAL_CURRENT = 1
    RESERVED_1 = 2
    RESERVED_2 = 3


class LimitKind(IntEnum):
    """Wire index used by the L/l commands."""
    DC_INDIVIDUAL = 0
    PWM_INDIVIDUAL = 1
    BANK = 2
    DC_TOTAL = 3
    PWM_TOTAL = 4
    GLOBAL = 5


GLOBAL_SENSOR_COUNT = len(GlobalSensor)

# Classes with a voltage/current sensor pair per channel, in layout order
_SENSED_CLASSES = (ChannelClass.DC, ChannelClass.PWM, ChannelClass.BANK)


@dataclass(frozen=True)
class Topology:
    """Channel counts per class, as reported by the ``Z`` command."""
    num_dc: int = 0
    num_pwm: int = 0
    num_relay: int = 0
    num_bank: int = 0
    num_usb: int = 0

    @classmethod
    def parse(cls, payload: str) -> "Topology":
        """
        Parse a ``Z`` payload such as ``"7,3,1,1,7"``.

        Fields are taken from the tail: USB, Bank, Relay, PWM, and whatever
        remains in front is the DC count.

        Raises:
            ProtocolError: fewer than five fields, non-numeric or negative counts
        """
        fields = [f.strip() for f in payload.strip().split(",")]
        if len(fields) < 5:
            raise ProtocolError(f"Topology needs 5 counts, got {payload!r}")

        tail = fields[-4:]
        head = ",".join(fields[:-4])
        try:
            num_usb = int(tail[3])
            num_bank = int(tail[2])
            num_relay = int(tail[1])
            num_pwm = int(tail[0])
            num_dc = int(head)
        except ValueError as e:
            raise ProtocolError(f"Non-numeric topology count in {payload!r}") from e

        topology = cls(num_dc, num_pwm, num_relay, num_bank, num_usb)
        if min(topology.counts().values()) < 0:
            raise ProtocolError(f"Negative topology count in {payload!r}")
        return topology

    def count(self, channel_class: ChannelClass) -> int:
        return {
            ChannelClass.DC: self.num_dc,
            ChannelClass.PWM: self.num_pwm,
            ChannelClass.RELAY: self.num_relay,
            ChannelClass.BANK: self.num_bank,
            ChannelClass.USB: self.num_usb,
        }[channel_class]

    def counts(self) -> Dict[ChannelClass, int]:
        return {c: self.count(c) for c in CLASS_ORDER}

    @property
    def total(self) -> int:
        """Number of physical switches."""
        return self.num_dc + self.num_pwm + self.num_relay + self.num_bank + self.num_usb

    @property
    def logical_switch_count(self) -> int:
        """Number of indices read by one poll sweep."""
        return (self.num_dc + self.num_pwm + self.num_bank) * 2 + self.total + GLOBAL_SENSOR_COUNT

    def class_offset(self, channel_class: ChannelClass) -> int:
        """First physical index of *channel_class*."""
        offset = 0
        for c in CLASS_ORDER:
            if c == channel_class:
                return offset
            offset += self.count(c)
        raise LayoutError(f"Unknown channel class {channel_class!r}")

    def _sensor_offset(self, channel_class: ChannelClass) -> int:
        offset = self.total + GLOBAL_SENSOR_COUNT
        for c in _SENSED_CLASSES:
            if c == channel_class:
                return offset
            offset += 2 * self.count(c)
        raise LayoutError(f"{channel_class.name} channels have no sensors")

    def index_of(
        self,
        channel_class: ChannelClass,
        local_index: int,
        kind: SensorKind = SensorKind.SWITCH,
    ) -> int:
        """
        Flat wire index of a channel's switch or sensor.

        Args:
            channel_class: Output class
            local_index: 0-based channel number within the class
            kind: SWITCH, VOLTAGE or CURRENT

        Raises:
            LayoutError: local index out of range, or a sensor the class lacks
        """
        count = self.count(channel_class)
        if not 0 <= local_index < count:
            raise LayoutError(
                f"{channel_class.name} channel {local_index} out of range (0..{count - 1})"
            )

        if kind == SensorKind.SWITCH:
            return self.class_offset(channel_class) + local_index

        if channel_class not in _SENSED_CLASSES:
            raise LayoutError(f"{channel_class.name} channels have no {kind.value} sensor")
        if channel_class == ChannelClass.PWM and kind == SensorKind.VOLTAGE:
            raise LayoutError("PWM channels only sense current")

        base = self._sensor_offset(channel_class) + 2 * local_index
        return base if kind == SensorKind.VOLTAGE else base + 1

    def global_sensor_index(self, sensor: GlobalSensor) -> int:
        return self.total + int(sensor)

    def class_of(self, index: int) -> ChannelClass:
        """Class owning physical switch *index*."""
        if not 0 <= index < self.total:
            raise LayoutError(f"Index {index} is not a physical switch (0..{self.total - 1})")
        offset = 0
        for c in CLASS_ORDER:
            offset += self.count(c)
            if index < offset:
                return c
        raise LayoutError(f"Index {index} is not a physical switch")

    def is_physical(self, index: int) -> bool:
        return 0 <= index < self.total

    def switch_indices(self, channel_class: ChannelClass) -> Iterator[int]:
        start = self.class_offset(channel_class)
        return iter(range(start, start + self.count(channel_class)))

    def __str__(self) -> str:
        return (f"DC={self.num_dc} PWM={self.num_pwm} Relay={self.num_relay} "
                f"Bank={self.num_bank} USB={self.num_usb}")
