"""
State snapshot produced by a poll sweep, with derived metrics.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Union

from ..communication.errors import ProtocolError
from .topology import ChannelClass, GlobalSensor, SensorKind, Topology

logger = logging.getLogger(__name__)

ChannelValue = Union[bool, int, float]


def parse_bool(text: str) -> bool:
    """Leading digit of *text* as a boolean (the firmware may append detail)."""
    stripped = text.strip()
    if not stripped or not stripped[0].isdigit():
        raise ProtocolError(f"Expected boolean value, got {text!r}")
    return stripped[0] != "0"


def parse_duty(text: str) -> int:
    try:
        return int(float(text))
    except ValueError as e:
        raise ProtocolError(f"Expected duty cycle, got {text!r}") from e


def parse_float(text: str) -> float:
    try:
        return float(text)
    except ValueError as e:
        raise ProtocolError(f"Expected numeric value, got {text!r}") from e


def parse_channel_value(topology: Topology, index: int, text: str) -> ChannelValue:
    """
    Typed value of logical *index*: bool for plain switches, int duty for PWM,
    float for every sensor slot.
    """
    if topology.is_physical(index):
        if topology.class_of(index) == ChannelClass.PWM:
            return parse_duty(text)
        return parse_bool(text)
    return parse_float(text)


@dataclass
class ChannelReading:
    """Voltage/current pair of one sensed channel."""
    voltage: Optional[float] = None
    current: Optional[float] = None

    @property
    def power(self) -> Optional[float]:
        if self.voltage is None or self.current is None:
            return None
        return self.voltage * self.current


@dataclass
class StateSnapshot:
    """Device state after one poll sweep. Missing readings are None."""
    timestamp: datetime
    input_voltage: Optional[float] = None
    total_current: Optional[float] = None
    reserved: List[Optional[float]] = field(default_factory=lambda: [None, None])
    switches: Dict[int, Optional[ChannelValue]] = field(default_factory=dict)
    dc: List[ChannelReading] = field(default_factory=list)
    pwm_current: List[Optional[float]] = field(default_factory=list)
    bank: List[ChannelReading] = field(default_factory=list)
    failed_indices: List[int] = field(default_factory=list)

    @property
    def power(self) -> Optional[float]:
        """Input voltage times total current."""
        if self.input_voltage is None or self.total_current is None:
            return None
        return self.input_voltage * self.total_current

    @property
    def complete(self) -> bool:
        return not self.failed_indices


def _float_at(values: Mapping[int, str], index: int) -> Optional[float]:
    text = values.get(index)
    if text is None:
        return None
    try:
        return parse_float(text)
    except ProtocolError:
        logger.warning(f"Unparseable sensor value {text!r} at index {index}")
        return None


def build_snapshot(
    topology: Topology,
    values: Mapping[int, str],
    failed_indices: Sequence[int] = (),
    timestamp: Optional[datetime] = None,
) -> StateSnapshot:
    """Derive a StateSnapshot from cached values laid out by *topology*."""
    snapshot = StateSnapshot(
        timestamp=timestamp or datetime.now(),
        input_voltage=_float_at(values, topology.global_sensor_index(GlobalSensor.INPUT_VOLTAGE)),
        total_current=_float_at(values, topology.global_sensor_index(GlobalSensor.TOTAL_CURRENT)),
        reserved=[
            _float_at(values, topology.global_sensor_index(GlobalSensor.RESERVED_1)),
            _float_at(values, topology.global_sensor_index(GlobalSensor.RESERVED_2)),
        ],
        failed_indices=list(failed_indices),
    )

    for index in range(topology.total):
        text = values.get(index)
        if text is None:
            snapshot.switches[index] = None
            continue
        try:
            snapshot.switches[index] = parse_channel_value(topology, index, text)
        except ProtocolError:
            logger.warning(f"Unparseable switch value {text!r} at index {index}")
            snapshot.switches[index] = None

    for i in range(topology.num_dc):
        snapshot.dc.append(ChannelReading(
            voltage=_float_at(values, topology.index_of(ChannelClass.DC, i, SensorKind.VOLTAGE)),
            current=_float_at(values, topology.index_of(ChannelClass.DC, i, SensorKind.CURRENT)),
        ))
    for i in range(topology.num_pwm):
        snapshot.pwm_current.append(
            _float_at(values, topology.index_of(ChannelClass.PWM, i, SensorKind.CURRENT))
        )
    for i in range(topology.num_bank):
        snapshot.bank.append(ChannelReading(
            voltage=_float_at(values, topology.index_of(ChannelClass.BANK, i, SensorKind.VOLTAGE)),
            current=_float_at(values, topology.index_of(ChannelClass.BANK, i, SensorKind.CURRENT)),
        ))

    return snapshot
