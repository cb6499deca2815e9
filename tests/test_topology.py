"""
Topology and index layout tests
"""

import pytest

from openpowerbox.communication.errors import LayoutError, ProtocolError
from openpowerbox.communication.protocol import decode_response
from openpowerbox.models.topology import (
    ChannelClass,
    GlobalSensor,
    REVERSE_INDEX,
    SensorKind,
    Topology,
)


class TestTopologyParse:
    """Test parsing of the Z payload."""

    def test_reference_box(self):
        """'#Z:7,3,1,1,7;' is the reference 7/3/1/1/7 box."""
        topology = Topology.parse(decode_response(b"#Z:7,3,1,1,7;").value)

        assert topology.counts() == {
            ChannelClass.DC: 7,
            ChannelClass.PWM: 3,
            ChannelClass.RELAY: 1,
            ChannelClass.BANK: 1,
            ChannelClass.USB: 7,
        }
        assert topology.total == 19
        assert topology.logical_switch_count == (7 + 3 + 1) * 2 + 19 + 4 == 45

    def test_fields_taken_from_tail(self):
        """Last field is USB, then Bank, Relay, PWM, DC."""
        topology = Topology.parse("4,2,0,1,6")
        assert (topology.num_dc, topology.num_pwm, topology.num_relay,
                topology.num_bank, topology.num_usb) == (4, 2, 0, 1, 6)

    def test_parse_is_idempotent(self):
        """Same payload, identical topology."""
        assert Topology.parse("7,3,1,1,7") == Topology.parse("7,3,1,1,7")

    def test_whitespace_tolerated(self):
        """Spaces around fields are ignored."""
        assert Topology.parse(" 7, 3,1 ,1,7 ") == Topology(7, 3, 1, 1, 7)

    def test_too_few_fields(self):
        """Five counts are required."""
        with pytest.raises(ProtocolError):
            Topology.parse("7,3,1,1")

    def test_non_numeric(self):
        """Counts must be integers."""
        with pytest.raises(ProtocolError):
            Topology.parse("7,x,1,1,7")

    def test_extra_leading_fields(self):
        """Anything before the last four fields must be a single DC count."""
        with pytest.raises(ProtocolError):
            Topology.parse("1,7,3,1,1,7")

    def test_negative(self):
        """Negative counts are rejected."""
        with pytest.raises(ProtocolError):
            Topology.parse("7,-3,1,1,7")


class TestIndexLayout:
    """Test index_of against the 7/3/1/1/7 layout."""

    def test_switch_indices_in_class_order(self, topology):
        """DC, PWM, Relay, Bank, USB."""
        assert topology.index_of(ChannelClass.DC, 0) == 0
        assert topology.index_of(ChannelClass.DC, 6) == 6
        assert topology.index_of(ChannelClass.PWM, 0) == 7
        assert topology.index_of(ChannelClass.PWM, 2) == 9
        assert topology.index_of(ChannelClass.RELAY, 0) == 10
        assert topology.index_of(ChannelClass.BANK, 0) == 11
        assert topology.index_of(ChannelClass.USB, 0) == 12
        assert topology.index_of(ChannelClass.USB, 6) == 18

    def test_global_sensors(self, topology):
        """Global sensors follow the physical switches."""
        assert topology.global_sensor_index(GlobalSensor.INPUT_VOLTAGE) == 19
        assert topology.global_sensor_index(GlobalSensor.TOTAL_CURRENT) == 20
        assert topology.global_sensor_index(GlobalSensor.RESERVED_2) == 22

    def test_dc_sensor_pairs(self, topology):
        """Two slots per DC channel after the global sensors."""
        assert topology.index_of(ChannelClass.DC, 0, SensorKind.VOLTAGE) == 23
        assert topology.index_of(ChannelClass.DC, 0, SensorKind.CURRENT) == 24
        assert topology.index_of(ChannelClass.DC, 6, SensorKind.CURRENT) == 36

    def test_pwm_current(self, topology):
        """PWM current sits in the second slot of each pair."""
        assert topology.index_of(ChannelClass.PWM, 0, SensorKind.CURRENT) == 38
        assert topology.index_of(ChannelClass.PWM, 2, SensorKind.CURRENT) == 42

    def test_bank_pair_is_last(self, topology):
        """Bank pair closes the logical range."""
        assert topology.index_of(ChannelClass.BANK, 0, SensorKind.VOLTAGE) == 43
        assert topology.index_of(ChannelClass.BANK, 0, SensorKind.CURRENT) == 44
        assert topology.logical_switch_count == 45

    def test_pwm_has_no_voltage(self, topology):
        """Only current is sensed on PWM channels."""
        with pytest.raises(LayoutError):
            topology.index_of(ChannelClass.PWM, 0, SensorKind.VOLTAGE)

    @pytest.mark.parametrize("channel_class", [ChannelClass.RELAY, ChannelClass.USB])
    def test_unsensed_classes(self, topology, channel_class):
        """Relay and USB have no sensors."""
        with pytest.raises(LayoutError):
            topology.index_of(channel_class, 0, SensorKind.CURRENT)

    def test_local_index_out_of_range(self, topology):
        """Local index must be within the class count."""
        with pytest.raises(LayoutError):
            topology.index_of(ChannelClass.PWM, 3)
        with pytest.raises(LayoutError):
            topology.index_of(ChannelClass.DC, -1)

    def test_empty_class(self):
        """A class with no channels has no valid local index."""
        topology = Topology(4, 2, 0, 1, 6)
        with pytest.raises(LayoutError):
            topology.index_of(ChannelClass.RELAY, 0)
        assert topology.index_of(ChannelClass.BANK, 0) == 6

    def test_class_of(self, topology):
        """Physical index maps back to its class."""
        assert topology.class_of(0) == ChannelClass.DC
        assert topology.class_of(8) == ChannelClass.PWM
        assert topology.class_of(10) == ChannelClass.RELAY
        assert topology.class_of(11) == ChannelClass.BANK
        assert topology.class_of(18) == ChannelClass.USB
        with pytest.raises(LayoutError):
            topology.class_of(19)

    def test_every_logical_index_is_unique(self, topology):
        """Switches and sensor slots never collide."""
        indices = [topology.index_of(c, i) for c in ChannelClass for i in range(topology.count(c))]
        indices += [topology.global_sensor_index(s) for s in GlobalSensor]
        for c in (ChannelClass.DC, ChannelClass.BANK):
            for i in range(topology.count(c)):
                indices.append(topology.index_of(c, i, SensorKind.VOLTAGE))
                indices.append(topology.index_of(c, i, SensorKind.CURRENT))
        for i in range(topology.num_pwm):
            indices.append(topology.index_of(ChannelClass.PWM, i, SensorKind.CURRENT))

        assert len(indices) == len(set(indices))
        assert max(indices) < topology.logical_switch_count

    def test_reverse_wire_indices(self):
        """Reverse flags use the firmware's class numbering."""
        assert REVERSE_INDEX[ChannelClass.DC] == 0
        assert REVERSE_INDEX[ChannelClass.PWM] == 1
        assert REVERSE_INDEX[ChannelClass.BANK] == 2
        assert REVERSE_INDEX[ChannelClass.RELAY] == 3
        assert REVERSE_INDEX[ChannelClass.USB] == 4
