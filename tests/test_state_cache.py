"""
Device state cache and snapshot tests
"""

from datetime import datetime

import pytest

from openpowerbox.communication.errors import LayoutError, ProtocolError
from openpowerbox.models.snapshot import (
    build_snapshot, parse_bool, parse_channel_value, parse_duty, parse_float,
)
from openpowerbox.models.state_cache import CacheField, DeviceStateCache, WifiInfo
from openpowerbox.models.topology import ChannelClass, SensorKind, Topology


class TestDeviceStateCache:
    """Test the cache stores."""

    def test_read_before_topology(self):
        """Nothing is readable before a layout exists."""
        cache = DeviceStateCache()
        with pytest.raises(LayoutError):
            cache.read(CacheField.VALUE, 0)

    def test_unobserved_index_is_none(self, cache):
        """Values appear lazily."""
        assert cache.read(CacheField.VALUE, 3) is None

    def test_write_returns_previous(self, cache):
        """write() hands back the replaced entry for rollback."""
        assert cache.write(CacheField.VALUE, 3, "1") is None
        assert cache.write(CacheField.VALUE, 3, "0") == "1"

    def test_restore(self, cache):
        """restore() puts back or removes an entry."""
        cache.write(CacheField.VALUE, 3, "1")
        previous = cache.write(CacheField.VALUE, 3, "0")
        cache.restore(CacheField.VALUE, 3, previous)
        assert cache.read(CacheField.VALUE, 3) == "1"

        previous = cache.write(CacheField.VALUE, 4, "1")
        cache.restore(CacheField.VALUE, 4, previous)
        assert cache.read(CacheField.VALUE, 4) is None

    def test_widths(self, cache):
        """Each store is bounded by its own width."""
        cache.write(CacheField.VALUE, 44, "1.0")
        with pytest.raises(LayoutError):
            cache.write(CacheField.VALUE, 45, "1.0")

        cache.write(CacheField.NAME, 18, "USB 7")
        with pytest.raises(LayoutError):
            cache.write(CacheField.NAME, 19, "Sensor")

        cache.write(CacheField.REVERSE, 4, "0")
        with pytest.raises(LayoutError):
            cache.read(CacheField.REVERSE, 5)

        cache.write(CacheField.LIMIT, 5, "25.00")
        with pytest.raises(LayoutError):
            cache.read(CacheField.LIMIT, 6)

    def test_install_clears_state(self, cache, topology):
        """A new topology starts from an empty cache."""
        cache.write(CacheField.VALUE, 1, "1")
        cache.set_wifi(WifiInfo("10.0.0.2", "obs"))
        cache.install(topology)
        assert cache.values() == {}
        assert cache.wifi is None

    def test_clear_forgets_topology(self, cache):
        """Disconnect drops the layout too."""
        cache.clear()
        assert cache.topology is None
        with pytest.raises(LayoutError):
            cache.read(CacheField.NAME, 0)


class TestChannelValueParsing:
    """Test typed interpretation of cached text."""

    def test_switch_bool(self, topology):
        """Plain switches are booleans."""
        assert parse_channel_value(topology, 0, "1") is True
        assert parse_channel_value(topology, 12, "0") is False

    def test_pwm_duty(self, topology):
        """PWM outputs are duty cycles."""
        assert parse_channel_value(topology, 7, "40") == 40

    def test_sensor_float(self, topology):
        """Sensor slots are floats."""
        assert parse_channel_value(topology, 19, "12.00") == pytest.approx(12.0)

    def test_bool_leading_digit(self):
        """Only the leading digit counts."""
        assert parse_bool("0.000") is False
        assert parse_bool("10") is True
        with pytest.raises(ProtocolError):
            parse_bool("on")

    def test_numeric_parsers(self):
        assert parse_duty("40.0") == 40
        assert parse_float("5.25") == pytest.approx(5.25)
        with pytest.raises(ProtocolError):
            parse_duty("high")
        with pytest.raises(ProtocolError):
            parse_float("abc")


class TestSnapshot:
    """Test snapshot derivation."""

    def test_power_derivation(self, topology):
        """12.00 V at 2.50 A is 30.00 W."""
        snapshot = build_snapshot(topology, {19: "12.00", 20: "2.50"})
        assert snapshot.input_voltage == pytest.approx(12.0)
        assert snapshot.total_current == pytest.approx(2.5)
        assert snapshot.power == pytest.approx(30.0)

    def test_power_missing_when_reading_missing(self, topology):
        """No current reading, no power."""
        snapshot = build_snapshot(topology, {19: "12.00"})
        assert snapshot.power is None

    def test_channel_readings(self, topology):
        """Per-channel sensors are grouped by class."""
        values = {
            topology.index_of(ChannelClass.DC, 1, SensorKind.VOLTAGE): "11.9",
            topology.index_of(ChannelClass.DC, 1, SensorKind.CURRENT): "0.75",
            topology.index_of(ChannelClass.PWM, 2, SensorKind.CURRENT): "1.2",
            topology.index_of(ChannelClass.BANK, 0, SensorKind.VOLTAGE): "12.1",
            topology.index_of(ChannelClass.BANK, 0, SensorKind.CURRENT): "3.0",
            0: "1",
            7: "55",
        }
        snapshot = build_snapshot(topology, values, failed_indices=[4], timestamp=datetime(2025, 1, 1))

        assert len(snapshot.dc) == 7
        assert snapshot.dc[1].voltage == pytest.approx(11.9)
        assert snapshot.dc[1].power == pytest.approx(11.9 * 0.75)
        assert snapshot.dc[0].voltage is None
        assert snapshot.pwm_current == [None, None, pytest.approx(1.2)]
        assert snapshot.bank[0].current == pytest.approx(3.0)
        assert snapshot.switches[0] is True
        assert snapshot.switches[7] == 55
        assert snapshot.switches[1] is None
        assert snapshot.failed_indices == [4]
        assert not snapshot.complete

    def test_garbage_value_reads_as_missing(self, topology):
        """Unparseable cached text does not break the snapshot."""
        snapshot = build_snapshot(topology, {19: "n/a", 0: "x"})
        assert snapshot.input_voltage is None
        assert snapshot.switches[0] is None

    def test_topology_without_bank(self):
        """Empty classes produce empty lists."""
        topology = Topology(2, 0, 0, 0, 1)
        snapshot = build_snapshot(topology, {})
        assert snapshot.bank == []
        assert snapshot.pwm_current == []
        assert len(snapshot.switches) == 3
