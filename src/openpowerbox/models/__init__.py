"""
Models Package

Topology and index layout, the device state cache and poll snapshots.
"""

from .topology import ChannelClass, GlobalSensor, LimitKind, SensorKind, Topology
from .state_cache import CacheField, DeviceStateCache, WifiInfo
from .snapshot import ChannelReading, StateSnapshot, build_snapshot

__all__ = [
    'ChannelClass',
    'GlobalSensor',
    'LimitKind',
    'SensorKind',
    'Topology',
    'CacheField',
    'DeviceStateCache',
    'WifiInfo',
    'ChannelReading',
    'StateSnapshot',
    'build_snapshot',
]
