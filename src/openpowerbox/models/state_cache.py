"""
Device State Cache

Last-known device state, keyed by wire index and stored as the text the
protocol carries. Four stores share one lock:

- VALUE    switch states, duty cycles and sensor readings (logical indices)
- NAME     channel names (physical indices)
- REVERSE  reverse-polarity flag per class (reverse wire index 0..4)
- LIMIT    current limits (limit wire index 0..5)

The dispatcher writes speculatively before a set command is sent and restores
the previous entry if the device does not confirm it. Nothing is readable
until a topology has been installed.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from ..communication.errors import LayoutError
from .topology import LimitKind, REVERSE_INDEX, Topology

logger = logging.getLogger(__name__)


class CacheField(Enum):
    """Which store an entry lives in."""
    VALUE = "value"
    NAME = "name"
    REVERSE = "reverse"
    LIMIT = "limit"


@dataclass(frozen=True)
class WifiInfo:
    ip: str
    ssid: str


class DeviceStateCache:
    """Thread-safe store of last-known device state."""

    def __init__(self):
        self._lock = threading.RLock()
        self._topology: Optional[Topology] = None
        self._stores: Dict[CacheField, Dict[int, str]] = {f: {} for f in CacheField}
        self._wifi: Optional[WifiInfo] = None

    @property
    def topology(self) -> Optional[Topology]:
        with self._lock:
            return self._topology

    def install(self, topology: Topology) -> None:
        """Fix the layout for a new connection and drop any previous state."""
        with self._lock:
            self._topology = topology
            for store in self._stores.values():
                store.clear()
            self._wifi = None
        logger.debug(f"Cache installed for topology {topology}")

    def clear(self) -> None:
        """Forget topology and all state (on disconnect)."""
        with self._lock:
            self._topology = None
            for store in self._stores.values():
                store.clear()
            self._wifi = None

    def _width(self, field: CacheField) -> int:
        if self._topology is None:
            raise LayoutError("No topology installed")
        if field == CacheField.VALUE:
            return self._topology.logical_switch_count
        if field == CacheField.NAME:
            return self._topology.total
        if field == CacheField.REVERSE:
            return len(REVERSE_INDEX)
        return len(LimitKind)

    def _check(self, field: CacheField, index: int) -> None:
        width = self._width(field)
        if not 0 <= index < width:
            raise LayoutError(f"{field.value} index {index} out of range (0..{width - 1})")

    # ------------------------------------------------------------------
    # Raw access (used by the dispatcher)
    # ------------------------------------------------------------------

    def read(self, field: CacheField, index: int) -> Optional[str]:
        """
        Last-known text at *index*, or None if never observed.

        Raises:
            LayoutError: no topology, or index outside the field's width
        """
        with self._lock:
            self._check(field, index)
            return self._stores[field].get(index)

    def write(self, field: CacheField, index: int, text: str) -> Optional[str]:
        """Store *text* and return the entry it replaced."""
        with self._lock:
            self._check(field, index)
            previous = self._stores[field].get(index)
            self._stores[field][index] = text
            return previous

    def restore(self, field: CacheField, index: int, previous: Optional[str]) -> None:
        """Put back an entry returned by ``write`` (None removes it)."""
        with self._lock:
            self._check(field, index)
            if previous is None:
                self._stores[field].pop(index, None)
            else:
                self._stores[field][index] = previous

    def values(self) -> Dict[int, str]:
        """Copy of the VALUE store."""
        with self._lock:
            return dict(self._stores[CacheField.VALUE])

    # ------------------------------------------------------------------
    # Wi-Fi
    # ------------------------------------------------------------------

    @property
    def wifi(self) -> Optional[WifiInfo]:
        with self._lock:
            return self._wifi

    def set_wifi(self, info: Optional[WifiInfo]) -> None:
        with self._lock:
            self._wifi = info
