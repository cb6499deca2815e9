"""
Controllers Package

Command dispatch, session serialization, the caller-facing controller and
the poll scheduler. The optional Qt adapter lives in ``qt_bridge`` and is
imported explicitly because it needs PyQt6.
"""

from .dispatcher import AckPolicy, Acknowledgment, CommandDispatcher, DispatchStats
from .session_worker import SessionClosedError, SessionWorker
from .events import EventSink, LoggingEventSink, NullEventSink
from .device_controller import PowerBoxController
from .poll_manager import PollManager, PollState, PollStats

__all__ = [
    'AckPolicy',
    'Acknowledgment',
    'CommandDispatcher',
    'DispatchStats',
    'SessionClosedError',
    'SessionWorker',
    'EventSink',
    'LoggingEventSink',
    'NullEventSink',
    'PowerBoxController',
    'PollManager',
    'PollState',
    'PollStats',
]
