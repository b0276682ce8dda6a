"""ptyhub — concurrent child processes on pseudo-terminals, driven by a host."""

from ptyhub.errors import (
    EventQueueClosed,
    PTYError,
    PTYWriteError,
    SessionNotFoundError,
    TransportError,
)
from ptyhub.events import EventType, PtyEvent, Wire
from ptyhub.pty import PTYManager, SessionStatus

__version__ = "0.1.0"

__all__ = [
    "EventQueueClosed",
    "EventType",
    "PTYError",
    "PTYManager",
    "PTYWriteError",
    "PtyEvent",
    "SessionNotFoundError",
    "SessionStatus",
    "TransportError",
    "Wire",
]
