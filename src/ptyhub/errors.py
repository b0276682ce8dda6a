"""Error family for the PTY session manager.

Hosts can catch ``PTYError`` alone; the subclasses only exist so that
tests and richer hosts can tell the failure categories apart.
"""

from __future__ import annotations


class PTYError(Exception):
    """Base error. ``str(err)`` is a human-readable cause."""


class TransportError(PTYError):
    """PTY allocation, child spawn or handle acquisition failed."""


class SessionNotFoundError(PTYError):
    """An operation referenced an unknown (or removed) session id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"No session found with ID: {session_id}")
        self.session_id = session_id


class PTYWriteError(PTYError):
    """Writing to a live session failed at the OS level."""


class EventQueueClosed(PTYError):
    """Raised to producers once the consumer side of the wire is gone."""
