"""Notification events flowing from reader pipelines to the host."""

from ptyhub.events.wire import DEFAULT_CAPACITY, EventType, PtyEvent, Wire

__all__ = [
    "DEFAULT_CAPACITY",
    "EventType",
    "PtyEvent",
    "Wire",
]
