"""Wire — the notification channel from reader pipelines to the host.

Many producers (one reader pipeline per PTY session) push lightweight
"new output for session X" events; a single host drains them at its own
pace, either by polling or by awaiting. The queue is bounded, and the
host closes it when it stops consuming.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Literal

from ptyhub.errors import EventQueueClosed

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


class EventType(enum.Enum):
    PTY_OUTPUT = "pty-output"


@dataclass(frozen=True)
class PtyEvent:
    """New output is available for ``session_id``.

    The event only says that at least the bytes read before it was sent
    are in the buffer; more may have been appended since.
    """

    type: EventType
    session_id: str

    @classmethod
    def output(cls, session_id: str) -> PtyEvent:
        return cls(type=EventType.PTY_OUTPUT, session_id=session_id)


class Wire:
    """Bounded many-producer, single-consumer event queue.

    With ``overflow="block"`` a producer suspends in ``put()`` while the
    queue is full. With ``overflow="drop"`` it never suspends: the event
    is discarded, counted in ``dropped`` and logged.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        overflow: Literal["block", "drop"] = "block",
    ) -> None:
        if capacity < 1:
            raise ValueError("Wire capacity must be at least 1")
        self._queue: asyncio.Queue[PtyEvent] = asyncio.Queue(maxsize=capacity)
        self._overflow = overflow
        self._closed = asyncio.Event()
        self._dropped = 0

    async def put(self, event: PtyEvent) -> None:
        """Enqueue an event.

        Raises:
            EventQueueClosed: The consumer closed the wire, before or
                while the producer was waiting for space.
        """
        if self._closed.is_set():
            raise EventQueueClosed("Event queue closed")

        if self._overflow == "drop":
            try:
                self._queue.put_nowait(event)
            except asyncio.QueueFull:
                self._dropped += 1
                logger.warning(
                    "Event queue full, dropped %s for session %s (%d dropped)",
                    event.type.value,
                    event.session_id,
                    self._dropped,
                )
            return

        if not self._queue.full():
            self._queue.put_nowait(event)
            return

        # Full: wait for space or for the consumer to go away
        put_task = asyncio.ensure_future(self._queue.put(event))
        closed_task = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait(
                {put_task, closed_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            closed_task.cancel()
            if not put_task.done():
                put_task.cancel()
        if not put_task.done() or put_task.cancelled():
            raise EventQueueClosed("Event queue closed")

    def poll(self) -> PtyEvent | None:
        """Dequeue without waiting. Returns None when nothing is pending."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def get(self, timeout: float | None = None) -> PtyEvent | None:
        """Wait for the next event.

        Returns None once the wire is closed, or when ``timeout`` elapses.
        """
        if self._closed.is_set():
            return None

        get_task = asyncio.ensure_future(self._queue.get())
        closed_task = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait(
                {get_task, closed_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            closed_task.cancel()
            if not get_task.done():
                get_task.cancel()
        if get_task.done() and not get_task.cancelled():
            return get_task.result()
        return None

    def close(self) -> None:
        """Close the consumer side. Idempotent.

        Blocked producers wake up with ``EventQueueClosed``; a consumer
        blocked in ``get()`` wakes up with None.
        """
        if not self._closed.is_set():
            logger.debug("Event queue closed (%d pending)", self._queue.qsize())
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def dropped(self) -> int:
        """Events discarded because the queue was full (drop mode only)."""
        return self._dropped

    @property
    def capacity(self) -> int:
        return self._queue.maxsize

    def qsize(self) -> int:
        return self._queue.qsize()
