"""Append-only output buffer for PTY sessions."""

from __future__ import annotations

import asyncio
import codecs
import re
import threading


class OutputBuffer:
    """Thread-safe, append-only accumulator of a session's decoded output.

    The reader pipeline is the only writer; ``read_all()`` hands out a
    snapshot copy, so readers never see a partially applied append and
    never block on the pipeline for longer than one append.

    Bytes go through an incremental UTF-8 decoder with ``errors="replace"``:
    a multi-byte character split across two reads is reassembled, and
    invalid sequences become U+FFFD instead of failing.

    An ``asyncio.Event`` is set whenever new text arrives, allowing
    consumers to ``await`` instead of polling.  Call ``attach_loop()``
    once from the asyncio thread to enable this.
    """

    def __init__(self) -> None:
        self._chunks: list[str] = []
        self._size: int = 0  # Characters held
        self._bytes_in: int = 0  # Raw bytes fed
        self._lock = threading.Lock()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._data_event: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def attach_loop(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Attach an asyncio event loop so appends can signal waiters.

        Must be called from the asyncio thread (or pass an explicit loop).
        After this, ``wait_for_data()`` becomes usable.
        """
        self._loop = loop or asyncio.get_running_loop()
        self._data_event = asyncio.Event()

    def feed(self, data: bytes, final: bool = False) -> str:
        """Decode raw PTY bytes and append the result.

        Args:
            data: Bytes as read from the PTY master.
            final: Flush any incomplete trailing sequence (end of stream).

        Returns:
            The text that was appended (may be empty while a multi-byte
            sequence is still incomplete).
        """
        with self._lock:
            text = self._decoder.decode(data, final)
            self._bytes_in += len(data)
            if text:
                self._chunks.append(text)
                self._size += len(text)
        if text:
            self._signal()
        return text

    def append(self, text: str) -> None:
        """Append already-decoded text."""
        if not text:
            return
        with self._lock:
            self._chunks.append(text)
            self._size += len(text)
        self._signal()

    def _signal(self) -> None:
        if self._data_event is not None and self._loop is not None:
            try:
                self._loop.call_soon_threadsafe(self._data_event.set)
            except RuntimeError:
                # Loop already closed; nobody is left to wake up.
                pass

    async def wait_for_data(self, timeout: float | None = None) -> bool:
        """Wait until new data is appended (or timeout).

        Returns True if data arrived, False on timeout.
        Resets the event so the next call blocks again.
        """
        if self._data_event is None:
            await asyncio.sleep(0.05)
            return True
        try:
            await asyncio.wait_for(self._data_event.wait(), timeout=timeout)
            self._data_event.clear()
            return True
        except asyncio.TimeoutError:
            return False

    def read_all(self) -> str:
        """Snapshot of everything appended so far."""
        with self._lock:
            if len(self._chunks) > 1:
                # Compact so later snapshots stay cheap.
                self._chunks = ["".join(self._chunks)]
            return self._chunks[0] if self._chunks else ""

    def read_tail(self, n: int = 20) -> list[str]:
        """Read the last N lines."""
        lines = self.read_all().split("\n")
        return lines[-n:] if len(lines) > n else lines

    def search(self, pattern: str | re.Pattern[str]) -> re.Match[str] | None:
        """Search the whole buffer for a regex; None on no match or bad regex."""
        try:
            compiled = re.compile(pattern)
        except re.error:
            return None
        return compiled.search(self.read_all())

    def __len__(self) -> int:
        with self._lock:
            return self._size

    @property
    def bytes_received(self) -> int:
        """Total raw bytes fed from the PTY."""
        with self._lock:
            return self._bytes_in
