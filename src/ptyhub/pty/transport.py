"""Pseudo-terminal transport — OS-level PTY allocation and child spawning.

``NativePtyTransport.open()`` allocates a master/slave pair with a fixed
geometry; ``PtyPair.spawn()`` starts a child on the slave side. The
master side is then handed out twice: a duplicated descriptor for the
reader pipeline (``clone_reader()``) and the master itself wrapped in a
``PtyWriter`` (``take_writer()``), which can only be taken once.
"""

from __future__ import annotations

import errno
import fcntl
import logging
import os
import pty
import struct
import subprocess
import termios
import threading
from dataclasses import dataclass, field
from typing import Protocol, Sequence, runtime_checkable

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ptyhub.errors import PTYWriteError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_ROWS = 24
DEFAULT_COLS = 80


@dataclass(frozen=True)
class PtySize:
    rows: int = DEFAULT_ROWS
    cols: int = DEFAULT_COLS


class PtyWriter:
    """Exclusive write handle on a PTY master.

    Owns the master descriptor. ``write_all()`` loops over partial writes
    and is serialized by a per-writer lock, so concurrent writers on the
    same session never interleave within one payload.
    """

    def __init__(self, fd: int) -> None:
        self._fd = fd
        self._lock = threading.Lock()
        self._closed = False

    def write_all(self, data: bytes) -> int:
        """Write every byte of ``data``. Returns the number of bytes written.

        Raises:
            PTYWriteError: The OS rejected the write or the writer is closed.
        """
        view = memoryview(data)
        with self._lock:
            if self._closed:
                raise PTYWriteError("PTY writer is closed")
            total = 0
            while total < len(view):
                try:
                    n = os.write(self._fd, view[total:])
                except OSError as e:
                    raise PTYWriteError(f"Write to PTY failed: {e}") from e
                if n == 0:
                    raise PTYWriteError(
                        f"PTY accepted 0 bytes ({total}/{len(view)} written)"
                    )
                total += n
            return total

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                os.close(self._fd)
            except OSError:
                logger.debug("PTY master fd %d already closed", self._fd)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def fd(self) -> int:
        return self._fd


@dataclass
class PtyPair:
    """An allocated master/slave pair, optionally with a child attached."""

    master_fd: int
    slave_fd: int
    size: PtySize = field(default_factory=PtySize)
    process: subprocess.Popen[bytes] | None = None
    _writer_taken: bool = field(default=False, init=False)

    def spawn(
        self,
        command: str,
        args: Sequence[str] = (),
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ) -> subprocess.Popen[bytes]:
        """Start ``command`` on the slave side in its own process group.

        The parent's copy of the slave descriptor is closed afterwards,
        whether or not the spawn succeeded.
        """
        try:
            self.process = _popen(
                [command, *args],
                stdin=self.slave_fd,
                stdout=self.slave_fd,
                stderr=self.slave_fd,
                start_new_session=True,  # Own process group for killpg
                env=env,
                cwd=cwd,
            )
        except (OSError, ValueError, TypeError) as e:
            # ValueError/TypeError: argv or env Popen cannot pass to exec,
            # e.g. an embedded NUL.
            raise TransportError(f"Failed to spawn {command!r}: {e}") from e
        finally:
            self._close_slave()
        return self.process

    def clone_reader(self) -> int:
        """Duplicate the master descriptor for the reader pipeline."""
        try:
            return os.dup(self.master_fd)
        except OSError as e:
            raise TransportError(f"Failed to clone PTY reader: {e}") from e

    def take_writer(self) -> PtyWriter:
        """Hand out the master as a writer. Only allowed once per pair."""
        if self._writer_taken:
            raise TransportError("PTY writer already taken")
        self._writer_taken = True
        return PtyWriter(self.master_fd)

    def close(self) -> None:
        """Release descriptors not yet handed out (failure cleanup)."""
        self._close_slave()
        if not self._writer_taken and self.master_fd >= 0:
            try:
                os.close(self.master_fd)
            except OSError:
                pass
            self.master_fd = -1

    def _close_slave(self) -> None:
        if self.slave_fd >= 0:
            try:
                os.close(self.slave_fd)
            except OSError:
                pass
            self.slave_fd = -1


@runtime_checkable
class PtyTransport(Protocol):
    """What the session manager needs from the OS."""

    def open(self, size: PtySize) -> PtyPair: ...


class NativePtyTransport:
    """PTY transport backed by ``pty.openpty()`` and ``subprocess``."""

    def open(self, size: PtySize) -> PtyPair:
        try:
            master_fd, slave_fd = _openpty()
        except OSError as e:
            raise TransportError(f"Failed to allocate PTY: {e}") from e

        pair = PtyPair(master_fd=master_fd, slave_fd=slave_fd, size=size)
        try:
            set_winsize(slave_fd, size.rows, size.cols)
        except OSError as e:
            pair.close()
            raise TransportError(f"Failed to set PTY size: {e}") from e
        return pair


def set_winsize(fd: int, rows: int, cols: int) -> None:
    """Set terminal window size on ``fd``."""
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


def get_winsize(fd: int) -> tuple[int, int]:
    """Return ``(rows, cols)`` of the terminal behind ``fd``."""
    packed = fcntl.ioctl(fd, termios.TIOCGWINSZ, b"\0" * 8)
    rows, cols, _, _ = struct.unpack("HHHH", packed)
    return rows, cols


def is_hangup(error: OSError) -> bool:
    """Linux reports a closed slave side as EIO on the master."""
    return error.errno == errno.EIO


# EAGAIN from openpty/fork means the system is briefly out of PTYs or
# processes; anything else is reported straight away.
_transient = retry(
    retry=retry_if_exception_type(BlockingIOError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


@_transient
def _openpty() -> tuple[int, int]:
    return pty.openpty()


@_transient
def _popen(argv: list[str], **kwargs) -> subprocess.Popen[bytes]:
    return subprocess.Popen(argv, **kwargs)
