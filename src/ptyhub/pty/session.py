"""PTY session — one child process on a pseudo-terminal plus its reader."""

from __future__ import annotations

import asyncio
import enum
import logging
import os
import signal
import subprocess
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from ptyhub.errors import EventQueueClosed
from ptyhub.events.wire import PtyEvent, Wire
from ptyhub.pty.buffer import OutputBuffer
from ptyhub.pty.transport import PtyWriter, is_hangup

logger = logging.getLogger(__name__)


class SessionStatus(enum.Enum):
    """Lifecycle states for a PTY session."""

    RUNNING = "running"  # Reader pipeline alive
    CLOSED = "closed"  # Reader saw EOF, a read error, or the wire closed
    KILLED = "killed"  # Killed by the host


@dataclass
class PTYSession:
    """A managed pseudo-terminal session.

    Holds the single writer taken from the transport at spawn time, the
    append-only output buffer, and the reader pipeline task. The reader
    runs each blocking ``os.read`` on a one-thread executor owned by the
    session, so one quiet or slow child never holds up another session's
    reads or the caller.
    """

    command: list[str]
    writer: PtyWriter
    process: subprocess.Popen[bytes] | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    buffer: OutputBuffer = field(default_factory=OutputBuffer)

    # Internal state
    _reader_fd: int = field(default=-1, init=False)
    _reader_task: asyncio.Task[None] | None = field(default=None, init=False)
    _executor: ThreadPoolExecutor | None = field(default=None, init=False)
    _status: SessionStatus = field(default=SessionStatus.RUNNING, init=False)
    _exit_code: int | None = field(default=None, init=False)

    def start_reader(
        self, reader_fd: int, wire: Wire, chunk_size: int = 4096
    ) -> asyncio.Task[None]:
        """Launch the reader pipeline on the running loop.

        The session takes ownership of ``reader_fd`` and closes it when the
        pipeline ends.
        """
        self._reader_fd = reader_fd
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"pty-reader-{self.id[:8]}"
        )
        self.buffer.attach_loop(asyncio.get_running_loop())
        self._reader_task = asyncio.create_task(
            self._read_loop(wire, chunk_size), name=f"pty-reader-{self.id}"
        )
        return self._reader_task

    async def _read_loop(self, wire: Wire, chunk_size: int) -> None:
        """Pull bytes from the PTY into the buffer, one event per chunk."""
        loop = asyncio.get_running_loop()
        reason = "end of stream"
        try:
            while True:
                try:
                    data = await loop.run_in_executor(
                        self._executor, os.read, self._reader_fd, chunk_size
                    )
                except OSError as e:
                    if is_hangup(e):
                        logger.debug("PTY %s hung up: %s", self.id, e)
                    else:
                        reason = f"read error: {e}"
                        logger.error("Error reading from PTY %s: %s", self.id, e)
                    break

                if not data:
                    break

                self.buffer.feed(data)
                try:
                    await wire.put(PtyEvent.output(self.id))
                except EventQueueClosed:
                    reason = "event queue closed"
                    break
        except asyncio.CancelledError:
            # The abandoned os.read only returns once the slave hangs up;
            # without this the reader thread blocks interpreter exit.
            reason = "cancelled"
            self.kill()
            raise
        except Exception:
            reason = "reader crashed"
            logger.exception("PTY reader %s crashed", self.id)
        finally:
            self.buffer.feed(b"", final=True)
            self._release_reader()
            if self._status == SessionStatus.RUNNING:
                self._status = SessionStatus.CLOSED
            if self.process is not None:
                self._exit_code = self.process.poll()
            logger.info(
                "PTY reader %s finished: %s (exit code=%s)",
                self.id,
                reason,
                self._exit_code,
            )

    def _release_reader(self) -> None:
        """Close the reader fd once any in-flight read has returned."""
        if self._executor is None:
            return
        fd, self._reader_fd = self._reader_fd, -1
        if fd >= 0:
            # The executor runs jobs in order, so this waits behind a
            # read that was abandoned by cancellation.
            self._executor.submit(_close_quietly, fd)
        self._executor.shutdown(wait=False)

    def write(self, data: bytes) -> int:
        """Write all of ``data`` to the child's stdin through the PTY."""
        return self.writer.write_all(data)

    def kill(self) -> None:
        """Kill the child's process group and release the writer.

        The reader pipeline ends on its own once the slave side hangs up.
        """
        if self._status == SessionStatus.KILLED:
            return
        self._status = SessionStatus.KILLED

        if self.process is not None and self.process.poll() is None:
            try:
                os.killpg(self.process.pid, signal.SIGKILL)
                logger.info("Killed PTY session %s (pgid=%d)", self.id, self.process.pid)
            except ProcessLookupError:
                logger.debug("Process group already gone: %d", self.process.pid)
            except PermissionError as e:
                logger.warning("Error killing PTY session %s: %s", self.id, e)

            try:
                self._exit_code = self.process.wait(timeout=2)
            except subprocess.TimeoutExpired:
                logger.warning("PTY session %s did not exit after SIGKILL", self.id)

        self.writer.close()

    async def wait_closed(self, timeout: float | None = None) -> bool:
        """Wait for the reader pipeline to finish. False on timeout."""
        if self._reader_task is None or self._reader_task.done():
            return True
        done, _ = await asyncio.wait({self._reader_task}, timeout=timeout)
        return bool(done)

    @property
    def alive(self) -> bool:
        return self._status == SessionStatus.RUNNING

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    @property
    def exit_code(self) -> int | None:
        if self._exit_code is None and self.process is not None:
            self._exit_code = self.process.poll()
        return self._exit_code

    @property
    def reader_task(self) -> asyncio.Task[None] | None:
        return self._reader_task


def _close_quietly(fd: int) -> None:
    try:
        os.close(fd)
    except OSError:
        pass
