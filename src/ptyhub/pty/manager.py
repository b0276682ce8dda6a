"""PTY Manager — the session registry and the host-facing API."""

from __future__ import annotations

import asyncio
import logging
import os
import re
import subprocess
import threading
from typing import Any, Sequence

from ptyhub.config import PtyHubConfig
from ptyhub.errors import SessionNotFoundError
from ptyhub.events.wire import PtyEvent, Wire
from ptyhub.pty.session import PTYSession, SessionStatus
from ptyhub.pty.transport import NativePtyTransport, PtySize, PtyTransport

logger = logging.getLogger(__name__)


class PTYManager:
    """Manages the lifecycle of multiple PTY sessions.

    The host drives it with ``spawn`` / ``write`` / ``read`` and drains
    ``poll_event`` or ``await_event`` separately. The manager ensures:
    - Sessions are tracked by id behind one registry lock
    - Each session keeps the writer it got at spawn time for its whole life
    - Reader pipelines never block the API; they only feed buffers and
      the wire
    - Closed sessions stay readable until the host removes them

    All asyncio objects belong to the loop that first calls ``spawn``.
    """

    SIZE = PtySize(rows=24, cols=80)

    def __init__(
        self,
        config: PtyHubConfig | None = None,
        transport: PtyTransport | None = None,
        wire: Wire | None = None,
    ) -> None:
        self._config = config or PtyHubConfig()
        self._transport = transport or NativePtyTransport()
        self._wire = wire or Wire(
            capacity=self._config.events.capacity,
            overflow=self._config.events.overflow,
        )
        self._sessions: dict[str, PTYSession] = {}
        self._lock = threading.Lock()

    async def spawn(self, command: str, args: Sequence[str] = ()) -> str:
        """Spawn ``command`` on a new PTY and start reading its output.

        Args:
            command: Executable name or path.
            args: Arguments passed to it.

        Returns:
            The new session id.

        Raises:
            ValueError: ``command`` is empty.
            TransportError: The PTY could not be allocated, the child could
                not be started, or its handles could not be acquired.
        """
        if not command:
            raise ValueError("spawn requires a non-empty command")
        argv = [command, *args]

        loop = asyncio.get_running_loop()
        session, reader_fd = await loop.run_in_executor(
            None, self._open_session, argv
        )

        with self._lock:
            self._sessions[session.id] = session
        session.start_reader(
            reader_fd, self._wire, chunk_size=self._config.session.read_chunk_size
        )

        logger.info(
            "PTY session %s started: pid=%s cmd=%s",
            session.id,
            session.pid,
            " ".join(argv),
        )
        return session.id

    def _open_session(self, argv: list[str]) -> tuple[PTYSession, int]:
        """Blocking transport work for ``spawn``; leaves nothing behind on error."""
        env = {**os.environ, **self._config.session.env}
        env["TERM"] = self._config.session.term

        pair = self._transport.open(self.SIZE)
        reader_fd = -1
        try:
            process = pair.spawn(argv[0], argv[1:], env=env)
            reader_fd = pair.clone_reader()
            writer = pair.take_writer()
        except Exception:
            if reader_fd >= 0:
                os.close(reader_fd)
            pair.close()
            _reap(pair.process)
            raise

        return PTYSession(command=argv, writer=writer, process=process), reader_fd

    def write(self, session_id: str, data: str | bytes) -> None:
        """Send ``data`` to the session's stdin, all of it or an error.

        Raises:
            SessionNotFoundError: Unknown id.
            PTYWriteError: The OS write failed, or the session was killed.
        """
        session = self._get(session_id)
        payload = data.encode("utf-8") if isinstance(data, str) else data
        session.write(payload)

    def read(self, session_id: str) -> str:
        """Everything the session has printed so far (cumulative snapshot).

        Raises:
            SessionNotFoundError: Unknown id.
        """
        return self._get(session_id).buffer.read_all()

    def poll_event(self) -> PtyEvent | None:
        """Next pending event, or None without waiting."""
        return self._wire.poll()

    async def await_event(self, timeout: float | None = None) -> PtyEvent | None:
        """Wait for the next event. None when the wire is closed or on timeout."""
        return await self._wire.get(timeout=timeout)

    def status(self, session_id: str) -> SessionStatus:
        return self._get(session_id).status

    async def wait_for(
        self, session_id: str, pattern: str, timeout: float = 5.0
    ) -> bool:
        """Wait until the session's output matches ``pattern``.

        Returns True on match, False on timeout or once the session stops
        producing output without matching.
        """
        session = self._get(session_id)
        compiled = re.compile(pattern)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            if compiled.search(session.buffer.read_all()):
                return True
            if not session.alive:
                # One last look: the final chunk may have landed with closure.
                return bool(compiled.search(session.buffer.read_all()))
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            await session.buffer.wait_for_data(timeout=min(remaining, 0.5))

    def get(self, session_id: str) -> PTYSession | None:
        """Get a session by ID."""
        with self._lock:
            return self._sessions.get(session_id)

    def _get(self, session_id: str) -> PTYSession:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def kill(self, session_id: str) -> None:
        """Kill the session's process group. The session stays readable."""
        self._get(session_id).kill()

    def remove(self, session_id: str) -> None:
        """Kill (if needed) and forget a session."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.kill()

    def list_sessions(self) -> list[dict[str, Any]]:
        """List all registered sessions."""
        with self._lock:
            sessions = list(self._sessions.values())
        return [
            {
                "id": s.id,
                "command": " ".join(s.command),
                "pid": s.pid,
                "alive": s.alive,
                "status": s.status.value,
                "exit_code": s.exit_code,
                "chars": len(s.buffer),
            }
            for s in sessions
        ]

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Kill all sessions, close the wire and wait for the readers."""
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            session.kill()
        self._wire.close()

        tasks = [s.reader_task for s in sessions if s.reader_task is not None]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning("%d PTY readers did not finish, cancelled", len(pending))
                await asyncio.gather(*pending, return_exceptions=True)
        logger.info("All PTY sessions cleaned up")

    async def __aenter__(self) -> PTYManager:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    @property
    def wire(self) -> Wire:
        return self._wire

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions


def _reap(process: subprocess.Popen[bytes] | None) -> None:
    """Kill and reap a child whose session could not be completed."""
    if process is None:
        return
    try:
        process.kill()
        process.wait(timeout=2)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("Could not reap pid %s: %s", process.pid, e)
