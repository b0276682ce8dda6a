"""PTY process management — managed pseudo-terminal sessions.

Child processes run on their own pseudo-terminal, each with a background
reader that fills an append-only output buffer and signals the host
through the event wire.
"""

from ptyhub.pty.buffer import OutputBuffer
from ptyhub.pty.manager import PTYManager
from ptyhub.pty.session import PTYSession, SessionStatus
from ptyhub.pty.transport import NativePtyTransport, PtySize, PtyWriter

__all__ = [
    "NativePtyTransport",
    "OutputBuffer",
    "PTYManager",
    "PTYSession",
    "PtySize",
    "PtyWriter",
    "SessionStatus",
]
