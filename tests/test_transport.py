"""Tests for ptyhub.pty.transport (NativePtyTransport, PtyPair, PtyWriter)."""

from __future__ import annotations

import os
import threading

import pytest

from ptyhub.errors import PTYWriteError, TransportError
from ptyhub.pty.transport import (
    NativePtyTransport,
    PtySize,
    PtyTransport,
    PtyWriter,
    get_winsize,
)


@pytest.fixture
def pair():
    p = NativePtyTransport().open(PtySize())
    yield p
    if p.process is not None and p.process.poll() is None:
        p.process.kill()
        p.process.wait(timeout=2)
    p.close()


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------


class TestOpen:
    def test_is_transport(self) -> None:
        assert isinstance(NativePtyTransport(), PtyTransport)

    def test_default_geometry(self, pair) -> None:
        assert get_winsize(pair.master_fd) == (24, 80)

    def test_custom_geometry(self) -> None:
        p = NativePtyTransport().open(PtySize(rows=40, cols=120))
        try:
            assert get_winsize(p.master_fd) == (40, 120)
        finally:
            p.close()


# ---------------------------------------------------------------------------
# Spawning
# ---------------------------------------------------------------------------


class TestSpawn:
    def test_spawn_closes_parent_slave(self, pair) -> None:
        pair.spawn("true")
        assert pair.slave_fd == -1
        assert pair.process is not None
        assert pair.process.wait(timeout=5) == 0

    def test_spawn_missing_binary(self, pair) -> None:
        with pytest.raises(TransportError, match="nonexistent-binary-xyz"):
            pair.spawn("nonexistent-binary-xyz")
        assert pair.slave_fd == -1
        assert pair.process is None

    def test_spawn_embedded_nul(self, pair) -> None:
        with pytest.raises(TransportError, match="echo"):
            pair.spawn("echo", ["a\0b"])
        assert pair.slave_fd == -1
        assert pair.process is None

    def test_child_in_own_process_group(self, pair) -> None:
        process = pair.spawn("sleep", ["5"])
        assert os.getpgid(process.pid) == process.pid


# ---------------------------------------------------------------------------
# Handles
# ---------------------------------------------------------------------------


class TestHandles:
    def test_writer_taken_once(self, pair) -> None:
        writer = pair.take_writer()
        assert isinstance(writer, PtyWriter)
        with pytest.raises(TransportError, match="already taken"):
            pair.take_writer()
        writer.close()

    def test_clone_reader_is_distinct_fd(self, pair) -> None:
        reader_fd = pair.clone_reader()
        try:
            assert reader_fd != pair.master_fd
        finally:
            os.close(reader_fd)

    def test_close_releases_untaken_master(self, pair) -> None:
        pair.close()
        assert pair.master_fd == -1


# ---------------------------------------------------------------------------
# PtyWriter
# ---------------------------------------------------------------------------


class TestPtyWriter:
    def test_write_all_through_pipe(self) -> None:
        r, w = os.pipe()
        writer = PtyWriter(w)
        try:
            assert writer.write_all(b"hello") == 5
            assert os.read(r, 100) == b"hello"
        finally:
            writer.close()
            os.close(r)

    def test_write_all_large_payload(self) -> None:
        r, w = os.pipe()
        writer = PtyWriter(w)
        payload = b"x" * 200_000  # Larger than a pipe buffer
        received = bytearray()

        def _drain() -> None:
            while len(received) < len(payload):
                chunk = os.read(r, 65536)
                if not chunk:
                    break
                received.extend(chunk)

        t = threading.Thread(target=_drain)
        t.start()
        try:
            assert writer.write_all(payload) == len(payload)
        finally:
            t.join(timeout=5)
            writer.close()
            os.close(r)
        assert bytes(received) == payload

    def test_write_empty(self) -> None:
        r, w = os.pipe()
        writer = PtyWriter(w)
        try:
            assert writer.write_all(b"") == 0
        finally:
            writer.close()
            os.close(r)

    def test_write_after_close(self) -> None:
        r, w = os.pipe()
        writer = PtyWriter(w)
        writer.close()
        os.close(r)
        assert writer.closed
        with pytest.raises(PTYWriteError, match="closed"):
            writer.write_all(b"late")

    def test_write_os_error(self) -> None:
        r, w = os.pipe()
        os.close(r)  # No reader left: EPIPE
        writer = PtyWriter(w)
        try:
            with pytest.raises(PTYWriteError):
                writer.write_all(b"data")
        finally:
            writer.close()
