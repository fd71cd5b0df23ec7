"""IOPump tests without child processes.

A single pipe is looped back: the pump feeds its write end and drains its
read end in the same call, which deadlocks unless both happen concurrently.
"""

from __future__ import annotations

import errno
import os

import pytest

from conftest import IS_WINDOWS, PUMPS
from procpump.errors import PumpError
from procpump.runtime import pump as pump_module
from procpump.runtime.pump import (
    DEFAULT_CHUNK_SIZE,
    PumpStream,
    SelectorPump,
    ThreadedPump,
    select_pump,
)
from procpump.runtime.stdio import Pipe, PipeRole, StreamRole


def _loopback(payload: bytes, sink: bytearray) -> tuple[Pipe, list[PumpStream]]:
    pipe = Pipe.create()
    feed = PumpStream(
        StreamRole.STDIN,
        pipe.write_fd,
        lambda: pipe.close_end(PipeRole.WRITE),
        payload=memoryview(payload),
    )
    drain = PumpStream(
        StreamRole.STDOUT,
        pipe.read_fd,
        lambda: pipe.close_end(PipeRole.READ),
        sink=sink,
    )
    return pipe, [feed, drain]


class TestPumpStream:
    def test_remaining_tracks_offset(self):
        s = PumpStream(StreamRole.STDIN, 0, lambda: None, payload=memoryview(b"abcdef"))
        assert s.is_input
        assert s.remaining == 6
        s.offset = 4
        assert s.remaining == 2

    def test_output_has_nothing_remaining(self):
        s = PumpStream(StreamRole.STDERR, 0, lambda: None, sink=bytearray())
        assert not s.is_input
        assert s.remaining == 0


@pytest.mark.timeout(30)
@pytest.mark.parametrize("name", PUMPS)
class TestLoopback:
    def test_large_payload_round_trip(self, name):
        payload = os.urandom(1024 * 1024)
        sink = bytearray()
        pipe, streams = _loopback(payload, sink)

        select_pump(name).pump(streams)

        assert bytes(sink) == payload
        assert pipe.closed

    def test_empty_payload_closes_immediately(self, name):
        sink = bytearray()
        pipe, streams = _loopback(b"", sink)

        select_pump(name).pump(streams)

        assert sink == b""
        assert pipe.closed

    def test_small_chunk_size(self, name):
        payload = b"0123456789" * 1000
        sink = bytearray()
        _pipe, streams = _loopback(payload, sink)

        select_pump(name, chunk_size=7).pump(streams)

        assert bytes(sink) == payload


@pytest.mark.timeout(30)
@pytest.mark.parametrize("name", PUMPS)
def test_reader_gone_ends_feed(name):
    """A closed reader finishes stdin instead of failing the pump."""
    pipe = Pipe.create()
    pipe.close_end(PipeRole.READ)
    closed = []

    def close():
        closed.append(True)
        pipe.close_end(PipeRole.WRITE)

    feed = PumpStream(
        StreamRole.STDIN, pipe.write_fd, close, payload=memoryview(b"x" * 100000)
    )
    select_pump(name).pump([feed])

    assert closed
    assert pipe.closed


@pytest.mark.timeout(30)
@pytest.mark.parametrize("name", PUMPS)
def test_read_failure_raises_pump_error(name, monkeypatch):
    pipe = Pipe.create()
    os.write(pipe.write_fd, b"data")
    failing_fd = pipe.read_fd
    real_read = os.read

    def fake_read(fd, n):
        if fd == failing_fd:
            raise OSError(errno.EIO, os.strerror(errno.EIO))
        return real_read(fd, n)

    monkeypatch.setattr(pump_module.os, "read", fake_read)
    drain = PumpStream(
        StreamRole.STDERR,
        failing_fd,
        lambda: pipe.close_end(PipeRole.READ),
        sink=bytearray(),
    )

    with pytest.raises(PumpError) as exc_info:
        select_pump(name).pump([drain])

    assert exc_info.value.stream == StreamRole.STDERR
    assert "read failed" in str(exc_info.value)
    # The failing stream is still closed
    assert pipe.read_fd is None
    pipe.close()


class TestSelectPump:
    def test_threads(self):
        pump = select_pump("threads", chunk_size=1024)
        assert isinstance(pump, ThreadedPump)
        assert pump.chunk_size == 1024

    def test_default_chunk_size(self):
        assert select_pump().chunk_size == DEFAULT_CHUNK_SIZE

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX default")
    def test_auto_is_selector_on_posix(self):
        assert isinstance(select_pump("auto"), SelectorPump)

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX default")
    def test_unknown_name_falls_back(self, caplog):
        with caplog.at_level("WARNING", logger="procpump"):
            pump = select_pump("bogus")
        assert isinstance(pump, SelectorPump)
        assert "Unknown pump strategy" in caplog.text
