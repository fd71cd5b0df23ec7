"""Concurrent stdin feed and stdout/stderr drain.

A child blocks as soon as a pipe buffer fills, so the parent must keep
writing stdin and reading stdout/stderr at the same time. Two strategies:

- SelectorPump: one thread multiplexes readiness over the (up to three)
  parent-side descriptors with ``selectors``. POSIX default.
- ThreadedPump: one anyio worker thread per stream doing blocking I/O,
  joined by a task group. Required on Windows where pipes cannot be
  selected; usable everywhere.

Each stream is closed exactly once by the pump when it is exhausted, when
the child closes its side, or when the pump stops on an error.
"""

from __future__ import annotations

import logging
import os
import selectors
import sys
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

import anyio
import anyio.to_thread

from ..errors import PumpError
from .stdio import StreamRole

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "PumpStream",
    "IOPump",
    "SelectorPump",
    "ThreadedPump",
    "select_pump",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

DEFAULT_CHUNK_SIZE = 4096


@dataclass
class PumpStream:
    """Parent-side end of one child stream.

    Attributes:
        stream: Which child stream this end serves
        fd: Parent-side descriptor
        close: Idempotent closer for fd
        payload: Bytes to feed (stdin only)
        sink: Buffer receiving output (stdout/stderr only)
    """

    stream: StreamRole
    fd: int
    close: Callable[[], None]
    payload: memoryview | None = None
    sink: bytearray | None = None
    offset: int = field(default=0, init=False)

    @property
    def is_input(self) -> bool:
        return self.stream.is_input

    @property
    def remaining(self) -> int:
        if self.payload is None:
            return 0
        return len(self.payload) - self.offset


class IOPump(ABC):
    """Moves bytes between parent buffers and child pipes until all close."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self.chunk_size = chunk_size

    @abstractmethod
    def pump(self, streams: Iterable[PumpStream]) -> None:
        """Run until every stream is closed.

        Raises:
            PumpError: If a read or write fails other than by closure
        """

    def _write_once(self, s: PumpStream) -> bool:
        """Write as much of the remaining payload as the OS takes.

        Returns:
            True when the stream is finished (payload exhausted or reader gone)
        """
        payload = s.payload
        if payload is None:
            raise ValueError(f"{s.stream.name} has no payload to write")
        try:
            written = os.write(s.fd, payload[s.offset:])
        except BlockingIOError:
            return False
        except BrokenPipeError:
            logger.debug(f"Child closed {s.stream.name} with {s.remaining} bytes unwritten")
            return True
        except OSError as e:
            raise PumpError(s.stream, "write failed", e.strerror) from e
        s.offset += written
        return s.remaining == 0

    def _read_once(self, s: PumpStream) -> bool:
        """Read one chunk into the sink.

        Returns:
            True on end-of-stream
        """
        sink = s.sink
        if sink is None:
            raise ValueError(f"{s.stream.name} has no buffer to read into")
        try:
            data = os.read(s.fd, self.chunk_size)
        except BlockingIOError:
            return False
        except OSError as e:
            raise PumpError(s.stream, "read failed", e.strerror) from e
        if not data:
            return True
        sink.extend(data)
        return False


class SelectorPump(IOPump):
    """Single-threaded readiness multiplexing over non-blocking descriptors."""

    def pump(self, streams: Iterable[PumpStream]) -> None:
        active: list[PumpStream] = []
        for s in streams:
            if s.is_input and s.remaining == 0:
                # Nothing to feed: close now so the child sees EOF
                s.close()
                continue
            active.append(s)

        if not active:
            return

        try:
            with selectors.DefaultSelector() as selector:
                for s in active:
                    os.set_blocking(s.fd, False)
                    events = selectors.EVENT_WRITE if s.is_input else selectors.EVENT_READ
                    selector.register(s.fd, events, s)

                while selector.get_map():
                    for key, _events in selector.select():
                        s = key.data
                        if s.is_input:
                            finished = self._write_once(s)
                        else:
                            finished = self._read_once(s)
                        if finished:
                            selector.unregister(s.fd)
                            s.close()
                            logger.debug(f"Pump closed {s.stream.name}")
        finally:
            for s in active:
                s.close()


class ThreadedPump(IOPump):
    """One blocking worker thread per stream, joined by an anyio task group.

    ``pump()`` runs its own event loop via ``anyio.run`` and therefore must
    not be called from inside a running loop; use ``pump_async()`` there.
    """

    def pump(self, streams: Iterable[PumpStream]) -> None:
        anyio.run(self.pump_async, list(streams))

    async def pump_async(self, streams: Iterable[PumpStream]) -> None:
        errors: list[PumpError] = []

        async with anyio.create_task_group() as tg:
            for s in streams:
                tg.start_soon(self._drive, s, errors)

        if errors:
            raise errors[0]

    async def _drive(self, s: PumpStream, errors: list[PumpError]) -> None:
        try:
            await anyio.to_thread.run_sync(self._drive_blocking, s)
        except PumpError as e:
            errors.append(e)

    def _drive_blocking(self, s: PumpStream) -> None:
        try:
            if not IS_WINDOWS:
                os.set_blocking(s.fd, True)
            if s.is_input:
                while s.remaining and not self._write_once(s):
                    pass
            else:
                while not self._read_once(s):
                    pass
        finally:
            s.close()
            logger.debug(f"Pump closed {s.stream.name}")


def select_pump(name: str = "auto", chunk_size: int = DEFAULT_CHUNK_SIZE) -> IOPump:
    """Build a pump by strategy name: "select", "threads" or "auto"."""
    name = name.lower().strip()
    if name == "select" and not IS_WINDOWS:
        return SelectorPump(chunk_size)
    if name == "threads":
        return ThreadedPump(chunk_size)
    if name not in ("auto", "select"):
        logger.warning(f"Unknown pump strategy {name!r}, using auto")
    if IS_WINDOWS:
        return ThreadedPump(chunk_size)
    return SelectorPump(chunk_size)
