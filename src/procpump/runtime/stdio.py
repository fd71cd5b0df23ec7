"""Redirection targets and shared pipes.

A child's stdin, stdout and stderr are each bound to exactly one target:

- Inherit: the child shares the parent's stream
- Handle: an already-open descriptor owned by the caller
- File: a path opened just before spawn (read-only, truncate or append)
- Buffer: bytes fed to stdin, or a bytearray collecting stdout/stderr
- PipeEnd: one end of a Pipe shared with another process

Targets are frozen dataclasses; StdioTarget is their union. Code that resolves
a target dispatches over the variants with isinstance checks.
"""

from __future__ import annotations

import enum
import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Union

__all__ = [
    "FileMode",
    "PipeRole",
    "StreamRole",
    "Pipe",
    "Inherit",
    "Handle",
    "File",
    "Buffer",
    "PipeEnd",
    "StdioTarget",
    "INHERIT",
    "coerce_target",
    "devnull",
    "append_to",
]

logger = logging.getLogger(__name__)

_O_BINARY = getattr(os, "O_BINARY", 0)


class FileMode(enum.Enum):
    """How a File target is opened."""

    READ_ONLY = "r"
    WRITE_TRUNCATE = "w"
    WRITE_APPEND = "a"

    @property
    def flags(self) -> int:
        if self is FileMode.READ_ONLY:
            return os.O_RDONLY | _O_BINARY
        if self is FileMode.WRITE_APPEND:
            return os.O_WRONLY | os.O_CREAT | os.O_APPEND | _O_BINARY
        return os.O_WRONLY | os.O_CREAT | os.O_TRUNC | _O_BINARY


class PipeRole(enum.Enum):
    READ = 0
    WRITE = 1


class StreamRole(enum.IntEnum):
    """The child's standard stream number."""

    STDIN = 0
    STDOUT = 1
    STDERR = 2

    @property
    def is_input(self) -> bool:
        return self is StreamRole.STDIN


class Pipe:
    """A reference-counted pair of connected descriptors.

    A Pipe may be shared by several processes (``a | b``): each binding that
    uses an end acquires a reference when it is built and releases it once
    the parent no longer needs that end. The descriptor is closed when its
    count drops back to zero, or by an explicit close. Closing is idempotent.

    Example:
        with Pipe.create() as pipe:
            producer = Process(ProcessSpec(["echo", "hi"], stdout=pipe))
            consumer = Process(ProcessSpec(["cat"], stdin=pipe, stdout=out))
    """

    def __init__(self, read_fd: int, write_fd: int) -> None:
        self._fds: list[int | None] = [read_fd, write_fd]
        self._refs = [0, 0]
        self._lock = threading.Lock()

    @classmethod
    def create(cls) -> "Pipe":
        """Create a new pipe. Raises OSError if the OS refuses."""
        read_fd, write_fd = os.pipe()
        logger.debug(f"Created pipe read_fd={read_fd} write_fd={write_fd}")
        return cls(read_fd, write_fd)

    def fd(self, role: PipeRole) -> int | None:
        with self._lock:
            return self._fds[role.value]

    @property
    def read_fd(self) -> int | None:
        return self.fd(PipeRole.READ)

    @property
    def write_fd(self) -> int | None:
        return self.fd(PipeRole.WRITE)

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._fds[0] is None and self._fds[1] is None

    def refcount(self, role: PipeRole) -> int:
        with self._lock:
            return self._refs[role.value]

    def acquire(self, role: PipeRole) -> None:
        with self._lock:
            self._refs[role.value] += 1

    def release(self, role: PipeRole) -> None:
        """Drop one reference; close the end when none remain."""
        with self._lock:
            if self._refs[role.value] > 0:
                self._refs[role.value] -= 1
            if self._refs[role.value] == 0:
                self._close_locked(role)

    def close_end(self, role: PipeRole) -> None:
        with self._lock:
            self._close_locked(role)

    def close(self) -> None:
        with self._lock:
            self._close_locked(PipeRole.READ)
            self._close_locked(PipeRole.WRITE)

    def _close_locked(self, role: PipeRole) -> None:
        fd = self._fds[role.value]
        if fd is None:
            return
        self._fds[role.value] = None
        os.close(fd)

    def __enter__(self) -> "Pipe":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Pipe(read_fd={self._fds[0]}, write_fd={self._fds[1]})"


@dataclass(frozen=True)
class Inherit:
    """No redirection."""


@dataclass(frozen=True)
class Handle:
    """A caller-owned descriptor; never closed by procpump."""

    fd: int


@dataclass(frozen=True)
class File:
    path: str | os.PathLike[str]
    mode: FileMode = FileMode.WRITE_TRUNCATE


@dataclass(frozen=True, eq=False)
class Buffer:
    """In-memory stream content.

    For stdin, data is the payload to feed (bytes, bytearray or memoryview).
    For stdout/stderr, data must be a bytearray; captured bytes are appended
    to it in place.
    """

    data: bytes | bytearray | memoryview


@dataclass(frozen=True, eq=False)
class PipeEnd:
    pipe: Pipe
    role: PipeRole


StdioTarget = Union[Inherit, Handle, File, Buffer, PipeEnd]

INHERIT = Inherit()

_TARGET_TYPES = (Inherit, Handle, File, Buffer, PipeEnd)


def devnull(stream: StreamRole) -> File:
    """A File target on the null device, opened in the right direction."""
    mode = FileMode.READ_ONLY if stream.is_input else FileMode.WRITE_TRUNCATE
    return File(os.devnull, mode)


def append_to(path: str | os.PathLike[str]) -> File:
    return File(path, FileMode.WRITE_APPEND)


def coerce_target(value: Any, stream: StreamRole) -> StdioTarget:
    """Map a convenient Python value onto a StdioTarget for ``stream``.

    Args:
        value: None, a target, an int descriptor, a path, a buffer or a Pipe
        stream: The stream the target will be bound to

    Returns:
        The matching StdioTarget

    Raises:
        TypeError: If the value cannot describe a target for this stream
    """
    if value is None:
        return INHERIT
    if isinstance(value, _TARGET_TYPES):
        return value
    # bool is an int subclass, never a descriptor
    if isinstance(value, bool):
        raise TypeError(f"Invalid redirection target for {stream.name}: {value!r}")
    if isinstance(value, int):
        return Handle(value)
    if isinstance(value, (str, os.PathLike)):
        mode = FileMode.READ_ONLY if stream.is_input else FileMode.WRITE_TRUNCATE
        return File(value, mode)
    if isinstance(value, bytearray):
        return Buffer(value)
    if isinstance(value, (bytes, memoryview)):
        if not stream.is_input:
            raise TypeError(
                f"{stream.name} can only be captured into a bytearray, "
                f"got {type(value).__name__}"
            )
        return Buffer(value)
    if isinstance(value, Pipe):
        role = PipeRole.READ if stream.is_input else PipeRole.WRITE
        return PipeEnd(value, role)
    raise TypeError(f"Invalid redirection target for {stream.name}: {value!r}")
