"""Per-stream resolution of a StdioTarget into descriptors.

Lifecycle of a binding:

    StdioBinding(stream, target)   validate, take PipeEnd reference
    prepare()                      open file / create private pipe
    child_fd()                     descriptor the child gets on ``stream``
    parent_stream()                what the pump reads or writes (Buffer only)
    close_unused_ends()            parent, right after a successful spawn
    close_all()                    spawn failure or end of run; idempotent

The child receives the read end for stdin and the write end for
stdout/stderr. The parent must drop its copy of the child's end right after
spawn, otherwise the pump never sees end-of-stream.
"""

from __future__ import annotations

import logging
import os

from ..errors import SpawnSetupError
from .pump import PumpStream
from .stdio import (
    Buffer,
    File,
    Handle,
    Inherit,
    Pipe,
    PipeEnd,
    PipeRole,
    StdioTarget,
    StreamRole,
)

__all__ = ["StdioBinding"]

logger = logging.getLogger(__name__)


class StdioBinding:
    """Owns the OS resources behind one of a child's standard streams.

    Attributes:
        stream: Stream number in the child (0, 1 or 2)
        target: The immutable redirection target
    """

    def __init__(self, stream: StreamRole, target: StdioTarget) -> None:
        self.stream = StreamRole(stream)
        self.target = target
        self._file_fd: int | None = None
        self._pipe: Pipe | None = None
        self._holds_pipe_ref = False
        self._prepared = False

        if isinstance(target, PipeEnd):
            expected = PipeRole.READ if self.stream.is_input else PipeRole.WRITE
            if target.role is not expected:
                raise ValueError(
                    f"{self.stream.name} needs the {expected.name} end of a pipe, "
                    f"got {target.role.name}"
                )
            target.pipe.acquire(target.role)
            self._holds_pipe_ref = True
        elif isinstance(target, Buffer):
            if not self.stream.is_input and not isinstance(target.data, bytearray):
                raise TypeError(f"{self.stream.name} buffer must be a bytearray")
        elif not isinstance(target, (Inherit, Handle, File)):
            raise TypeError(f"Invalid redirection target: {target!r}")

    @property
    def prepared(self) -> bool:
        return self._prepared

    def prepare(self) -> None:
        """Turn the target into open descriptors.

        Raises:
            SpawnSetupError: If a file cannot be opened, a pipe cannot be
                created, or a supplied descriptor is not open
        """
        if self._prepared:
            return
        target = self.target

        if isinstance(target, Handle):
            try:
                os.fstat(target.fd)
            except OSError as e:
                raise SpawnSetupError(
                    self.stream,
                    f"Provided file descriptor is not valid: {target.fd}",
                    e.strerror,
                ) from e
        elif isinstance(target, File):
            try:
                self._file_fd = os.open(target.path, target.mode.flags, 0o644)
            except OSError as e:
                raise SpawnSetupError(
                    self.stream, f"open failed: {os.fspath(target.path)}", e.strerror
                ) from e
            logger.debug(
                f"Opened {os.fspath(target.path)} mode={target.mode.name} "
                f"for {self.stream.name} fd={self._file_fd}"
            )
        elif isinstance(target, Buffer):
            try:
                self._pipe = Pipe.create()
            except OSError as e:
                raise SpawnSetupError(self.stream, "pipe failed", e.strerror) from e
        elif isinstance(target, PipeEnd):
            if target.pipe.fd(target.role) is None:
                raise SpawnSetupError(
                    self.stream, f"{target.role.name} end of {target.pipe!r} is already closed"
                )

        self._prepared = True

    def child_fd(self) -> int | None:
        """Descriptor to install as the child's ``stream``; None to inherit."""
        target = self.target
        if isinstance(target, Handle):
            return target.fd
        if isinstance(target, File):
            return self._file_fd
        if isinstance(target, Buffer):
            if self._pipe is None:
                return None
            return self._pipe.fd(self._child_role)
        if isinstance(target, PipeEnd):
            return target.pipe.fd(target.role)
        return None

    def parent_stream(self) -> PumpStream | None:
        """The parent-side end the pump services, for Buffer targets."""
        if not isinstance(self.target, Buffer) or self._pipe is None:
            return None
        parent_role = self._parent_role
        fd = self._pipe.fd(parent_role)
        if fd is None:
            return None

        pipe = self._pipe

        def close() -> None:
            pipe.close_end(parent_role)

        if self.stream.is_input:
            payload = memoryview(self.target.data).cast("B")
            return PumpStream(self.stream, fd, close, payload=payload)
        return PumpStream(self.stream, fd, close, sink=self.target.data)  # type: ignore[arg-type]

    def close_unused_ends(self) -> None:
        """Release what the parent no longer needs once the child has it."""
        if self._file_fd is not None:
            os.close(self._file_fd)
            self._file_fd = None
        if self._pipe is not None:
            self._pipe.close_end(self._child_role)
        self._release_pipe_ref()

    def close_all(self) -> None:
        """Close everything this binding owns. Safe to call repeatedly."""
        if self._file_fd is not None:
            os.close(self._file_fd)
            self._file_fd = None
        if self._pipe is not None:
            self._pipe.close()
        self._release_pipe_ref()

    def _release_pipe_ref(self) -> None:
        if self._holds_pipe_ref and isinstance(self.target, PipeEnd):
            self._holds_pipe_ref = False
            self.target.pipe.release(self.target.role)

    @property
    def _child_role(self) -> PipeRole:
        return PipeRole.READ if self.stream.is_input else PipeRole.WRITE

    @property
    def _parent_role(self) -> PipeRole:
        return PipeRole.WRITE if self.stream.is_input else PipeRole.READ

    def __repr__(self) -> str:
        return f"StdioBinding({self.stream.name}, {self.target!r})"
