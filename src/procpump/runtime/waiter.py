"""Process handles, termination status and waiting.

Exit code contract:
- 0..255: the child exited normally with that code
- 128 + N: the child was killed by signal N
- 127: the child could not be created or could not execute its program
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from typing import Union

from ..errors import WaitError

__all__ = [
    "EXIT_SPAWN_FAILED",
    "SIGNAL_EXIT_BASE",
    "Exited",
    "Signaled",
    "ExitStatus",
    "ProcessHandle",
    "ProcessWaiter",
    "exit_code",
]

logger = logging.getLogger(__name__)

EXIT_SPAWN_FAILED = 127
SIGNAL_EXIT_BASE = 128


@dataclass(frozen=True)
class Exited:
    code: int


@dataclass(frozen=True)
class Signaled:
    signal: int


ExitStatus = Union[Exited, Signaled]


def exit_code(status: ExitStatus | None) -> int:
    """Flatten a termination status into a single integer."""
    if status is None:
        return EXIT_SPAWN_FAILED
    if isinstance(status, Signaled):
        return SIGNAL_EXIT_BASE + status.signal
    return status.code


@dataclass
class ProcessHandle:
    """Identifies a spawned child, or records that spawning failed.

    Attributes:
        pid: OS process id (None when spawn failed)
        popen: Popen object when the child was created through subprocess
        error: Why the child could not be created (invalid handles only)
        exec_error: Why a created child could not run its program, when the
            spawner can tell (the child still exits with 127)
        status: Termination status once reaped
    """

    pid: int | None = None
    popen: subprocess.Popen | None = field(default=None, repr=False)
    error: str | None = None
    exec_error: str | None = None
    status: ExitStatus | None = None
    reaped: bool = False

    @classmethod
    def invalid(cls, error: str) -> "ProcessHandle":
        return cls(pid=None, error=error)

    @property
    def valid(self) -> bool:
        return self.pid is not None


class ProcessWaiter:
    """Blocks until a child terminates and decodes its status."""

    def wait(self, handle: ProcessHandle) -> ExitStatus | None:
        """Wait for the child behind ``handle``.

        Returns:
            The termination status, or None for an invalid handle (no OS
            call is made in that case)

        Raises:
            WaitError: If the OS cannot report the child's status
        """
        if not handle.valid:
            return None
        if handle.reaped:
            return handle.status

        if handle.popen is not None:
            returncode = handle.popen.wait()
            status: ExitStatus = (
                Signaled(-returncode) if returncode < 0 else Exited(returncode)
            )
        else:
            status = self._waitpid(handle.pid)  # type: ignore[arg-type]

        handle.status = status
        handle.reaped = True
        logger.debug(f"Child pid={handle.pid} finished status={status}")
        return status

    def wait_exit_code(self, handle: ProcessHandle) -> int:
        return exit_code(self.wait(handle))

    def _waitpid(self, pid: int) -> ExitStatus:
        # os.waitpid retries EINTR itself
        try:
            _, raw = os.waitpid(pid, 0)
        except ChildProcessError as e:
            raise WaitError(pid, e.strerror or "no such child") from e

        if os.WIFSIGNALED(raw):
            return Signaled(os.WTERMSIG(raw))
        if os.WIFEXITED(raw):
            return Exited(os.WEXITSTATUS(raw))
        raise WaitError(pid, f"unexpected wait status {raw:#x}")
