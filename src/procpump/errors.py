"""procpump exception classes.

Exit code 127 (command not found, permission denied, spawn call failed) is
reported through the normal exit-code channel and never raised from here.
"""

from __future__ import annotations

__all__ = [
    "ProcpumpError",
    "SpawnSetupError",
    "PumpError",
    "WaitError",
]


class ProcpumpError(Exception):
    """Base exception for procpump."""
    pass


class SpawnSetupError(ProcpumpError):
    """A stdio redirection could not be prepared before the child was created.

    Attributes:
        stream: Stream number (0/1/2) whose target failed
        message: Human readable description
        os_error: Underlying OS error text, if any
    """

    def __init__(self, stream: int, message: str, os_error: str | None = None) -> None:
        self.stream = stream
        self.message = message
        self.os_error = os_error
        text = f"[fd {stream}] {message}"
        if os_error:
            text = f"{text}: {os_error}"
        super().__init__(text)


class PumpError(ProcpumpError):
    """A read or write on a child pipe failed for a reason other than closure.

    Attributes:
        stream: Stream number (0/1/2) that failed
        message: Human readable description
        os_error: Underlying OS error text, if any
    """

    def __init__(self, stream: int, message: str, os_error: str | None = None) -> None:
        self.stream = stream
        self.message = message
        self.os_error = os_error
        text = f"[fd {stream}] {message}"
        if os_error:
            text = f"{text}: {os_error}"
        super().__init__(text)


class WaitError(ProcpumpError):
    """The OS refused to report the termination status of a child."""

    def __init__(self, pid: int | None, message: str) -> None:
        self.pid = pid
        self.message = message
        super().__init__(f"[pid {pid}] {message}")
