"""Runtime module for process spawning and stdio pumping.

This module provides child process creation with per-stream redirection
and a deadlock-free pump for buffered stdin/stdout/stderr.
"""

from __future__ import annotations

from .binding import StdioBinding
from .process_runner import Process, ProcessRunner, ProcessSpec, run, run_pipeline
from .pump import IOPump, PumpStream, SelectorPump, ThreadedPump, select_pump
from .spawner import (
    ForkExecSpawner,
    PopenSpawner,
    PosixSpawnSpawner,
    ProcessSpawner,
    select_spawner,
)
from .stdio import (
    INHERIT,
    Buffer,
    File,
    FileMode,
    Handle,
    Inherit,
    Pipe,
    PipeEnd,
    PipeRole,
    StdioTarget,
    StreamRole,
    append_to,
    coerce_target,
    devnull,
)
from .waiter import (
    EXIT_SPAWN_FAILED,
    Exited,
    ExitStatus,
    ProcessHandle,
    ProcessWaiter,
    Signaled,
    exit_code,
)

__all__ = [
    "Buffer",
    "EXIT_SPAWN_FAILED",
    "Exited",
    "ExitStatus",
    "File",
    "FileMode",
    "ForkExecSpawner",
    "Handle",
    "INHERIT",
    "IOPump",
    "Inherit",
    "Pipe",
    "PipeEnd",
    "PipeRole",
    "PopenSpawner",
    "PosixSpawnSpawner",
    "Process",
    "ProcessHandle",
    "ProcessRunner",
    "ProcessSpawner",
    "ProcessSpec",
    "ProcessWaiter",
    "PumpStream",
    "SelectorPump",
    "Signaled",
    "StdioBinding",
    "StdioTarget",
    "StreamRole",
    "ThreadedPump",
    "append_to",
    "coerce_target",
    "devnull",
    "exit_code",
    "run",
    "run_pipeline",
    "select_pump",
    "select_spawner",
]
