"""procpump - run external programs with redirected stdio.

Environment variables:
    PROCPUMP_SPAWN: spawn strategy (auto/fork/posix_spawn/popen)
    PROCPUMP_PUMP: stdio pump strategy (auto/select/threads)
    PROCPUMP_CHUNK_SIZE: read size for captured output (default 4096)
    PROCPUMP_LOG_DEBUG: debug log to a temporary file (default false)

Usage:
    from procpump import run

    out = bytearray()
    code = run(["echo", "-n", "123"], stdout=out)
"""

__version__ = "0.1.0"

from .errors import ProcpumpError, PumpError, SpawnSetupError, WaitError
from .runtime import (
    EXIT_SPAWN_FAILED,
    Buffer,
    File,
    FileMode,
    Handle,
    Inherit,
    Pipe,
    PipeEnd,
    PipeRole,
    Process,
    ProcessRunner,
    ProcessSpec,
    append_to,
    devnull,
    run,
    run_pipeline,
)

__all__ = [
    "__version__",
    "EXIT_SPAWN_FAILED",
    "Buffer",
    "File",
    "FileMode",
    "Handle",
    "Inherit",
    "Pipe",
    "PipeEnd",
    "PipeRole",
    "Process",
    "ProcessRunner",
    "ProcessSpec",
    "ProcpumpError",
    "PumpError",
    "SpawnSetupError",
    "WaitError",
    "append_to",
    "devnull",
    "run",
    "run_pipeline",
]
