"""Run a command to completion with controlled stdio.

procpump runtime module

This module composes the pieces:
- StdioBinding: resolves each stream's target before spawn
- ProcessSpawner: creates the child
- IOPump: feeds stdin and drains stdout/stderr without deadlock
- ProcessWaiter: reaps the child and decodes its exit code

Key design points:
- Setup failures (bad file, no pipe) raise SpawnSetupError and unwind every
  binding before propagating
- "Command not found" is not an error here: it is exit code 127
- A pump failure is raised only after the child has been reaped
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import anyio.to_thread

from ..config import get_config
from ..errors import ProcpumpError
from ..resolve import resolve_argv0
from .binding import StdioBinding
from .pump import IOPump, PumpStream, ThreadedPump, select_pump
from .spawner import ProcessSpawner, select_spawner
from .stdio import StreamRole, coerce_target
from .waiter import ExitStatus, ProcessHandle, ProcessWaiter, exit_code

__all__ = [
    "ProcessSpec",
    "Process",
    "ProcessRunner",
    "run",
    "run_pipeline",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a child process.

    Stream fields accept anything ``coerce_target`` understands: None
    (inherit), an int descriptor, a path, a bytes payload (stdin), a
    bytearray to capture into (stdout/stderr), a Pipe, or an explicit
    StdioTarget.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process (None = parent's)
        env: Full environment for the process (None = inherit parent)
        stdin: Target for fd 0
        stdout: Target for fd 1
        stderr: Target for fd 2
    """

    argv: Sequence[str]
    cwd: str | os.PathLike[str] | None = None
    env: Mapping[str, str] | None = None
    stdin: Any = None
    stdout: Any = None
    stderr: Any = None

    def __post_init__(self) -> None:
        if isinstance(self.argv, (str, bytes)):
            object.__setattr__(self, "argv", [self.argv])
        if not self.argv:
            raise ValueError("argv must contain at least the program name")
        if any(isinstance(arg, str) and "\0" in arg for arg in self.argv):
            raise ValueError("argv must not contain NUL characters")


class Process:
    """One child process and the bindings of its three streams.

    Bindings are built here, before anything is spawned, so a Pipe shared
    with sibling processes stays open until every user has started.

    Example:
        out = bytearray()
        proc = Process(ProcessSpec(["echo", "-n", "123"], stdout=out))
        proc.start()
        assert proc.wait() == 0 and out == b"123"
    """

    def __init__(self, spec: ProcessSpec, runner: "ProcessRunner | None" = None) -> None:
        self.spec = spec
        self.runner = runner if runner is not None else ProcessRunner()
        self.bindings = [
            StdioBinding(role, coerce_target(target, role))
            for role, target in (
                (StreamRole.STDIN, spec.stdin),
                (StreamRole.STDOUT, spec.stdout),
                (StreamRole.STDERR, spec.stderr),
            )
        ]
        self.handle: ProcessHandle | None = None
        self._returncode: int | None = None

    @property
    def pid(self) -> int | None:
        return self.handle.pid if self.handle else None

    @property
    def status(self) -> ExitStatus | None:
        return self.handle.status if self.handle else None

    @property
    def returncode(self) -> int | None:
        return self._returncode

    @property
    def exec_error(self) -> str | None:
        """Why the program could not run, when the spawner could tell."""
        if self.handle is None:
            return None
        return self.handle.error or self.handle.exec_error

    def start(self) -> ProcessHandle:
        return self.runner.start(self)

    def wait(self) -> int:
        return self.runner.pump_and_wait(self)

    def close(self) -> None:
        for binding in self.bindings:
            binding.close_all()

    def __repr__(self) -> str:
        return f"Process(argv={list(self.spec.argv)!r}, pid={self.pid})"


@dataclass
class ProcessRunner:
    """Spawns children and runs them to completion.

    Strategy defaults come from the PROCPUMP_SPAWN / PROCPUMP_PUMP /
    PROCPUMP_CHUNK_SIZE configuration.

    Example:
        runner = ProcessRunner()
        out = bytearray()
        code = runner.run(ProcessSpec(["cat"], stdin=b"data", stdout=out))
    """

    spawner: ProcessSpawner | None = None
    pump: IOPump | None = None
    waiter: ProcessWaiter = field(default_factory=ProcessWaiter)

    def __post_init__(self) -> None:
        config = get_config()
        if self.spawner is None:
            self.spawner = select_spawner(config.spawn_strategy.value)
        if self.pump is None:
            self.pump = select_pump(config.pump_strategy.value, config.chunk_size)

    def spawn(self, spec: ProcessSpec) -> Process:
        """Create the child for ``spec`` and return it running.

        Raises:
            SpawnSetupError: If a stdio target could not be prepared
        """
        process = Process(spec, runner=self)
        self.start(process)
        return process

    def start(self, process: Process) -> ProcessHandle:
        """Prepare the bindings of ``process`` and create its child.

        Returns:
            The process handle; invalid if the child could not be created

        Raises:
            SpawnSetupError: If a stdio target could not be prepared
        """
        if process.handle is not None:
            raise RuntimeError(f"{process!r} was already started")

        spawner = self.spawner
        if spawner is None:
            raise RuntimeError("ProcessRunner has no spawner")

        spec = process.spec
        try:
            for binding in process.bindings:
                binding.prepare()
            argv = resolve_argv0(spec.argv, spec.env)
            handle = spawner.spawn(argv, spec.cwd, spec.env, process.bindings)
        except BaseException:
            process.close()
            raise
        process.handle = handle

        if not handle.valid:
            logger.warning(f"Could not start {argv[0]}: {handle.error}")
            process.close()
            return handle

        for binding in process.bindings:
            binding.close_unused_ends()

        logger.debug(
            f"Started subprocess pid={handle.pid} "
            f"argv={argv[0]} cwd={spec.cwd} spawner={spawner.name}"
        )
        return handle

    def pump_and_wait(self, process: Process) -> int:
        """Pump the child's buffered streams, then reap it.

        Returns:
            Exit code: 0-255, 128+signal, or 127 if the child never ran

        Raises:
            PumpError: If stdio I/O failed (raised after the child is reaped)
        """
        return self.pump_and_wait_all([process])[0]

    def pump_and_wait_all(self, processes: Sequence[Process]) -> list[int]:
        """Pump the buffered streams of every process at once, then reap them.

        One pump services all streams so no child can stall on a full pipe
        while another is being waited.

        Returns:
            Exit codes in the order of ``processes``

        Raises:
            PumpError: If stdio I/O failed (raised after every child is reaped)
        """
        pump = self.pump
        if pump is None:
            raise RuntimeError("ProcessRunner has no pump")

        pending = [p for p in processes if p.returncode is None]
        for process in pending:
            self._require_started(process)

        try:
            streams = [
                stream
                for process in pending
                if process.handle is not None and process.handle.valid
                for stream in self._parent_streams(process)
            ]
            if streams:
                pump.pump(streams)
        finally:
            for process in pending:
                process.close()
            for process in reversed(pending):
                process._returncode = exit_code(self.waiter.wait(process.handle))
                logger.debug(
                    f"Subprocess completed pid={process.pid} returncode={process.returncode}"
                )

        return [p.returncode for p in processes]

    def run(self, spec: ProcessSpec) -> int:
        """Spawn ``spec``, pump its streams and return its exit code."""
        return self.pump_and_wait(self.spawn(spec))

    async def run_async(self, spec: ProcessSpec) -> int:
        """Like run(), awaitable from an event loop.

        Streams are pumped by worker threads joined in the caller's loop;
        the final wait also happens in a worker thread.
        """
        process = self.spawn(spec)
        handle = self._require_started(process)
        pump = self.pump if isinstance(self.pump, ThreadedPump) else ThreadedPump(
            self.pump.chunk_size if self.pump else get_config().chunk_size
        )

        try:
            streams = self._parent_streams(process)
            if streams and handle.valid:
                await pump.pump_async(streams)
        finally:
            process.close()
            status = await anyio.to_thread.run_sync(self.waiter.wait, handle)
            process._returncode = exit_code(status)

        return process.returncode

    @staticmethod
    def _require_started(process: Process) -> ProcessHandle:
        if process.handle is None:
            raise RuntimeError(f"{process!r} has not been started")
        return process.handle

    @staticmethod
    def _parent_streams(process: Process) -> list[PumpStream]:
        streams = []
        for binding in process.bindings:
            stream = binding.parent_stream()
            if stream is not None:
                streams.append(stream)
        return streams


def run(
    argv: Sequence[str] | str,
    *,
    stdin: Any = None,
    stdout: Any = None,
    stderr: Any = None,
    cwd: str | os.PathLike[str] | None = None,
    env: Mapping[str, str] | None = None,
    runner: ProcessRunner | None = None,
) -> int:
    """Run a command to completion and return its exit code.

    Example:
        out = bytearray()
        assert run(["echo", "-n", "123"], stdout=out) == 0
        assert out == b"123"
    """
    spec = ProcessSpec(
        argv=argv,  # type: ignore[arg-type]
        cwd=cwd,
        env=env,
        stdin=stdin,
        stdout=stdout,
        stderr=stderr,
    )
    return (runner or ProcessRunner()).run(spec)


def run_pipeline(
    specs: Sequence[ProcessSpec],
    *,
    runner: ProcessRunner | None = None,
) -> list[int]:
    """Run processes connected through shared Pipes.

    Every Process is built before any is started so shared pipe ends stay
    referenced. They are started in order, the buffered streams of all of
    them are pumped together, and they are reaped last to first.

    Returns:
        Exit codes in the order of ``specs``

    Raises:
        SpawnSetupError: If a process could not be set up; processes already
            started are reaped first
    """
    runner = runner or ProcessRunner()
    processes = [Process(spec, runner=runner) for spec in specs]

    started: list[Process] = []
    try:
        for process in processes:
            process.start()
            started.append(process)
    except BaseException:
        for process in processes:
            process.close()
        try:
            runner.pump_and_wait_all(started)
        except ProcpumpError as e:
            logger.warning(f"Error reaping pipeline after failed start: {e}")
        raise

    return runner.pump_and_wait_all(processes)
