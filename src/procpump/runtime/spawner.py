"""Child process creation strategies.

All strategies install each binding's child descriptor on fd 0/1/2 of the
child and nothing else: Python creates descriptors non-inheritable, and only
the three stdio slots are made inheritable.

- ForkExecSpawner: os.fork + dup2 + execve, with a close-on-exec error pipe
  so the parent learns why exec failed. POSIX only.
- PosixSpawnSpawner: single os.posix_spawn call with dup2/close file
  actions. Delegates to its fallback when a working directory is requested.
- PopenSpawner: subprocess.Popen. The only strategy on Windows.

None of them raise when the program cannot be run: fork failure, exec
failure and spawn-call failure all end up as exit code 127.
"""

from __future__ import annotations

import errno
import logging
import os
import signal
import subprocess
import sys
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence

from .binding import StdioBinding
from .waiter import EXIT_SPAWN_FAILED, ProcessHandle

__all__ = [
    "ProcessSpawner",
    "ForkExecSpawner",
    "PosixSpawnSpawner",
    "PopenSpawner",
    "select_spawner",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

# Signals Python ignores that a freshly exec'd program expects at default
_RESET_SIGNALS = tuple(
    sig
    for sig in (getattr(signal, name, None) for name in ("SIGPIPE", "SIGXFZ", "SIGXFSZ"))
    if sig is not None
)


def _redirects(bindings: Sequence[StdioBinding]) -> list[tuple[int, int]]:
    """(source fd, child stream) pairs for every redirected stream."""
    pairs = []
    for binding in bindings:
        fd = binding.child_fd()
        if fd is not None:
            pairs.append((fd, int(binding.stream)))
    return pairs


def _untangle(redirects: list[tuple[int, int]]) -> tuple[list[tuple[int, int]], list[int]]:
    """Copy sources that another redirect overwrites to fresh descriptors.

    With ``stdout=<pipe>, stderr=1`` the pipe lands on fd 1 before fd 1 is
    copied to fd 2, so fd 1 must be duplicated first. The copies are
    non-inheritable and must be closed by the caller after spawn.

    Returns:
        The rewritten (source, stream) pairs and the temporary descriptors
    """
    targets = {dst for _, dst in redirects}
    pairs: list[tuple[int, int]] = []
    temps: list[int] = []
    try:
        for src, dst in redirects:
            if src != dst and src in targets:
                src = os.dup(src)
                temps.append(src)
            pairs.append((src, dst))
    except OSError:
        _close_all(temps)
        raise
    return pairs, temps


def _close_all(fds: list[int]) -> None:
    for fd in fds:
        os.close(fd)


def _environ_block(env: Mapping[str, str] | None) -> dict[str, str]:
    return dict(os.environ) if env is None else dict(env)


class ProcessSpawner(ABC):
    """Creates exactly one child or reports why it could not."""

    name = "abstract"

    @abstractmethod
    def spawn(
        self,
        argv: Sequence[str],
        cwd: str | os.PathLike[str] | None,
        env: Mapping[str, str] | None,
        bindings: Sequence[StdioBinding],
    ) -> ProcessHandle:
        """Create the child.

        Args:
            argv: Program and arguments; argv[0] is already resolved
            cwd: Working directory for the child (None = parent's)
            env: Full environment for the child (None = parent's)
            bindings: Prepared stdin/stdout/stderr bindings

        Returns:
            A live handle, or an invalid handle carrying the OS error
        """


class ForkExecSpawner(ProcessSpawner):
    name = "fork"

    def spawn(self, argv, cwd, env, bindings) -> ProcessHandle:
        exe = os.fsencode(argv[0])
        args = [os.fsencode(a) for a in argv]
        env_block = None if env is None else {
            os.fsencode(k): os.fsencode(v) for k, v in env.items()
        }
        cwd_bytes = None if cwd is None else os.fsencode(cwd)

        try:
            redirects, temps = _untangle(_redirects(bindings))
        except OSError as e:
            return ProcessHandle.invalid(f"dup failed: {e.strerror}")

        try:
            err_read, err_write = os.pipe()
            try:
                pid = os.fork()
            except OSError:
                os.close(err_read)
                os.close(err_write)
                raise
        except OSError as e:
            _close_all(temps)
            return ProcessHandle.invalid(f"fork failed: {e.strerror}")

        if pid == 0:
            try:
                self._exec_child(exe, args, cwd_bytes, env_block, redirects, err_write)
            finally:
                os._exit(EXIT_SPAWN_FAILED)

        _close_all(temps)
        os.close(err_write)
        chunks = []
        try:
            while True:
                chunk = os.read(err_read, 1024)
                if not chunk:
                    break
                chunks.append(chunk)
        finally:
            os.close(err_read)

        handle = ProcessHandle(pid=pid)
        if chunks:
            handle.exec_error = b"".join(chunks).decode(errors="replace")
            logger.debug(f"Child pid={pid} could not exec: {handle.exec_error}")
        return handle

    @staticmethod
    def _exec_child(exe, args, cwd, env, redirects, err_write) -> None:
        """Runs in the forked child; only returns if exec failed."""
        what = "exec"
        try:
            for sig in _RESET_SIGNALS:
                signal.signal(sig, signal.SIG_DFL)
            for src, dst in redirects:
                if src == dst:
                    os.set_inheritable(dst, True)
                else:
                    os.dup2(src, dst)
            if cwd is not None:
                what = "chdir"
                os.chdir(cwd)
            what = "exec"
            if env is None:
                os.execv(exe, args)
            else:
                os.execve(exe, args, env)
        except OSError as e:
            code = e.errno or 0
            reason = e.strerror or errno.errorcode.get(code, "unknown error")
            os.write(err_write, f"{code}:{what}:{reason}".encode())
            target = cwd if what == "chdir" else exe
            os.write(2, b"%s failed for: %s, error: %s\n" % (
                what.encode(), target, reason.encode()
            ))


class PopenSpawner(ProcessSpawner):
    name = "popen"

    def spawn(self, argv, cwd, env, bindings) -> ProcessHandle:
        fds: dict[int, int | None] = {0: None, 1: None, 2: None}
        for src, dst in _redirects(bindings):
            fds[dst] = src

        try:
            popen = subprocess.Popen(
                list(argv),
                stdin=fds[0],
                stdout=fds[1],
                stderr=fds[2],
                cwd=cwd,
                env=None if env is None else dict(env),
                close_fds=True,
            )
        except OSError as e:
            return ProcessHandle.invalid(f"{argv[0]}: {e.strerror or e}")
        except subprocess.SubprocessError as e:
            return ProcessHandle.invalid(f"{argv[0]}: {e}")

        return ProcessHandle(pid=popen.pid, popen=popen)


class PosixSpawnSpawner(ProcessSpawner):
    """posix_spawn with file actions; falls back when cwd is set.

    Python's posix_spawn has no chdir file action, so a request with a
    working directory goes to ``fallback``.
    """

    name = "posix_spawn"

    def __init__(self, fallback: ProcessSpawner | None = None) -> None:
        self.fallback = fallback if fallback is not None else PopenSpawner()

    def spawn(self, argv, cwd, env, bindings) -> ProcessHandle:
        if cwd is not None:
            logger.debug(f"cwd requested, delegating to {self.fallback.name}")
            return self.fallback.spawn(argv, cwd, env, bindings)

        try:
            redirects, temps = _untangle(_redirects(bindings))
        except OSError as e:
            return ProcessHandle.invalid(f"dup failed: {e.strerror}")

        file_actions: list[tuple] = []
        for src, dst in redirects:
            if src != dst:
                file_actions.append((os.POSIX_SPAWN_DUP2, src, dst))
        for src in sorted({src for src, _ in redirects}):
            if src > 2:
                file_actions.append((os.POSIX_SPAWN_CLOSE, src))

        # An fd mapped onto itself must survive exec
        for src, dst in redirects:
            if src == dst:
                os.set_inheritable(dst, True)

        try:
            pid = os.posix_spawn(
                argv[0],
                list(argv),
                _environ_block(env),
                file_actions=file_actions,
                setsigdef=_RESET_SIGNALS,
            )
        except OSError as e:
            return ProcessHandle.invalid(f"{argv[0]}: {e.strerror or e}")
        finally:
            _close_all(temps)

        return ProcessHandle(pid=pid)


def select_spawner(name: str = "auto") -> ProcessSpawner:
    """Build a spawner by strategy name: fork, posix_spawn, popen or auto."""
    name = name.lower().strip()
    if not IS_WINDOWS:
        if name == "fork":
            return ForkExecSpawner()
        if name == "posix_spawn" and hasattr(os, "posix_spawn"):
            return PosixSpawnSpawner()
    if name == "popen":
        return PopenSpawner()
    if name not in ("auto", "fork", "posix_spawn"):
        logger.warning(f"Unknown spawn strategy {name!r}, using auto")
    if IS_WINDOWS or not hasattr(os, "posix_spawn"):
        return PopenSpawner()
    return PosixSpawnSpawner()
