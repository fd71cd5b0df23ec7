"""procpump command line entry point.

Contains logging setup and the ``procpump`` command, which runs one program
with the requested redirections and exits with its exit code.

Usage:
    procpump [options] -- COMMAND [ARGS...]
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence

from .config import Config, PumpStrategy, SpawnStrategy, get_config
from .errors import ProcpumpError
from .resolve import environ_with
from .runtime import (
    ProcessRunner,
    ProcessSpec,
    append_to,
    select_pump,
    select_spawner,
)

__all__ = ["build_parser", "configure_logging", "main"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(config: Config) -> None:
    """Send procpump logs to stderr, or to a debug file when enabled."""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Root (third-party) stays at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("procpump").setLevel(log_level)


def _parse_env_item(value: str) -> tuple[str, str]:
    key, sep, val = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {value!r}")
    return key, val


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="procpump",
        description="Run a program with redirected stdio and exit with its exit code.",
    )
    parser.add_argument("--cwd", help="Working directory for the program")
    parser.add_argument(
        "--env", action="append", type=_parse_env_item, default=[], metavar="KEY=VALUE",
        help="Set an environment variable (repeatable)",
    )
    parser.add_argument(
        "--clear-env", action="store_true",
        help="Start from an empty environment instead of the current one",
    )
    stdin_group = parser.add_mutually_exclusive_group()
    stdin_group.add_argument("--stdin", metavar="PATH", help="Read stdin from a file")
    stdin_group.add_argument("--input", metavar="TEXT", help="Feed TEXT as stdin")
    parser.add_argument("--stdout", metavar="PATH", help="Write stdout to a file")
    parser.add_argument("--stderr", metavar="PATH", help="Write stderr to a file")
    parser.add_argument(
        "--append", action="store_true",
        help="Append to --stdout/--stderr files instead of truncating",
    )
    parser.add_argument(
        "--capture", action="store_true",
        help="Capture stdout/stderr in memory and relay them after exit",
    )
    parser.add_argument(
        "--spawn", choices=[s.value for s in SpawnStrategy], default=None,
        help="Spawn strategy (default from PROCPUMP_SPAWN)",
    )
    parser.add_argument(
        "--pump", choices=[s.value for s in PumpStrategy], default=None,
        help="Pump strategy (default from PROCPUMP_PUMP)",
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Program and arguments")
    return parser


def _output_target(path: str | None, append: bool, buffer: bytearray | None):
    if path is not None:
        return append_to(path) if append else path
    return buffer


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line; returns the child's exit code."""
    config = get_config()
    configure_logging(config)

    parser = build_parser()
    args = parser.parse_args(argv)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("no command given")

    overrides = dict(args.env)
    if args.clear_env:
        env = overrides
    elif overrides:
        env = environ_with(overrides)
    else:
        env = None

    stdout_buf = bytearray() if args.capture and args.stdout is None else None
    stderr_buf = bytearray() if args.capture and args.stderr is None else None

    if args.input is not None:
        stdin = args.input.encode()
    else:
        stdin = args.stdin

    spec = ProcessSpec(
        argv=command,
        cwd=args.cwd,
        env=env,
        stdin=stdin,
        stdout=_output_target(args.stdout, args.append, stdout_buf),
        stderr=_output_target(args.stderr, args.append, stderr_buf),
    )

    runner = ProcessRunner(
        spawner=select_spawner(args.spawn or config.spawn_strategy.value),
        pump=select_pump(args.pump or config.pump_strategy.value, config.chunk_size),
    )

    try:
        code = runner.run(spec)
    except ProcpumpError as e:
        logger.error(f"{command[0]}: {e}")
        return 1

    for buffer, stream in ((stdout_buf, sys.stdout), (stderr_buf, sys.stderr)):
        if buffer:
            stream.buffer.write(buffer)
            stream.flush()

    logger.debug(f"{command[0]} exited with {code}")
    return code


if __name__ == "__main__":
    sys.exit(main())
