"""Executable lookup and environment helpers.

These feed the spawner but hold no descriptors or processes themselves.
"""

from __future__ import annotations

import os
import shutil
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path

__all__ = [
    "find_executable",
    "resolve_argv0",
    "environments",
    "environ_with",
    "home",
]

IS_WINDOWS = sys.platform == "win32"


def _has_separator(name: str) -> bool:
    if os.sep in name:
        return True
    return bool(os.altsep) and os.altsep in name


def find_executable(name: str, env: Mapping[str, str] | None = None) -> str | None:
    """Search PATH for ``name``.

    Names containing a path separator are never searched. The PATH of
    ``env`` is used when it defines one, otherwise the parent's.

    Returns:
        Absolute path of the first executable match, or None
    """
    if not name or _has_separator(name):
        return None
    search_path = None
    if env is not None and "PATH" in env:
        search_path = env["PATH"]
    found = shutil.which(name, path=search_path)
    return os.path.abspath(found) if found else None


def resolve_argv0(argv: Sequence[str], env: Mapping[str, str] | None = None) -> list[str]:
    """Copy of argv with argv[0] resolved against PATH when found there.

    Unresolvable names pass through unchanged so that the exec call fails
    on its own terms.
    """
    resolved = list(argv)
    found = find_executable(resolved[0], env)
    if found is not None:
        resolved[0] = found
    return resolved


def environments() -> dict[str, str]:
    """Point-in-time copy of the current environment."""
    return dict(os.environ)


def environ_with(overrides: Mapping[str, str]) -> dict[str, str]:
    """Current environment with ``overrides`` layered on top."""
    env = environments()
    env.update(overrides)
    return env


def home() -> str:
    """The user's home directory."""
    if IS_WINDOWS:
        drive = os.environ.get("HOMEDRIVE")
        path = os.environ.get("HOMEPATH")
        if drive and path:
            return drive + path
    else:
        value = os.environ.get("HOME")
        if value:
            return value
    return str(Path.home())
