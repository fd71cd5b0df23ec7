"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path for local runs
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

CHILD_SCRIPT = Path(__file__).parent / "fixtures" / "child.py"

IS_WINDOWS = sys.platform == "win32"

# Spawn strategies available on this platform
SPAWNERS = ["popen"] if IS_WINDOWS else ["fork", "posix_spawn", "popen"]
PUMPS = ["threads"] if IS_WINDOWS else ["select", "threads"]


def child_argv(*args: str) -> list[str]:
    """Command line running the test child with the current interpreter."""
    return [sys.executable, str(CHILD_SCRIPT), *args]


@pytest.fixture
def child():
    """Build command lines for tests/fixtures/child.py."""
    return child_argv


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Temporary working directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture(autouse=True)
def _clean_config(monkeypatch: pytest.MonkeyPatch):
    """Run every test against default configuration."""
    from procpump.config import reload_config

    for name in ("PROCPUMP_SPAWN", "PROCPUMP_PUMP", "PROCPUMP_CHUNK_SIZE", "PROCPUMP_LOG_DEBUG"):
        monkeypatch.delenv(name, raising=False)
    reload_config()
    yield
    monkeypatch.undo()
    reload_config()
