"""procpump environment configuration.

Environment variables:
    PROCPUMP_SPAWN: How children are created
        - auto = posix_spawn on POSIX, popen on Windows (default)
        - fork = os.fork + exec
        - posix_spawn = os.posix_spawn with file actions
        - popen = subprocess.Popen

    PROCPUMP_PUMP: How stdio is pumped while the child runs
        - auto = select on POSIX, threads on Windows (default)
        - select = single thread multiplexing with selectors
        - threads = one worker thread per stream

    PROCPUMP_CHUNK_SIZE: Read size in bytes for captured output
        - default 4096, limited to 512 .. 1 MiB

    PROCPUMP_LOG_DEBUG: Debug logging
        - true/1/yes = on (log written to a temporary file)
        - false/0/no = off (default, log to stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = [
    "Config",
    "SpawnStrategy",
    "PumpStrategy",
    "load_config",
    "get_config",
    "reload_config",
]

DEFAULT_CHUNK_SIZE = 4096
MIN_CHUNK_SIZE = 512
MAX_CHUNK_SIZE = 1024 * 1024


class SpawnStrategy(Enum):
    AUTO = "auto"
    FORK = "fork"
    POSIX_SPAWN = "posix_spawn"
    POPEN = "popen"

    @classmethod
    def from_string(cls, value: str) -> "SpawnStrategy":
        """Parse a strategy name; unknown values give AUTO."""
        value = value.lower().strip()
        for strategy in cls:
            if strategy.value == value:
                return strategy
        return cls.AUTO


class PumpStrategy(Enum):
    AUTO = "auto"
    SELECT = "select"
    THREADS = "threads"

    @classmethod
    def from_string(cls, value: str) -> "PumpStrategy":
        """Parse a strategy name; unknown values give AUTO."""
        value = value.lower().strip()
        for strategy in cls:
            if strategy.value == value:
                return strategy
        return cls.AUTO


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_chunk_size(value: str | None) -> int:
    if not value:
        return DEFAULT_CHUNK_SIZE
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_CHUNK_SIZE
    return max(MIN_CHUNK_SIZE, min(size, MAX_CHUNK_SIZE))


@dataclass
class Config:
    """procpump configuration.

    Attributes:
        spawn_strategy: Child creation strategy
        pump_strategy: Stdio pump strategy
        chunk_size: Read size for captured output
        log_debug: Debug logging to a temporary file
        log_file: Log file path (set when log_debug is on)
    """

    spawn_strategy: SpawnStrategy = SpawnStrategy.AUTO
    pump_strategy: PumpStrategy = PumpStrategy.AUTO
    chunk_size: int = DEFAULT_CHUNK_SIZE
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(spawn_strategy={self.spawn_strategy.value}, "
            f"pump_strategy={self.pump_strategy.value}, "
            f"chunk_size={self.chunk_size}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    log_dir = Path(tempfile.gettempdir()) / "procpump"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"procpump_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from the environment."""
    log_debug = _parse_bool(os.environ.get("PROCPUMP_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        spawn_strategy=SpawnStrategy.from_string(os.environ.get("PROCPUMP_SPAWN", "")),
        pump_strategy=PumpStrategy.from_string(os.environ.get("PROCPUMP_PUMP", "")),
        chunk_size=_parse_chunk_size(os.environ.get("PROCPUMP_CHUNK_SIZE")),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global instance, loaded lazily
_config: Config | None = None


def get_config() -> Config:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
