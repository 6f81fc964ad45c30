"""procterm environment configuration.

Environment variables:
    PROCTERM_TERM: terminal name passed to processes started on a pty
        - defaults to $TERM, then "xterm"

    PROCTERM_CHUNK_SIZE: buffer size used when copying streams (bytes)
        - default 32768
        - clamped to 1024 .. 1048576

    PROCTERM_TERM_TIMEOUT: grace period after SIGTERM before SIGKILL (seconds)
        - default 2.0

    PROCTERM_KILL_TIMEOUT: how long to wait for a process after SIGKILL (seconds)
        - default 1.0

    PROCTERM_DRAIN_TIMEOUT: how long a finished command lets its output
        copies drain before it is marked done (seconds)
        - default 1.0

    PROCTERM_LOG_DEBUG: debug logging
        - true/1/yes = on (logs go to a file in the temp directory)
        - false/0/no = off (default, logs go to stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_TERM = "xterm"
DEFAULT_CHUNK_SIZE = 32 * 1024
MIN_CHUNK_SIZE = 1024
MAX_CHUNK_SIZE = 1024 * 1024
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0
DEFAULT_DRAIN_TIMEOUT = 1.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    """Parse a float environment variable and clamp it to [low, high]."""
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return max(low, min(parsed, high))


def _parse_chunk_size(value: str | None) -> int:
    if not value:
        return DEFAULT_CHUNK_SIZE
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_CHUNK_SIZE
    return max(MIN_CHUNK_SIZE, min(size, MAX_CHUNK_SIZE))


def _resolve_term(value: str | None) -> str:
    if value and value.strip():
        return value.strip()
    return os.environ.get("TERM") or DEFAULT_TERM


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "procterm"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"procterm_debug_{timestamp}.log"

    return str(log_file.resolve())


@dataclass
class Config:
    """procterm configuration.

    Attributes:
        term: terminal name for pty starts
        chunk_size: copy buffer size in bytes
        term_timeout: seconds to wait after SIGTERM
        kill_timeout: seconds to wait after SIGKILL
        drain_timeout: seconds a finished command waits for its output copies
        log_debug: debug logging to a file
        log_file: log file path (set when log_debug is on)
    """

    term: str = DEFAULT_TERM
    chunk_size: int = DEFAULT_CHUNK_SIZE
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    drain_timeout: float = DEFAULT_DRAIN_TIMEOUT
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(term={self.term}, "
            f"chunk_size={self.chunk_size}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"drain_timeout={self.drain_timeout}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def load_config() -> Config:
    """Load the configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("PROCTERM_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        term=_resolve_term(os.environ.get("PROCTERM_TERM")),
        chunk_size=_parse_chunk_size(os.environ.get("PROCTERM_CHUNK_SIZE")),
        term_timeout=_parse_float(
            os.environ.get("PROCTERM_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT, 0.0, 60.0
        ),
        kill_timeout=_parse_float(
            os.environ.get("PROCTERM_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT, 0.0, 60.0
        ),
        drain_timeout=_parse_float(
            os.environ.get("PROCTERM_DRAIN_TIMEOUT"), DEFAULT_DRAIN_TIMEOUT, 0.0, 60.0
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global configuration instance (loaded lazily)
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload the configuration (used by tests)."""
    global _config
    _config = load_config()
    return _config
