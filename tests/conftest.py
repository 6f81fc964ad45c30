"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path (development checkouts)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from procterm.config import reload_config  # noqa: E402

PROCTERM_ENV = (
    "PROCTERM_TERM",
    "PROCTERM_CHUNK_SIZE",
    "PROCTERM_TERM_TIMEOUT",
    "PROCTERM_KILL_TIMEOUT",
    "PROCTERM_DRAIN_TIMEOUT",
    "PROCTERM_LOG_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch: pytest.MonkeyPatch):
    """Every test starts from the default configuration."""
    for name in PROCTERM_ENV:
        monkeypatch.delenv(name, raising=False)
    reload_config()
    yield
    for name in PROCTERM_ENV:
        monkeypatch.delenv(name, raising=False)
    reload_config()


@pytest.fixture
def pipe():
    """An os.pipe() pair as unbuffered file objects: (read_file, write_file)."""
    read_fd, write_fd = os.pipe()
    read_file = os.fdopen(read_fd, "rb", buffering=0)
    write_file = os.fdopen(write_fd, "wb", buffering=0)
    yield read_file, write_file
    read_file.close()
    write_file.close()
