"""Pipes with one end wrapped in a Terminal handle."""

from __future__ import annotations

import os
from typing import BinaryIO

from .terminal import Terminal, new_terminal

__all__ = ["new_read_pipe", "new_write_pipe"]


def new_write_pipe() -> tuple[BinaryIO, Terminal]:
    """Return a new pipe whose write end is wrapped in a Terminal."""
    read_fd, write_fd = os.pipe()
    read = os.fdopen(read_fd, "rb", buffering=0)
    write = os.fdopen(write_fd, "wb", buffering=0)
    return read, new_terminal(write)


def new_read_pipe() -> tuple[Terminal, BinaryIO]:
    """Return a new pipe whose read end is wrapped in a Terminal."""
    read_fd, write_fd = os.pipe()
    read = os.fdopen(read_fd, "rb", buffering=0)
    write = os.fdopen(write_fd, "wb", buffering=0)
    return new_terminal(read), write
