"""Terminal handles, pipes and resize monitoring."""

from __future__ import annotations

from .pipes import new_read_pipe, new_write_pipe
from .resize import ResizeMonitor
from .std import StdTerminal, open_std_terminal
from .terminal import (
    FileTerminal,
    NullTerminal,
    Terminal,
    WindowSize,
    new_terminal,
    open_terminal,
)

__all__ = [
    "FileTerminal",
    "NullTerminal",
    "ResizeMonitor",
    "StdTerminal",
    "Terminal",
    "WindowSize",
    "new_read_pipe",
    "new_terminal",
    "new_write_pipe",
    "open_std_terminal",
    "open_terminal",
]
