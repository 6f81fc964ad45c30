"""Access to the terminal the current program runs in."""

from __future__ import annotations

import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import BinaryIO

from anyio.streams.memory import MemoryObjectReceiveStream

from ..config import get_config
from .resize import ResizeMonitor
from .terminal import Terminal, WindowSize, new_terminal

__all__ = ["StdTerminal", "open_std_terminal"]


@dataclass(frozen=True)
class StdTerminal:
    """The controlling terminal, ready to be handed to Command.start_pty().

    Attributes:
        terminal: handle over stdout, in raw input and output mode
        term: terminal name ($TERM or the configured default)
        resize: sizes published on every SIGWINCH
    """

    terminal: Terminal
    term: str
    resize: MemoryObjectReceiveStream[WindowSize]


@asynccontextmanager
async def open_std_terminal(file: BinaryIO | None = None) -> AsyncIterator[StdTerminal | None]:
    """Put the standard terminal into raw mode for the duration of the block.

    Yields None (and changes nothing) when stdout is not a terminal. On exit
    the previous terminal modes are restored and resize monitoring stops.

    The descriptor is duplicated, so closing the handle never closes stdout.
    """
    if file is None:
        file = os.fdopen(os.dup(sys.stdout.fileno()), "r+b", buffering=0)
    terminal = new_terminal(file)
    if not terminal.is_terminal:
        terminal.close()
        yield None
        return

    terminal.set_raw_input()
    monitor: ResizeMonitor | None = None
    try:
        terminal.set_raw_output()
        monitor = ResizeMonitor(terminal)
        await monitor.start()
        yield StdTerminal(terminal=terminal, term=get_config().term, resize=monitor.sizes)
    finally:
        if monitor is not None:
            await monitor.stop()
        terminal.restore_input()
        terminal.restore_output()
        terminal.close()
