"""Terminal handles.

A Terminal wraps a file object that may or may not be a terminal. Raw mode
can be set and restored for its input and output side independently; both
pairs are idempotent and can be reused any number of times.

new_terminal(None) returns a NullTerminal: every query reports "not a
terminal" and every mutator is a successful no-op, so callers never need to
special-case a missing descriptor.
"""

from __future__ import annotations

import contextlib
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, BinaryIO

from ..errors import NotATerminalError
from . import lowlevel

__all__ = [
    "FileTerminal",
    "NullTerminal",
    "Terminal",
    "WindowSize",
    "new_terminal",
    "open_terminal",
]

_MAX_SIZE = 0xFFFF


@dataclass(frozen=True)
class WindowSize:
    """Size of a terminal window, in character cells."""

    height: int
    width: int

    def __post_init__(self) -> None:
        for name in ("height", "width"):
            value = getattr(self, name)
            if not 0 <= value <= _MAX_SIZE:
                raise ValueError(f"WindowSize.{name} out of range: {value}")


class Terminal(ABC):
    """A file object that is potentially a terminal."""

    @property
    @abstractmethod
    def file(self) -> BinaryIO | None:
        """The wrapped file object, if any."""

    @property
    @abstractmethod
    def is_terminal(self) -> bool:
        """Whether the wrapped file is a terminal. Fixed at construction."""

    @abstractmethod
    def close(self) -> None:
        """Close the underlying file. Idempotent."""

    @abstractmethod
    def set_raw_input(self) -> None:
        """Put the input side into raw mode. No-op if not a terminal or already raw."""

    @abstractmethod
    def restore_input(self) -> None:
        """Undo set_raw_input(). No-op if raw input was never set."""

    @abstractmethod
    def set_raw_output(self) -> None:
        """Put the output side into raw mode. No-op if not a terminal or already raw."""

    @abstractmethod
    def restore_output(self) -> None:
        """Undo set_raw_output(). No-op if raw output was never set."""

    @abstractmethod
    def get_size(self) -> WindowSize:
        """Return the current size; NotATerminalError if not a terminal."""

    @abstractmethod
    def resize_to(self, size: WindowSize) -> None:
        """Resize the terminal.

        Raises NotATerminalError if not a terminal. Failures of the resize
        itself are ignored.
        """


class FileTerminal(Terminal):
    """Terminal handle over a real file object.

    The handle owns the file once wrapped: close() closes it.
    """

    def __init__(self, file: BinaryIO) -> None:
        self._file = file
        self._fd, self._is_terminal = lowlevel.get_fd_info(file)
        # raw-mode tokens: present iff the raw mode is applied
        self._states: dict[str, lowlevel.TerminalState] = {}

    @property
    def file(self) -> BinaryIO:
        return self._file

    @property
    def is_terminal(self) -> bool:
        return self._is_terminal

    @property
    def raw_input(self) -> bool:
        return "input" in self._states

    @property
    def raw_output(self) -> bool:
        return "output" in self._states

    def close(self) -> None:
        self._file.close()

    def set_raw_input(self) -> None:
        self._set_raw("input", lowlevel.set_raw_terminal)

    def restore_input(self) -> None:
        self._restore("input")

    def set_raw_output(self) -> None:
        self._set_raw("output", lowlevel.set_raw_terminal_output)

    def restore_output(self) -> None:
        self._restore("output")

    def get_size(self) -> WindowSize:
        if not self._is_terminal:
            raise NotATerminalError()
        height, width = lowlevel.get_winsize(self._fd)
        return WindowSize(height=height, width=width)

    def resize_to(self, size: WindowSize) -> None:
        if not self._is_terminal:
            raise NotATerminalError()
        # best-effort: a vanished pty must not break resize forwarding
        with contextlib.suppress(OSError):
            lowlevel.set_winsize(self._fd, size.height, size.width)

    def _set_raw(self, scope: str, apply: Any) -> None:
        if not self._is_terminal or scope in self._states:
            return
        self._states.setdefault(scope, apply(self._fd))

    def _restore(self, scope: str) -> None:
        # pop() clears the token atomically: exactly one caller restores
        state = self._states.pop(scope, None)
        if state is None:
            return
        lowlevel.reset_terminal(self._fd, state)

    def __repr__(self) -> str:
        return (
            f"FileTerminal(fd={self._fd}, is_terminal={self._is_terminal}, "
            f"raw={sorted(self._states)})"
        )


class NullTerminal(Terminal):
    """Terminal handle for an absent file. Every operation is a no-op."""

    @property
    def file(self) -> None:
        return None

    @property
    def is_terminal(self) -> bool:
        return False

    def close(self) -> None:
        pass

    def set_raw_input(self) -> None:
        pass

    def restore_input(self) -> None:
        pass

    def set_raw_output(self) -> None:
        pass

    def restore_output(self) -> None:
        pass

    def get_size(self) -> WindowSize:
        raise NotATerminalError()

    def resize_to(self, size: WindowSize) -> None:
        raise NotATerminalError()

    def __repr__(self) -> str:
        return "NullTerminal()"


def new_terminal(file: BinaryIO | None) -> Terminal:
    """Wrap file in a Terminal handle; None yields a NullTerminal."""
    if file is None:
        return NullTerminal()
    return FileTerminal(file)


def open_terminal() -> tuple[Terminal, Terminal]:
    """Open a new pty pair and return its (tty, pty) handles.

    The tty side is used by the program, the pty side by the controlling
    party.
    """
    tty_fd, pty_fd = lowlevel.open_pty()
    tty = os.fdopen(tty_fd, "r+b", buffering=0)
    pty = os.fdopen(pty_fd, "r+b", buffering=0)
    return new_terminal(tty), new_terminal(pty)
