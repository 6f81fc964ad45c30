"""Low-level, OS-specific terminal primitives.

Thin wrappers around termios, fcntl and os.openpty. They are used by the
Terminal handles and are not meant to be called directly.

On Windows none of the termios based functions are available; they raise
UnsupportedPlatformError instead.
"""

from __future__ import annotations

import contextlib
import os
import struct
import sys
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any, Literal

from ..errors import UnsupportedPlatformError

if sys.platform != "win32":
    import fcntl
    import termios

__all__ = [
    "IS_WINDOWS",
    "PTY_SUPPORT",
    "TerminalState",
    "get_fd_info",
    "get_winsize",
    "open_pty",
    "reset_terminal",
    "set_raw_terminal",
    "set_raw_terminal_output",
    "set_winsize",
]

IS_WINDOWS = sys.platform == "win32"

# Whether open_pty() works on this platform
PTY_SUPPORT = not IS_WINDOWS

# termios attribute list indexes
_IFLAG, _OFLAG, _CFLAG, _LFLAG, _CC = 0, 1, 2, 3, 6

_WINSIZE = "HHHH"


@dataclass(frozen=True)
class TerminalState:
    """Saved terminal attributes, as returned by termios.tcgetattr().

    Attributes:
        attrs: the attribute list captured before raw mode was applied
        scope: which side of the terminal the state belongs to
    """

    attrs: tuple[Any, ...]
    scope: Literal["input", "output"]


def _require_posix(name: str) -> None:
    if IS_WINDOWS:
        raise UnsupportedPlatformError(f"{name} is not supported on Windows")


@contextlib.contextmanager
def _termios_errors() -> Iterator[None]:
    # termios.error is not an OSError; callers only deal with OSError
    try:
        yield
    except termios.error as e:
        raise OSError(*e.args) from e


def get_fd_info(file: Any) -> tuple[int | None, bool]:
    """Return (descriptor, is_terminal) for a file object or descriptor."""
    if isinstance(file, int):
        fd = file
    else:
        try:
            fd = file.fileno()
        except (AttributeError, ValueError, OSError):
            return None, False
    try:
        return fd, os.isatty(fd)
    except OSError:
        return fd, False


def set_raw_terminal(fd: int) -> TerminalState:
    """Put the input side of fd into raw mode and return the previous state.

    Same flags as cfmakeraw(3), except that output post-processing is left
    alone; that is set_raw_terminal_output()'s job.
    """
    _require_posix("set_raw_terminal")
    with _termios_errors():
        old = termios.tcgetattr(fd)
    new = list(old)
    new[_CC] = list(old[_CC])
    new[_IFLAG] &= ~(
        termios.IGNBRK | termios.BRKINT | termios.PARMRK | termios.ISTRIP
        | termios.INLCR | termios.IGNCR | termios.ICRNL | termios.IXON
    )
    new[_LFLAG] &= ~(termios.ECHO | termios.ECHONL | termios.ICANON | termios.ISIG | termios.IEXTEN)
    new[_CFLAG] &= ~(termios.CSIZE | termios.PARENB)
    new[_CFLAG] |= termios.CS8
    new[_CC][termios.VMIN] = 1
    new[_CC][termios.VTIME] = 0
    with _termios_errors():
        termios.tcsetattr(fd, termios.TCSANOW, new)
    return TerminalState(attrs=tuple(old), scope="input")


def set_raw_terminal_output(fd: int) -> TerminalState:
    """Disable output post-processing on fd and return the previous state."""
    _require_posix("set_raw_terminal_output")
    with _termios_errors():
        old = termios.tcgetattr(fd)
        new = list(old)
        new[_OFLAG] &= ~termios.OPOST
        termios.tcsetattr(fd, termios.TCSANOW, new)
    return TerminalState(attrs=tuple(old), scope="output")


def reset_terminal(fd: int, state: TerminalState) -> None:
    """Restore the flags captured in state, leaving the other side alone."""
    _require_posix("reset_terminal")
    with _termios_errors():
        current = termios.tcgetattr(fd)
    saved = list(state.attrs)
    if state.scope == "input":
        current[_IFLAG] = saved[_IFLAG]
        current[_CFLAG] = saved[_CFLAG]
        current[_LFLAG] = saved[_LFLAG]
        current[_CC] = saved[_CC]
    else:
        current[_OFLAG] = saved[_OFLAG]
    with _termios_errors():
        termios.tcsetattr(fd, termios.TCSADRAIN, current)


def get_winsize(fd: int) -> tuple[int, int]:
    """Return (height, width) of the terminal referred to by fd."""
    _require_posix("get_winsize")
    packed = fcntl.ioctl(fd, termios.TIOCGWINSZ, struct.pack(_WINSIZE, 0, 0, 0, 0))
    height, width, _, _ = struct.unpack(_WINSIZE, packed)
    return height, width


def set_winsize(fd: int, height: int, width: int) -> None:
    """Set the window size of the terminal referred to by fd."""
    _require_posix("set_winsize")
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack(_WINSIZE, height, width, 0, 0))


def open_pty() -> tuple[int, int]:
    """Open a new pty pair and return (tty, pty) descriptors."""
    _require_posix("open_pty")
    pty_fd, tty_fd = os.openpty()
    return tty_fd, pty_fd
