"""Single-fire latches and the dual-close primitive.

A shared duplex resource (a pty master, a hijacked socket) is usually consumed
by two independent tasks: one reading, one writing. Neither of them may close
the resource on its own, because the other one may still be using it.

DualCloseWrapper solves this by requiring both halves to report completion:
close() for the read side, close_write() for the write side. The wrapped
object's close() runs exactly once, at the moment the second distinct
operation fires.

Nothing in this module ever blocks, so it is safe to call from copy tasks
running in different threads or on the event loop.
"""

from __future__ import annotations

import itertools
import threading
from typing import Any, Protocol, runtime_checkable

__all__ = [
    "Closer",
    "DualCloser",
    "DualCloseWrapper",
    "Once",
    "new_dual_closer",
]


@runtime_checkable
class Closer(Protocol):
    def close(self) -> Any: ...


@runtime_checkable
class DualCloser(Protocol):
    """An object that can close its read and its write stream separately."""

    def close(self) -> Any: ...

    def close_write(self) -> Any: ...


class Once:
    """Single-fire latch.

    fire() returns True for exactly one caller, no matter how many threads or
    tasks race on it. A non-blocking acquire is the compare-and-swap: the lock
    is never released, so every later acquire fails immediately.
    """

    __slots__ = ("_lock",)

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def fire(self) -> bool:
        return self._lock.acquire(blocking=False)

    @property
    def fired(self) -> bool:
        return self._lock.locked()

    def __repr__(self) -> str:
        return f"Once(fired={self.fired})"


class DualCloseWrapper:
    """Wraps a closer and closes it once both close() and close_write() ran.

    Both methods may be called any number of times, concurrently. Only the
    call that completes the pair invokes closer.close(); an exception raised
    by it propagates to that call only.

    Attributes:
        closer: the wrapped object
    """

    __slots__ = ("closer", "_close", "_close_write", "_count")

    def __init__(self, closer: Closer) -> None:
        self.closer = closer
        self._close = Once()
        self._close_write = Once()
        # next() on itertools.count is atomic
        self._count = itertools.count(1)

    def close(self) -> None:
        """Record that the read side is done."""
        if self._close.fire():
            self._arrive()

    def close_write(self) -> None:
        """Record that the write side is done."""
        if self._close_write.fire():
            self._arrive()

    @property
    def closed(self) -> bool:
        """True once both halves have been reported."""
        return self._close.fired and self._close_write.fired

    def _arrive(self) -> None:
        if next(self._count) == 2:
            self.closer.close()

    def __repr__(self) -> str:
        return (
            f"DualCloseWrapper(closer={self.closer!r}, "
            f"close={self._close.fired}, close_write={self._close_write.fired})"
        )


def new_dual_closer(closer: Closer | None) -> DualCloser | None:
    """Return an object implementing the dual-close semantics of closer.

    Objects that already provide both close() and close_write() are returned
    unchanged; anything else is wrapped. None is passed through.
    """
    if closer is None:
        return None
    if isinstance(closer, DualCloser):
        return closer
    return DualCloseWrapper(closer)
