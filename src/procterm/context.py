"""Cancellation context for a single run.

One RunContext governs an entire run: the backend receives it in init() and
the streaming engine races its completion against the stream tasks. Once the
context is done it stays done, and ``error`` tells why.
"""

from __future__ import annotations

import asyncio
import time

from .errors import CancellationError, DeadlineExceededError

__all__ = ["RunContext"]


class RunContext:
    """Cancellable, optionally time-limited run context.

    Example:
        ctx = RunContext(timeout=30.0)
        await command.init(ctx, is_pty=False)
        ...
        ctx.cancel()  # unblocks command.wait() with CancellationError

    Attributes:
        deadline: monotonic time at which the context expires, if any
    """

    def __init__(self, timeout: float | None = None) -> None:
        self.deadline: float | None = (
            time.monotonic() + timeout if timeout is not None else None
        )
        self._event = asyncio.Event()
        self._error: CancellationError | None = None

    @classmethod
    def background(cls) -> "RunContext":
        """A context that is only ever done when cancelled explicitly."""
        return cls()

    def cancel(self, error: CancellationError | None = None) -> None:
        """Mark the context as done. Later calls are ignored."""
        if self._error is None:
            self._error = error or CancellationError()
            self._event.set()

    @property
    def done(self) -> bool:
        self._check_deadline()
        return self._error is not None

    @property
    def error(self) -> CancellationError | None:
        """Why the context is done, or None while it is still live."""
        self._check_deadline()
        return self._error

    def raise_if_done(self) -> None:
        if self.done:
            raise self._error  # type: ignore[misc]

    async def wait(self) -> CancellationError:
        """Block until the context is done and return the reason."""
        self._check_deadline()
        if self.deadline is None:
            await self._event.wait()
        else:
            remaining = self.deadline - time.monotonic()
            try:
                await asyncio.wait_for(self._event.wait(), timeout=max(remaining, 0))
            except asyncio.TimeoutError:
                self.cancel(DeadlineExceededError())
        assert self._error is not None
        return self._error

    def _check_deadline(self) -> None:
        if self.deadline is not None and self._error is None and time.monotonic() >= self.deadline:
            self.cancel(DeadlineExceededError())

    def __repr__(self) -> str:
        state = type(self._error).__name__ if self._error else "live"
        return f"RunContext(state={state}, deadline={self.deadline})"
