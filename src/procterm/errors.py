"""procterm exception hierarchy.

All errors raised by the lifecycle controller, the streaming engine and the
terminal handles derive from ProcTermError. Backend errors are passed through
unchanged, so callers may also see exceptions of the backend's own types.
"""

from __future__ import annotations

__all__ = [
    "ProcTermError",
    "StateError",
    "TerminalMismatchError",
    "NotATerminalError",
    "BackendError",
    "ProcessInterruptedError",
    "CancellationError",
    "DeadlineExceededError",
    "TransportError",
    "UnsupportedPlatformError",
]


class ProcTermError(Exception):
    """Base exception for procterm."""
    pass


class StateError(ProcTermError):
    """Operation invoked in the wrong lifecycle state.

    Raising a StateError never mutates the state of the controller.
    """
    pass


class TerminalMismatchError(ProcTermError):
    """Pty flag passed to init() disagrees with the start method used."""
    pass


class NotATerminalError(ProcTermError):
    """Terminal query or mutation on something that is not a terminal."""

    def __init__(self, message: str = "Terminal: File() is not a terminal") -> None:
        super().__init__(message)


class BackendError(ProcTermError):
    """Failure inside a concrete backend (lookup, spawn, kill)."""
    pass


class ProcessInterruptedError(BackendError):
    """Reported by cleanup() when stop() reached a still-running process."""

    def __init__(self, message: str = "process was interrupted") -> None:
        super().__init__(message)


class CancellationError(ProcTermError):
    """The RunContext governing a run was cancelled."""

    def __init__(self, message: str = "context canceled") -> None:
        super().__init__(message)


class DeadlineExceededError(CancellationError):
    """The RunContext governing a run timed out."""

    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


class TransportError(ProcTermError):
    """A Streamer failed to attach, resize, fetch the result or detach.

    Attributes:
        operation: name of the streamer operation that failed
    """

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation}: {message}")


class UnsupportedPlatformError(ProcTermError):
    """A pty or raw-mode primitive is not available on this platform."""
    pass
