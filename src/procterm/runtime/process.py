"""The contract every executable backend implements.

A Process serves exactly one run and is driven by exactly one caller, the
Command that owns it. Subclasses must implement every abstract method;
instantiating an incomplete backend fails with TypeError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterable
from typing import BinaryIO

from ..context import RunContext
from ..term import WindowSize

__all__ = ["Process"]


class Process(ABC):
    """An executable target with standard streams.

    Lifecycle, as driven by Command:
        init -> (stdin/stdout/stderr) -> start -> [stop] -> wait -> cleanup

    cleanup() is called exactly once, after wait() returned.
    """

    @abstractmethod
    async def init(self, ctx: RunContext, is_pty: bool) -> None:
        """Prepare the process.

        Args:
            ctx: context governing the whole run
            is_pty: whether start() will run the process on a pty
        """

    @abstractmethod
    def stdout(self) -> BinaryIO | None:
        """The readable end of standard output."""

    @abstractmethod
    def stderr(self) -> BinaryIO | None:
        """The readable end of standard error."""

    @abstractmethod
    def stdin(self) -> BinaryIO | None:
        """The writable end of standard input."""

    @abstractmethod
    async def start(
        self,
        term: str,
        resize: AsyncIterable[WindowSize] | None,
        is_pty: bool,
    ) -> BinaryIO | None:
        """Start the process.

        Args:
            term: terminal name, typically the TERM environment variable
            resize: window sizes to apply while running; never None when is_pty
            is_pty: run on a pty; when False, term and resize are unused

        Returns:
            The pty the process runs on, or None for plain runs
        """

    @abstractmethod
    async def stop(self) -> None:
        """Interrupt the running process (best-effort)."""

    @abstractmethod
    async def wait(self) -> int:
        """Block until the process exits and return its exit code."""

    @abstractmethod
    async def cleanup(self) -> None:
        """Release every resource held by the process.

        Safe to call whether or not start() and wait() ran.

        Raises:
            ProcessInterruptedError: stop() interrupted a running process
        """
