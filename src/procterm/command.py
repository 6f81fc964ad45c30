"""Lifecycle controller for a Process.

Command drives a backend through

    DEFAULT -> INITIALIZED -> STARTED -> WAITING -> DONE

and owns the byte pumps between the caller's streams and the backend. Every
public method may be called from any number of tasks: illegal calls raise
StateError without changing anything, wait() and cleanup() share a single
result between all of their callers.

Example:
    command = Command(ExecProcess("ls", ["-l"]))
    await command.init(RunContext(), is_pty=False)
    await command.start(stdout, stderr)
    exit_code = await command.wait()
    await command.cleanup()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Callable
from enum import IntEnum
from typing import Any, BinaryIO

import anyio

from .closer import DualCloseWrapper, Once
from .config import get_config
from .context import RunContext
from .errors import StateError, TerminalMismatchError
from .runtime.process import Process
from .streams import copy_stream
from .term import WindowSize

__all__ = ["Command", "CommandState"]

logger = logging.getLogger(__name__)


class CommandState(IntEnum):
    DEFAULT = 0
    INITIALIZED = 1
    STARTED = 2
    WAITING = 3
    DONE = 4


class _Discard:
    """Sink for output nobody asked for."""

    def write(self, data: bytes) -> int:
        return len(data)


class Command:
    """Runs one Process through its lifecycle.

    Attributes:
        process: the backend being driven
        drain_timeout: seconds the waiter lets output pumps finish after exit
    """

    def __init__(self, process: Process, drain_timeout: float | None = None) -> None:
        self.process = process
        self.drain_timeout = (
            drain_timeout if drain_timeout is not None else get_config().drain_timeout
        )

        self._lock = asyncio.Lock()
        self._state = CommandState.DEFAULT
        self._is_pty = False

        self._copy_tasks: list[asyncio.Task[None]] = []
        self._output_tasks: list[asyncio.Task[None]] = []
        self._waiter: asyncio.Task[None] | None = None
        self._result: asyncio.Future[int] | None = None

        self._cleanup_once = Once()
        self._cleanup_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> CommandState:
        return self._state

    @property
    def is_pty(self) -> bool:
        return self._is_pty

    def __repr__(self) -> str:
        return f"Command({self.process}, state={self._state.name})"

    async def init(self, ctx: RunContext, is_pty: bool) -> None:
        """Prepare the backend for a plain (is_pty=False) or pty run."""
        async with self._lock:
            if self._state != CommandState.DEFAULT:
                raise StateError("Command: Already initialized")

            await self.process.init(ctx, is_pty)
            self._is_pty = is_pty
            self._state = CommandState.INITIALIZED
            logger.debug(f"Command initialized: {self.process} (pty={is_pty})")

    async def start(
        self,
        stdout: BinaryIO | None,
        stderr: BinaryIO | None,
        stdin: BinaryIO | None = None,
    ) -> None:
        """Start a plain run, copying the backend's streams to and from the caller's.

        stdout or stderr set to None discards that stream; stdin set to None
        leaves the backend's standard input open and empty.
        """
        async with self._lock:
            self._check_startable(pty=False)

            backend_stdin = self.process.stdin()
            if stdin is not None and backend_stdin is not None:
                self._spawn_copy(backend_stdin, stdin, on_done=backend_stdin.close)

            backend_stdout = self.process.stdout()
            if backend_stdout is not None:
                self._spawn_copy(stdout or _Discard(), backend_stdout, output=True)

            backend_stderr = self.process.stderr()
            if backend_stderr is not None:
                self._spawn_copy(stderr or _Discard(), backend_stderr, output=True)

            await self._start_process("", None, False)

    async def start_pty(
        self,
        terminal: BinaryIO,
        term: str = "",
        resize: AsyncIterable[WindowSize] | None = None,
    ) -> None:
        """Start a pty run connected to terminal.

        Args:
            terminal: file used for both output and input, typically the
                controlling terminal
            term: terminal name for the child
            resize: window sizes to forward; None never resizes
        """
        async with self._lock:
            self._check_startable(pty=True)

            if resize is None:
                send, receive = anyio.create_memory_object_stream[WindowSize](0)
                send.close()
                resize = receive

            pty = await self._start_process(term, resize, True)
            if pty is None:
                return

            guard = DualCloseWrapper(pty)
            self._spawn_copy(terminal, pty, output=True, on_done=guard.close)
            self._spawn_copy(pty, terminal, on_done=guard.close_write)

    async def wait(self) -> int:
        """Wait for the run to finish and return the exit code.

        Every caller gets the same exit code, or the same exception.
        """
        async with self._lock:
            if self._state < CommandState.STARTED or self._result is None:
                raise StateError("Command: Process is not running")

            if self._state == CommandState.STARTED:
                self._state = CommandState.WAITING
                self._waiter = asyncio.create_task(self._wait_process())
            result = self._result

        return await asyncio.shield(result)

    async def stop(self) -> None:
        """Ask the backend to interrupt the run. Does nothing once it is done."""
        async with self._lock:
            if self._state == CommandState.DONE:
                return
            if self._state not in (CommandState.STARTED, CommandState.WAITING):
                raise StateError("Command: Process is not running")

            await self.process.stop()

    async def cleanup(self) -> None:
        """Release the backend and join every task. Only valid once done.

        Every caller gets the same outcome as the single backend cleanup().
        """
        async with self._lock:
            if self._state != CommandState.DONE:
                raise StateError("Command: Process is running")
            task = self._schedule_cleanup()

        await asyncio.shield(task)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_startable(self, pty: bool) -> None:
        if self._state < CommandState.INITIALIZED:
            raise StateError("Command: Not initialized")
        if self._state > CommandState.INITIALIZED:
            raise StateError("Command: Already started")
        if self._is_pty and not pty:
            raise TerminalMismatchError("Command: Is a Terminal")
        if pty and not self._is_pty:
            raise TerminalMismatchError("Command: Not a Terminal")

    async def _start_process(
        self,
        term: str,
        resize: AsyncIterable[WindowSize] | None,
        is_pty: bool,
    ) -> BinaryIO | None:
        self._result = asyncio.get_running_loop().create_future()
        try:
            pty = await self.process.start(term, resize, is_pty)
        except Exception as e:
            # the failure becomes the result of the run
            self._state = CommandState.DONE
            self._result.set_exception(e)
            self._result.exception()
            logger.debug(f"Command failed to start: {self.process}: {e}")
            raise

        self._state = CommandState.STARTED
        logger.debug(f"Command started: {self.process}")
        return pty

    def _spawn_copy(
        self,
        dst: Any,
        src: Any,
        *,
        output: bool = False,
        on_done: Callable[[], Any] | None = None,
    ) -> None:
        async def pump() -> None:
            try:
                await copy_stream(dst, src)
            finally:
                if on_done is not None:
                    on_done()

        task = asyncio.create_task(pump())
        self._copy_tasks.append(task)
        if output:
            self._output_tasks.append(task)

    async def _wait_process(self) -> None:
        exit_code = 0
        error: Exception | None = None
        try:
            exit_code = await self.process.wait()
        except Exception as e:
            error = e

        if self._output_tasks:
            await asyncio.wait(self._output_tasks, timeout=self.drain_timeout)

        async with self._lock:
            assert self._result is not None
            self._state = CommandState.DONE
            if error is not None:
                self._result.set_exception(error)
            else:
                self._result.set_result(exit_code)
            self._schedule_cleanup()
        logger.debug(f"Command done: {self.process} (exit={exit_code}, error={error!r})")

    def _schedule_cleanup(self) -> asyncio.Task[None]:
        if self._cleanup_once.fire():
            self._cleanup_task = asyncio.create_task(self._cleanup())
            self._cleanup_task.add_done_callback(_log_cleanup_result)
        assert self._cleanup_task is not None
        return self._cleanup_task

    async def _cleanup(self) -> None:
        # pumps still hold the backend descriptors; join them first
        for task in self._copy_tasks:
            task.cancel()
        await asyncio.gather(*self._copy_tasks, return_exceptions=True)
        try:
            await self.process.cleanup()
        finally:
            if self._waiter is not None:
                await asyncio.gather(self._waiter, return_exceptions=True)


def _log_cleanup_result(task: asyncio.Task[None]) -> None:
    # retrieves the exception so an unobserved automatic cleanup stays quiet
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Command cleanup: {error!r}")
