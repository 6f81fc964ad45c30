"""A Process implemented on top of a pluggable Streamer transport.

StreamingProcess owns everything that is the same for every transport: the
local (tty, pty) pair or the three stdio pipes, raw-mode bookkeeping, resize
forwarding, and the rules deciding when a run is over. A Streamer only has
to move bytes and talk to the remote side.

Stream completion rules (wait):
- the output stream finishing ends the run;
- the input stream finishing is not enough, the output stream must finish
  as well;
- the governing RunContext being cancelled ends the run immediately.

Terminal modes are restored exactly once, on every exit path. In pty mode
the local tty is closed as soon as the output stream ends.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, Callable
from typing import BinaryIO

from ..closer import Once
from ..context import RunContext
from ..errors import BackendError, ProcessInterruptedError, StateError
from ..streams import close_stream
from ..term import (
    NullTerminal,
    Terminal,
    WindowSize,
    new_read_pipe,
    new_write_pipe,
    open_terminal,
)
from .process import Process

__all__ = ["Streamer", "StreamingProcess"]

logger = logging.getLogger(__name__)

RestoreTerminals = Callable[[], None]


class Streamer(ABC):
    """Connection to a (typically remote) process.

    stream_output() and stream_input() signal completion by returning and
    failure by raising; the engine runs each of them as its own task.
    """

    @abstractmethod
    async def init(self, ctx: RunContext, term: str, is_pty: bool) -> None:
        """Prepare the remote process configuration."""

    @abstractmethod
    async def attach(self, ctx: RunContext, is_pty: bool) -> None:
        """Create the remote process and connect to its streams."""

    @abstractmethod
    async def stream_output(
        self,
        ctx: RunContext,
        stdout: BinaryIO,
        stderr: BinaryIO | None,
        restore_terminals: RestoreTerminals,
    ) -> None:
        """Copy remote output into stdout and stderr until it ends.

        stderr is None on a pty, where both streams arrive combined.
        """

    @abstractmethod
    async def stream_input(
        self,
        ctx: RunContext,
        stdin: BinaryIO,
        restore_terminals: RestoreTerminals,
    ) -> None:
        """Copy stdin to the remote process until it ends."""

    @abstractmethod
    async def resize_to(self, ctx: RunContext, size: WindowSize) -> None:
        """Resize the remote terminal."""

    @abstractmethod
    async def result(self, ctx: RunContext) -> int:
        """Return the exit code of the remote process."""

    @abstractmethod
    async def detach(self, ctx: RunContext) -> None:
        """Disconnect from the remote streams."""


class StreamingProcess(Process):
    """Process driven through a Streamer.

    Example:
        ```python
        process = StreamingProcess(DockerExecStreamer(client, "web", ["bash"]))
        command = Command(process)
        await command.init(RunContext(), is_pty=True)
        await command.start_pty(terminal, "xterm", sizes)
        code = await command.wait()
        ```

    Attributes:
        streamer: transport used to reach the process
    """

    def __init__(self, streamer: Streamer) -> None:
        self.streamer = streamer

        self._ctx: RunContext | None = None
        self._is_pty: bool = False

        # streams handed out through stdout()/stderr()/stdin()
        self._stdout: BinaryIO | None = None
        self._stderr: BinaryIO | None = None
        self._stdin: BinaryIO | None = None

        # local endpoints the streamer reads from and writes to
        self._stdout_term: Terminal = NullTerminal()
        self._stderr_term: Terminal = NullTerminal()
        self._stdin_term: Terminal = NullTerminal()
        self._pty_term: Terminal | None = None

        self._output_task: asyncio.Task[None] | None = None
        self._input_task: asyncio.Task[None] | None = None
        self._resize_task: asyncio.Task[None] | None = None
        self._restore_once = Once()

        # set when the run ended abnormally (interrupted, result unavailable)
        self._exited: bool = False

    def __str__(self) -> str:
        return str(self.streamer)

    # ------------------------------------------------------------------
    # Process interface
    # ------------------------------------------------------------------

    async def init(self, ctx: RunContext, is_pty: bool) -> None:
        self._ctx = ctx
        self._is_pty = is_pty
        if is_pty:
            self._init_term()
        else:
            self._init_plain()

    def _init_plain(self) -> None:
        self._stdout, self._stdout_term = new_write_pipe()
        self._stderr, self._stderr_term = new_write_pipe()
        self._stdin_term, self._stdin = new_read_pipe()

    def _init_term(self) -> None:
        tty, pty = open_terminal()

        # the pty side is kept for resizing
        self._pty_term = pty

        # the tty side carries output and input
        self._stdout = tty.file
        self._stdout_term = tty
        self._stdin = tty.file
        self._stdin_term = tty

    def stdout(self) -> BinaryIO | None:
        return self._stdout

    def stderr(self) -> BinaryIO | None:
        return self._stderr

    def stdin(self) -> BinaryIO | None:
        return self._stdin

    async def start(
        self,
        term: str,
        resize: AsyncIterable[WindowSize] | None,
        is_pty: bool,
    ) -> BinaryIO | None:
        ctx = self._require_ctx()
        await self.streamer.init(ctx, term, is_pty)

        if is_pty and resize is not None and self._pty_term is not None:
            self._resize_task = asyncio.create_task(self._forward_resizes(ctx, resize))

        self._set_raw_terminals()

        await self.streamer.attach(ctx, is_pty)

        self._output_task = asyncio.create_task(self._stream_output(ctx))
        self._input_task = asyncio.create_task(
            self.streamer.stream_input(ctx, self._stdin_term.file, self.restore_terminals)
        )
        logger.debug(f"Streaming started: {self} (pty={is_pty})")

        if is_pty and self._pty_term is not None:
            return self._pty_term.file
        return None

    async def stop(self) -> None:
        running = [
            task for task in (self._output_task, self._input_task)
            if task is not None and not task.done()
        ]
        if not running:
            raise BackendError("StreamingProcess: Process is not running")

        self._exited = True
        for task in running:
            task.cancel()
        logger.debug(f"Streaming interrupted: {self}")

    async def wait(self) -> int:
        await self._wait_streams()

        try:
            return await self.streamer.result(self._require_ctx())
        except Exception:
            self._exited = True
            raise

    async def cleanup(self) -> None:
        self.restore_terminals()

        # join every task before touching the descriptors they use
        tasks = [
            task for task in (self._resize_task, self._output_task, self._input_task)
            if task is not None
        ]
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        detach_error: Exception | None = None
        if self._pty_term is not None:
            self._pty_term.close()
            self._pty_term = None
            try:
                await self.streamer.detach(self._require_ctx())
            except Exception as e:
                detach_error = e

        for terminal in self._terminals():
            terminal.close()
        for stream in (self._stdout, self._stderr, self._stdin):
            if stream is not None:
                stream.close()

        if self._exited:
            raise ProcessInterruptedError()
        if detach_error is not None:
            raise detach_error
        if self._resize_task is not None:
            resize_result = results[0]
            if isinstance(resize_result, Exception):
                raise resize_result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def restore_terminals(self) -> None:
        """Restore every local terminal mode. Only the first call acts."""
        if not self._restore_once.fire():
            return
        for terminal in self._terminals():
            try:
                terminal.restore_input()
                terminal.restore_output()
            except OSError as e:
                logger.debug(f"Restoring {terminal!r} failed: {e}")

    def _terminals(self) -> list[Terminal]:
        # in pty mode stdout and stdin share the tty
        unique: list[Terminal] = []
        for terminal in (self._stdout_term, self._stderr_term, self._stdin_term):
            if not any(terminal is seen for seen in unique):
                unique.append(terminal)
        return unique

    def _set_raw_terminals(self) -> None:
        for terminal in self._terminals():
            terminal.set_raw_input()
            terminal.set_raw_output()

    async def _forward_resizes(self, ctx: RunContext, resize: AsyncIterable[WindowSize]) -> None:
        async for size in resize:
            if self._pty_term is not None:
                self._pty_term.resize_to(size)
            await self.streamer.resize_to(ctx, size)

    async def _stream_output(self, ctx: RunContext) -> None:
        try:
            await self.streamer.stream_output(
                ctx,
                self._stdout_term.file,
                self._stderr_term.file,
                self.restore_terminals,
            )
        finally:
            if self._is_pty:
                # hang up the tty: the pty side reads end of stream and the
                # input stream stops reading from it
                self.restore_terminals()
                close_stream(self._stdin_term.file)
            else:
                # readers of stdout()/stderr() see end of stream
                self._stdout_term.close()
                self._stderr_term.close()

    async def _wait_streams(self) -> None:
        ctx = self._require_ctx()
        output_task, input_task = self._output_task, self._input_task
        if output_task is None or input_task is None:
            raise StateError("StreamingProcess: Process was not started")

        cancelled = asyncio.ensure_future(ctx.wait())
        try:
            done, _ = await asyncio.wait(
                {output_task, input_task, cancelled},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if output_task not in done and cancelled not in done:
                # input finished first; output must finish too
                done, _ = await asyncio.wait(
                    {output_task, cancelled},
                    return_when=asyncio.FIRST_COMPLETED,
                )

            if output_task in done:
                if not output_task.cancelled():
                    error = output_task.exception()
                    if error is not None:
                        raise error
                return

            raise await cancelled
        finally:
            cancelled.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cancelled
            self.restore_terminals()

    def _require_ctx(self) -> RunContext:
        if self._ctx is None:
            raise StateError("StreamingProcess: Not initialized")
        return self._ctx
