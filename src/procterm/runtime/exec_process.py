"""Local process backend with subprocess isolation and reliable termination.

Key design points:
- POSIX: start_new_session=True to create a new process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- Termination targets the process group, not just the main process
  (SIGTERM -> term_timeout -> SIGKILL -> kill_timeout)
- Plain runs talk to the child over three os.pipe() pairs; pty runs put the
  child on the tty side of a fresh pty pair and hand the pty side back
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import subprocess
import sys
from collections.abc import AsyncIterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO

from ..config import get_config
from ..context import RunContext
from ..errors import BackendError, ProcessInterruptedError
from ..term import Terminal, WindowSize, open_terminal
from .process import Process

__all__ = ["ExecProcess"]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"


@dataclass
class ExecProcess(Process):
    """A program running on the local machine.

    Example:
        process = ExecProcess("bash", ["-c", "echo hi"], workdir="/tmp")
        command = Command(process)
        await command.init(RunContext(), is_pty=False)
        await command.start(stdout, stderr)
        code = await command.wait()

    Attributes:
        command: program name, resolved through PATH
        args: arguments passed to the program
        workdir: working directory (None = inherit)
        env: environment variables (None = inherit parent)
        term_timeout: seconds to wait after SIGTERM (None = configured default)
        kill_timeout: seconds to wait after SIGKILL (None = configured default)
    """

    command: str
    args: Sequence[str] = ()
    workdir: Path | str | None = None
    env: Mapping[str, str] | None = None
    term_timeout: float | None = None
    kill_timeout: float | None = None

    _ctx: RunContext | None = field(default=None, init=False, repr=False)
    _executable: str | None = field(default=None, init=False, repr=False)
    _process: asyncio.subprocess.Process | None = field(default=None, init=False, repr=False)
    _stdout: BinaryIO | None = field(default=None, init=False, repr=False)
    _stderr: BinaryIO | None = field(default=None, init=False, repr=False)
    _stdin: BinaryIO | None = field(default=None, init=False, repr=False)
    _child_fds: list[int] = field(default_factory=list, init=False, repr=False)
    _pty_term: Terminal | None = field(default=None, init=False, repr=False)
    _tasks: list[asyncio.Task[None]] = field(default_factory=list, init=False, repr=False)
    _interrupted: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        config = get_config()
        if self.term_timeout is None:
            self.term_timeout = config.term_timeout
        if self.kill_timeout is None:
            self.kill_timeout = config.kill_timeout

    def __str__(self) -> str:
        return " ".join([self.command, *self.args])

    async def init(self, ctx: RunContext, is_pty: bool) -> None:
        executable = shutil.which(self.command)
        if executable is None:
            raise BackendError(f"Can't find {self.command} in path")

        self._ctx = ctx
        self._executable = executable
        if is_pty:
            return

        self._stdout, child_stdout = self._pipe_from_child()
        self._stderr, child_stderr = self._pipe_from_child()
        child_stdin, self._stdin = self._pipe_to_child()
        self._child_fds = [child_stdin, child_stdout, child_stderr]

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
        if self._executable is None or self._ctx is None:
            raise BackendError("ExecProcess: Not initialized")

        if not is_pty:
            child_stdin, child_stdout, child_stderr = self._child_fds
            try:
                self._process = await self._spawn(
                    stdin=child_stdin, stdout=child_stdout, stderr=child_stderr,
                    env=self._build_env(None),
                )
            finally:
                self._close_child_fds()
            self._watch(self._watch_context(self._ctx))
            return None

        tty, pty = open_terminal()
        try:
            self._process = await self._spawn(
                stdin=tty.file, stdout=tty.file, stderr=tty.file,
                env=self._build_env(term),
            )
        except BaseException:
            pty.close()
            raise
        finally:
            # the child holds its own copy of the tty
            tty.close()

        self._pty_term = pty
        if resize is not None:
            self._watch(self._forward_resizes(pty, resize))
        self._watch(self._watch_context(self._ctx))
        return pty.file

    async def stop(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            raise BackendError("ExecProcess: Failed to kill process")

        try:
            self._send_terminate(process)
        except ProcessLookupError:
            raise BackendError("ExecProcess: Failed to kill process") from None

        self._interrupted = True
        self._watch(self._escalate(process))

    async def wait(self) -> int:
        if self._process is None:
            raise BackendError("ExecProcess: Process was not started")
        return await self._process.wait()

    async def cleanup(self) -> None:
        process = self._process
        if process is not None and process.returncode is None:
            await self._terminate_process(process)

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self._pty_term is not None:
            self._pty_term.close()
            self._pty_term = None
        self._close_child_fds()
        for stream in (self._stdout, self._stderr, self._stdin):
            if stream is not None:
                stream.close()

        if self._interrupted:
            raise ProcessInterruptedError()

    # ------------------------------------------------------------------
    # Spawning
    # ------------------------------------------------------------------

    async def _spawn(self, **kwargs: Any) -> asyncio.subprocess.Process:
        assert self._executable is not None
        try:
            process = await asyncio.create_subprocess_exec(
                self._executable,
                *self.args,
                cwd=self.workdir,
                **kwargs,
                **self._build_subprocess_kwargs(),
            )
        except OSError as e:
            raise BackendError(f"ExecProcess: Failed to start {self.command}: {e}") from e
        logger.debug(f"Started subprocess pid={process.pid}: {self}")
        return process

    def _build_env(self, term: str | None) -> dict[str, str] | None:
        if term is None:
            return dict(self.env) if self.env is not None else None
        env = dict(os.environ if self.env is None else self.env)
        env["TERM"] = term
        return env

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs."""
        kwargs: dict[str, Any] = {}
        if IS_WINDOWS:
            # Windows: CREATE_NEW_PROCESS_GROUP
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # POSIX: start_new_session (equivalent to setsid)
            kwargs["start_new_session"] = True
        return kwargs

    @staticmethod
    def _pipe_from_child() -> tuple[BinaryIO, int]:
        read_fd, write_fd = os.pipe()
        return os.fdopen(read_fd, "rb", buffering=0), write_fd

    @staticmethod
    def _pipe_to_child() -> tuple[int, BinaryIO]:
        read_fd, write_fd = os.pipe()
        return read_fd, os.fdopen(write_fd, "wb", buffering=0)

    def _close_child_fds(self) -> None:
        while self._child_fds:
            os.close(self._child_fds.pop())

    # ------------------------------------------------------------------
    # Helper tasks
    # ------------------------------------------------------------------

    def _watch(self, coro: Any) -> None:
        self._tasks.append(asyncio.create_task(coro))

    async def _forward_resizes(self, pty: Terminal, resize: AsyncIterable[WindowSize]) -> None:
        async for size in resize:
            pty.resize_to(size)

    async def _watch_context(self, ctx: RunContext) -> None:
        error = await ctx.wait()
        process = self._process
        if process is not None and process.returncode is None:
            logger.debug(f"Run context done ({error}), terminating pid={process.pid}")
            await self._terminate_process(process)

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    async def _terminate_process(self, process: asyncio.subprocess.Process) -> None:
        """Terminate subprocess gracefully, then forcefully if needed."""
        try:
            self._send_terminate(process)
        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={process.pid}")
            return
        await self._escalate(process)

    async def _escalate(self, process: asyncio.subprocess.Process) -> None:
        """Wait for a terminated subprocess, killing it after term_timeout."""
        pid = process.pid
        try:
            try:
                await asyncio.wait_for(process.wait(), timeout=self.term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return
            except asyncio.TimeoutError:
                pass

            logger.debug(f"Force killing subprocess pid={pid}")
            self._send_kill(process)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={process.returncode}"
                )
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except OSError as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    def _send_terminate(self, process: asyncio.subprocess.Process) -> None:
        if IS_WINDOWS:
            try:
                os.kill(process.pid, signal.CTRL_BREAK_EVENT)
                logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
            except OSError as e:
                logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
                process.terminate()
            return

        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGTERM)
            logger.debug(f"Sent SIGTERM to process group pgid={pgid}")
        except ProcessLookupError:
            raise
        except OSError as e:
            logger.debug(f"killpg failed, falling back to terminate: {e}")
            process.terminate()

    def _send_kill(self, process: asyncio.subprocess.Process) -> None:
        if IS_WINDOWS:
            process.kill()
            return

        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except ProcessLookupError:
            raise
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            process.kill()
