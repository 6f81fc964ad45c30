"""Streamer running a command inside a Docker container.

Uses the low-level Docker SDK client (docker.APIClient): the exec instance is
created with exec_create(), attached with exec_start(socket=True), resized with
exec_resize() and its exit code fetched with exec_inspect(). The SDK is
synchronous, so every call runs in a worker thread.

The hijacked socket is shared by the output task (reading) and the input
task (writing); a dual closer makes sure it is only closed once both are done.
"""

from __future__ import annotations

import contextlib
import logging
import socket
from collections.abc import Callable, Mapping, Sequence
from functools import partial
from typing import Any, BinaryIO, TypeVar

import anyio
import docker
from docker.errors import DockerException
from docker.utils.socket import STDERR, frames_iter

from ..closer import DualCloser, new_dual_closer
from ..config import get_config
from ..context import RunContext
from ..errors import TransportError
from ..streams import read_chunk, write_all
from ..term import WindowSize
from .streaming import RestoreTerminals, Streamer, StreamingProcess

__all__ = [
    "DockerExecStreamer",
    "docker_client_from_env",
    "new_docker_exec_process",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _HijackedSocket:
    """The connection returned by exec_start(socket=True)."""

    def __init__(self, sock: Any) -> None:
        self.sock = sock
        # SocketIO wrappers keep the real socket in _sock
        self.raw: socket.socket = getattr(sock, "_sock", sock)

    def send(self, data: bytes) -> None:
        self.raw.sendall(data)

    def shutdown_write(self) -> None:
        with contextlib.suppress(OSError):
            self.raw.shutdown(socket.SHUT_WR)

    def close(self) -> None:
        # shutdown wakes up a reader blocked in another thread
        with contextlib.suppress(OSError):
            self.raw.shutdown(socket.SHUT_RDWR)
        self.sock.close()
        if self.raw is not self.sock:
            self.raw.close()


class DockerExecStreamer(Streamer):
    """Runs command in a running container through the Docker exec API.

    Attributes:
        client: low-level Docker API client
        container_id: id or name of the target container
        command: program and arguments to execute
        user: user to run as inside the container
        workdir: working directory inside the container
        environment: extra environment variables
    """

    def __init__(
        self,
        client: docker.APIClient,
        container_id: str,
        command: Sequence[str],
        *,
        user: str = "",
        workdir: str | None = None,
        environment: Mapping[str, str] | None = None,
    ) -> None:
        self.client = client
        self.container_id = container_id
        self.command = list(command)
        self.user = user
        self.workdir = workdir
        self.environment = dict(environment) if environment else {}

        self._is_pty: bool = False
        self._exec_config: dict[str, Any] = {}
        self._exec_id: str | None = None
        self._socket: _HijackedSocket | None = None
        self._guard: DualCloser | None = None

    def __str__(self) -> str:
        return f"{self.container_id}: {' '.join(self.command)}"

    async def init(self, ctx: RunContext, term: str, is_pty: bool) -> None:
        environment = dict(self.environment)
        if is_pty:
            environment["TERM"] = term

        self._is_pty = is_pty
        self._exec_config = {
            "cmd": self.command,
            "stdout": True,
            "stderr": True,
            "stdin": True,
            "tty": is_pty,
            "environment": environment or None,
            "user": self.user,
            "workdir": self.workdir,
        }

    async def attach(self, ctx: RunContext, is_pty: bool) -> None:
        ctx.raise_if_done()

        created = await self._call(
            "attach", self.client.exec_create, self.container_id, **self._exec_config
        )
        exec_id = created["Id"]
        sock = await self._call(
            "attach", self.client.exec_start, exec_id, tty=is_pty, socket=True
        )

        self._exec_id = exec_id
        self._socket = _HijackedSocket(sock)
        self._guard = new_dual_closer(self._socket)
        logger.debug(f"Attached to exec {exec_id}: {self}")

    async def stream_output(
        self,
        ctx: RunContext,
        stdout: BinaryIO,
        stderr: BinaryIO | None,
        restore_terminals: RestoreTerminals,
    ) -> None:
        sock, guard = self._require_socket("stream_output")
        frames = frames_iter(sock.sock, self._is_pty)
        try:
            while True:
                try:
                    frame = await anyio.to_thread.run_sync(
                        next, frames, None, abandon_on_cancel=True
                    )
                except (OSError, ValueError) as e:
                    raise TransportError("stream_output", str(e)) from e
                if frame is None:
                    break

                # tty execs report everything as STDOUT
                stream, data = frame
                if stream == STDERR and stderr is not None:
                    await write_all(stderr, data)
                else:
                    await write_all(stdout, data)

            if self._is_pty:
                restore_terminals()
        finally:
            guard.close()

    async def stream_input(
        self,
        ctx: RunContext,
        stdin: BinaryIO,
        restore_terminals: RestoreTerminals,
    ) -> None:
        sock, guard = self._require_socket("stream_input")
        size = get_config().chunk_size
        try:
            while True:
                data = await read_chunk(stdin, size)
                if not data:
                    break
                try:
                    await anyio.to_thread.run_sync(sock.send, data, abandon_on_cancel=True)
                except OSError as e:
                    raise TransportError("stream_input", str(e)) from e
            # remote stdin sees end of stream
            sock.shutdown_write()
        finally:
            guard.close_write()

    async def resize_to(self, ctx: RunContext, size: WindowSize) -> None:
        exec_id = self._require_exec_id("resize")
        await self._call(
            "resize", self.client.exec_resize, exec_id, height=size.height, width=size.width
        )

    async def result(self, ctx: RunContext) -> int:
        exec_id = self._require_exec_id("result")
        info = await self._call("result", self.client.exec_inspect, exec_id)
        exit_code = info.get("ExitCode")
        if info.get("Running") or exit_code is None:
            raise TransportError("result", f"exec {exec_id} has not exited")
        return int(exit_code)

    async def detach(self, ctx: RunContext) -> None:
        if self._guard is None:
            return
        self._guard.close()
        self._guard.close_write()
        logger.debug(f"Detached from exec {self._exec_id}")

    async def _call(self, operation: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await anyio.to_thread.run_sync(
                partial(func, *args, **kwargs), abandon_on_cancel=True
            )
        except (DockerException, OSError) as e:
            raise TransportError(operation, str(e)) from e

    def _require_socket(self, operation: str) -> tuple[_HijackedSocket, DualCloser]:
        if self._socket is None or self._guard is None:
            raise TransportError(operation, "not attached")
        return self._socket, self._guard

    def _require_exec_id(self, operation: str) -> str:
        if self._exec_id is None:
            raise TransportError(operation, "not attached")
        return self._exec_id


def docker_client_from_env(**kwargs: Any) -> docker.APIClient:
    """Low-level client configured from DOCKER_HOST and friends."""
    return docker.from_env(**kwargs).api


def new_docker_exec_process(
    client: docker.APIClient,
    container_id: str,
    command: Sequence[str],
    **kwargs: Any,
) -> StreamingProcess:
    """Process running command inside container_id.

    Extra keyword arguments are passed to DockerExecStreamer.
    """
    return StreamingProcess(DockerExecStreamer(client, container_id, command, **kwargs))
