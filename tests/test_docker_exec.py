"""DockerExecStreamer tests.

The Docker API client is mocked; the hijacked connection is one end of a
real socketpair, the other end plays the Docker daemon.
"""

from __future__ import annotations

import asyncio
import io
import socket
import struct
from unittest import mock

import pytest
from docker.errors import APIError, NotFound

from procterm.command import Command
from procterm.context import RunContext
from procterm.errors import CancellationError, TransportError
from procterm.runtime.docker_exec import DockerExecStreamer, new_docker_exec_process
from procterm.runtime.streaming import StreamingProcess
from procterm.term import WindowSize


def frame(stream: int, data: bytes) -> bytes:
    """One multiplexed frame as sent by the daemon for non-tty execs."""
    return struct.pack(">BxxxL", stream, len(data)) + data


@pytest.fixture
def daemon():
    """(client mock, daemon socket); exec_start hands out the other end."""
    local_end, daemon_end = socket.socketpair()
    client = mock.MagicMock()
    client.exec_create.return_value = {"Id": "exec-1"}
    client.exec_start.return_value = local_end
    client.exec_inspect.return_value = {"ExitCode": 0, "Running": False}
    yield client, daemon_end, local_end
    daemon_end.close()
    local_end.close()


async def attached(client, is_pty: bool = False, **kwargs) -> DockerExecStreamer:
    streamer = DockerExecStreamer(client, "web", ["bash", "-l"], **kwargs)
    ctx = RunContext()
    await streamer.init(ctx, "xterm", is_pty)
    await streamer.attach(ctx, is_pty)
    return streamer


# =============================================================================
# init / attach
# =============================================================================


class TestAttach:
    @pytest.mark.asyncio
    async def test_plain_exec(self, daemon):
        client, _, local_end = daemon
        await attached(client, user="app", workdir="/srv")

        client.exec_create.assert_called_once_with(
            "web",
            cmd=["bash", "-l"],
            stdout=True,
            stderr=True,
            stdin=True,
            tty=False,
            environment=None,
            user="app",
            workdir="/srv",
        )
        client.exec_start.assert_called_once_with("exec-1", tty=False, socket=True)

    @pytest.mark.asyncio
    async def test_pty_exec_sets_term(self, daemon):
        client, _, _ = daemon
        await attached(client, is_pty=True, environment={"LANG": "C.UTF-8"})

        kwargs = client.exec_create.call_args.kwargs
        assert kwargs["tty"] is True
        assert kwargs["environment"] == {"LANG": "C.UTF-8", "TERM": "xterm"}
        client.exec_start.assert_called_once_with("exec-1", tty=True, socket=True)

    @pytest.mark.asyncio
    async def test_attach_error(self, daemon):
        client, _, _ = daemon
        client.exec_create.side_effect = NotFound("No such container: web")
        with pytest.raises(TransportError, match="No such container") as excinfo:
            await attached(client)
        assert excinfo.value.operation == "attach"

    @pytest.mark.asyncio
    async def test_attach_with_cancelled_context(self, daemon):
        client, _, _ = daemon
        streamer = DockerExecStreamer(client, "web", ["sh"])
        ctx = RunContext()
        await streamer.init(ctx, "", False)
        ctx.cancel()
        with pytest.raises(CancellationError):
            await streamer.attach(ctx, False)
        client.exec_create.assert_not_called()

    def test_str(self):
        assert str(DockerExecStreamer(mock.MagicMock(), "web", ["ls", "-a"])) == "web: ls -a"


# =============================================================================
# Streams
# =============================================================================


class TestStreams:
    @pytest.mark.asyncio
    async def test_output_is_demultiplexed(self, daemon):
        client, daemon_end, _ = daemon
        streamer = await attached(client)

        daemon_end.sendall(frame(1, b"out-1 ") + frame(2, b"err") + frame(1, b"out-2"))
        daemon_end.shutdown(socket.SHUT_WR)

        stdout, stderr = io.BytesIO(), io.BytesIO()
        restore = mock.Mock()
        await asyncio.wait_for(
            streamer.stream_output(RunContext(), stdout, stderr, restore), timeout=5.0
        )

        assert stdout.getvalue() == b"out-1 out-2"
        assert stderr.getvalue() == b"err"
        restore.assert_not_called()

    @pytest.mark.asyncio
    async def test_tty_output_is_raw(self, daemon):
        client, daemon_end, _ = daemon
        streamer = await attached(client, is_pty=True)

        daemon_end.sendall(b"\x1b[1mbold\x1b[0m\r\n")
        daemon_end.shutdown(socket.SHUT_WR)

        stdout = io.BytesIO()
        restore = mock.Mock()
        await asyncio.wait_for(
            streamer.stream_output(RunContext(), stdout, None, restore), timeout=5.0
        )

        assert stdout.getvalue() == b"\x1b[1mbold\x1b[0m\r\n"
        restore.assert_called_once()

    @pytest.mark.asyncio
    async def test_input_then_half_close(self, daemon):
        client, daemon_end, _ = daemon
        streamer = await attached(client)

        await asyncio.wait_for(
            streamer.stream_input(RunContext(), io.BytesIO(b"echo hi\n"), mock.Mock()),
            timeout=5.0,
        )

        daemon_end.settimeout(2.0)
        received = b""
        while True:
            chunk = daemon_end.recv(1024)
            if not chunk:
                break
            received += chunk
        assert received == b"echo hi\n"

    @pytest.mark.asyncio
    async def test_socket_closed_after_both_directions(self, daemon):
        client, daemon_end, local_end = daemon
        streamer = await attached(client)

        await streamer.stream_input(RunContext(), io.BytesIO(b""), mock.Mock())
        # output still reading: the socket stays open
        assert local_end.fileno() != -1

        daemon_end.shutdown(socket.SHUT_WR)
        await asyncio.wait_for(
            streamer.stream_output(RunContext(), io.BytesIO(), io.BytesIO(), mock.Mock()),
            timeout=5.0,
        )
        assert local_end.fileno() == -1

    @pytest.mark.asyncio
    async def test_detach_closes_socket(self, daemon):
        client, _, local_end = daemon
        streamer = await attached(client)
        await streamer.detach(RunContext())
        assert local_end.fileno() == -1
        # idempotent
        await streamer.detach(RunContext())

    @pytest.mark.asyncio
    async def test_streams_before_attach(self):
        streamer = DockerExecStreamer(mock.MagicMock(), "web", ["sh"])
        with pytest.raises(TransportError, match="not attached"):
            await streamer.stream_output(RunContext(), io.BytesIO(), None, mock.Mock())


# =============================================================================
# resize / result
# =============================================================================


class TestResizeAndResult:
    @pytest.mark.asyncio
    async def test_resize(self, daemon):
        client, _, _ = daemon
        streamer = await attached(client, is_pty=True)
        await streamer.resize_to(RunContext(), WindowSize(height=40, width=132))
        client.exec_resize.assert_called_once_with("exec-1", height=40, width=132)

    @pytest.mark.asyncio
    async def test_resize_error(self, daemon):
        client, _, _ = daemon
        client.exec_resize.side_effect = APIError("exec not running")
        streamer = await attached(client, is_pty=True)
        with pytest.raises(TransportError) as excinfo:
            await streamer.resize_to(RunContext(), WindowSize(1, 1))
        assert excinfo.value.operation == "resize"

    @pytest.mark.asyncio
    async def test_resize_before_attach(self):
        streamer = DockerExecStreamer(mock.MagicMock(), "web", ["sh"])
        with pytest.raises(TransportError):
            await streamer.resize_to(RunContext(), WindowSize(1, 1))

    @pytest.mark.asyncio
    async def test_result(self, daemon):
        client, _, _ = daemon
        client.exec_inspect.return_value = {"ExitCode": 42, "Running": False}
        streamer = await attached(client)
        assert await streamer.result(RunContext()) == 42
        client.exec_inspect.assert_called_once_with("exec-1")

    @pytest.mark.asyncio
    async def test_result_still_running(self, daemon):
        client, _, _ = daemon
        client.exec_inspect.return_value = {"ExitCode": None, "Running": True}
        streamer = await attached(client)
        with pytest.raises(TransportError, match="has not exited"):
            await streamer.result(RunContext())


# =============================================================================
# Through StreamingProcess and Command
# =============================================================================


class TestEndToEnd:
    def test_factory(self):
        process = new_docker_exec_process(mock.MagicMock(), "web", ["sh"], user="root")
        assert isinstance(process, StreamingProcess)
        assert isinstance(process.streamer, DockerExecStreamer)
        assert process.streamer.user == "root"
        assert str(process) == "web: sh"

    @pytest.mark.asyncio
    async def test_plain_run(self, daemon):
        client, daemon_end, _ = daemon
        client.exec_inspect.return_value = {"ExitCode": 7, "Running": False}

        command = Command(new_docker_exec_process(client, "web", ["sh"]), drain_timeout=2.0)
        await command.init(RunContext(), is_pty=False)

        stdout, stderr = io.BytesIO(), io.BytesIO()
        await command.start(stdout, stderr, io.BytesIO(b"exit 7\n"))

        daemon_end.sendall(frame(1, b"hello\n") + frame(2, b"warning\n"))
        daemon_end.shutdown(socket.SHUT_WR)

        assert await asyncio.wait_for(command.wait(), timeout=5.0) == 7
        assert stdout.getvalue() == b"hello\n"
        assert stderr.getvalue() == b"warning\n"
        await command.cleanup()
