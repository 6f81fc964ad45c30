"""Non-blocking copy helper tests."""

from __future__ import annotations

import asyncio
import io
import os

import pytest

from procterm.streams import close_stream, copy_stream, fileno_of, read_chunk, write_all


class TestFilenoOf:
    def test_int(self):
        assert fileno_of(7) == 7

    def test_file(self, pipe):
        assert fileno_of(pipe[0]) == pipe[0].fileno()

    def test_bytesio(self):
        assert fileno_of(io.BytesIO()) is None

    def test_closed_file(self):
        read_fd, write_fd = os.pipe()
        f = os.fdopen(read_fd, "rb", buffering=0)
        f.close()
        os.close(write_fd)
        assert fileno_of(f) is None


class TestReadWrite:
    @pytest.mark.asyncio
    async def test_pipe_roundtrip(self, pipe):
        read_file, write_file = pipe
        await write_all(write_file, b"hello")
        assert await read_chunk(read_file, 1024) == b"hello"

    @pytest.mark.asyncio
    async def test_eof(self, pipe):
        read_file, write_file = pipe
        write_file.close()
        assert await read_chunk(read_file, 1024) == b""

    @pytest.mark.asyncio
    async def test_read_waits_for_data(self, pipe):
        read_file, write_file = pipe
        reader = asyncio.create_task(read_chunk(read_file, 1024))
        await asyncio.sleep(0.05)
        assert not reader.done()

        write_file.write(b"late")
        assert await asyncio.wait_for(reader, timeout=1.0) == b"late"

    @pytest.mark.asyncio
    async def test_read_is_cancellable(self, pipe):
        reader = asyncio.create_task(read_chunk(pipe[0], 1024))
        await asyncio.sleep(0.01)
        reader.cancel()
        with pytest.raises(asyncio.CancelledError):
            await reader

    @pytest.mark.asyncio
    async def test_close_stream_ends_pending_read(self, pipe):
        read_file, _ = pipe
        reader = asyncio.create_task(read_chunk(read_file, 1024))
        await asyncio.sleep(0.01)
        assert not reader.done()

        close_stream(read_file)
        assert await asyncio.wait_for(reader, timeout=1.0) == b""
        assert read_file.closed

    @pytest.mark.asyncio
    async def test_bytesio(self):
        sink = io.BytesIO()
        await write_all(sink, b"abc")
        assert sink.getvalue() == b"abc"
        assert await read_chunk(io.BytesIO(b"xyz"), 2) == b"xy"


class TestCopyStream:
    @pytest.mark.asyncio
    async def test_copies_until_eof(self, pipe):
        read_file, write_file = pipe
        sink = io.BytesIO()
        payload = os.urandom(100_000)

        copier = asyncio.create_task(copy_stream(sink, read_file, chunk_size=4096))
        await write_all(write_file, payload)
        write_file.close()

        assert await asyncio.wait_for(copier, timeout=5.0) == len(payload)
        assert sink.getvalue() == payload

    @pytest.mark.asyncio
    async def test_stops_on_write_error(self, pipe):
        read_file, write_file = pipe

        class Broken:
            def write(self, data):
                raise OSError("broken")

        write_file.write(b"data")
        assert await copy_stream(Broken(), read_file) == 0

    @pytest.mark.asyncio
    async def test_stops_on_closed_source(self):
        read_fd, write_fd = os.pipe()
        src = os.fdopen(read_fd, "rb", buffering=0)
        src.close()
        os.close(write_fd)
        assert await copy_stream(io.BytesIO(), src) == 0
