"""Non-blocking byte copying between file objects.

Objects backed by a file descriptor (pipes, ptys, sockets) are read and
written with os.read/os.write after anyio reports them ready, so a copy task
never blocks the event loop and can always be cancelled. Objects without a
descriptor (io.BytesIO and friends) are called directly.
"""

from __future__ import annotations

import errno
import io
import logging
import os
import select
from typing import Any, Awaitable, Callable

import anyio

from .config import get_config

__all__ = [
    "close_stream",
    "copy_stream",
    "fileno_of",
    "read_chunk",
    "write_all",
]

logger = logging.getLogger(__name__)

# largest write a ready pipe accepts without blocking
_WRITE_SIZE = getattr(select, "PIPE_BUF", 512)


def fileno_of(obj: Any) -> int | None:
    """Return the descriptor behind obj, or None when there is none."""
    if isinstance(obj, int):
        return obj
    fileno = getattr(obj, "fileno", None)
    if fileno is None:
        return None
    try:
        return fileno()
    except (io.UnsupportedOperation, ValueError, OSError):
        return None


async def _wait_ready(wait: Callable[[int], Awaitable[None]], fd: int) -> None:
    try:
        await wait(fd)
    except PermissionError:
        # regular files cannot be polled; they never block
        pass


async def read_chunk(src: Any, size: int) -> bytes:
    """Read up to size bytes from src; b"" means end of stream.

    EIO on a pty master (the tty side hung up) and a descriptor closed with
    close_stream() while waiting are reported as end of stream.
    """
    fd = fileno_of(src)
    if fd is None:
        read1 = getattr(src, "read1", None)
        if read1 is not None:
            return read1(size)
        return src.read(size)

    try:
        await _wait_ready(anyio.wait_readable, fd)
    except anyio.ClosedResourceError:
        return b""
    try:
        return os.read(fd, size)
    except OSError as e:
        if e.errno == errno.EIO:
            return b""
        raise


async def write_all(dst: Any, data: bytes) -> None:
    """Write all of data to dst."""
    fd = fileno_of(dst)
    if fd is None:
        dst.write(data)
        flush = getattr(dst, "flush", None)
        if flush is not None:
            flush()
        return

    view = memoryview(data)
    while view:
        try:
            await _wait_ready(anyio.wait_writable, fd)
        except anyio.ClosedResourceError as e:
            raise OSError(errno.EBADF, "descriptor closed while writing") from e
        written = os.write(fd, view[:_WRITE_SIZE])
        view = view[written:]


def close_stream(obj: Any) -> None:
    """Close obj, waking up every task waiting for its descriptor first."""
    fd = fileno_of(obj)
    if fd is not None:
        anyio.notify_closing(fd)
    obj.close()


async def copy_stream(dst: Any, src: Any, chunk_size: int | None = None) -> int:
    """Copy src to dst until end of stream.

    I/O errors end the copy; they mean one of the two sides went away, which
    the lifecycle observes through wait() instead.

    Args:
        dst: destination file object or descriptor
        src: source file object or descriptor
        chunk_size: read size (defaults to the configured chunk size)

    Returns:
        Number of bytes copied
    """
    size = chunk_size or get_config().chunk_size
    total = 0
    while True:
        try:
            chunk = await read_chunk(src, size)
            if not chunk:
                break
            await write_all(dst, chunk)
        except (OSError, ValueError) as e:
            logger.debug(f"copy_stream stopped after {total} bytes: {e}")
            break
        total += len(chunk)
    return total
