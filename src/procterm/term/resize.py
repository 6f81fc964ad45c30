"""Window-resize monitoring.

ResizeMonitor turns SIGWINCH into a stream of WindowSize values: every time
the signal arrives the current size of the watched terminal is published on
an anyio memory object stream. Closing the monitor closes the stream, which
consumers treat as "stop forwarding".
"""

from __future__ import annotations

import asyncio
import logging
import math
import signal
import sys

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from ..errors import NotATerminalError
from .terminal import Terminal, WindowSize

__all__ = ["ResizeMonitor"]

logger = logging.getLogger(__name__)


class ResizeMonitor:
    """Publishes the size of a terminal whenever the window is resized.

    Example:
        ```python
        monitor = ResizeMonitor(terminal)
        await monitor.start()
        try:
            await command.start_pty(terminal.file, "xterm", monitor.sizes)
            await command.wait()
        finally:
            await monitor.stop()
        ```

    Attributes:
        terminal: the terminal whose size is reported
        initial: publish the current size once right after start()
    """

    def __init__(self, terminal: Terminal, initial: bool = True) -> None:
        self.terminal = terminal
        self.initial = initial

        send, receive = anyio.create_memory_object_stream[WindowSize](math.inf)
        self._send: MemoryObjectSendStream[WindowSize] = send
        self._receive: MemoryObjectReceiveStream[WindowSize] = receive
        self._running: bool = False
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def sizes(self) -> MemoryObjectReceiveStream[WindowSize]:
        """The stream of sizes; iteration ends once the monitor is stopped."""
        return self._receive

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Install the SIGWINCH handler.

        Must be called from within the asyncio event loop. On platforms
        without SIGWINCH only the initial size is published.
        """
        if self._running:
            logger.warning("ResizeMonitor already running")
            return

        self._loop = asyncio.get_running_loop()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGWINCH, self._handle_sigwinch)
            logger.debug("SIGWINCH handler installed")

        if self.initial:
            self._publish()

    async def stop(self) -> None:
        """Remove the signal handler and close the size stream."""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGWINCH)
            except Exception as e:
                logger.debug(f"Error removing SIGWINCH handler: {e}")

        self._send.close()
        logger.debug("SIGWINCH handler removed")

    def _handle_sigwinch(self) -> None:
        self._publish()

    def _publish(self) -> None:
        try:
            size = self.terminal.get_size()
        except (NotATerminalError, OSError) as e:
            logger.debug(f"Could not read terminal size: {e}")
            return
        try:
            self._send.send_nowait(size)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            pass
