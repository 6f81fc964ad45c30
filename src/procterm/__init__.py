"""procterm - run local and containerized processes, plain or on a pty.

Environment variables:
    PROCTERM_TERM: terminal name for pty runs (default $TERM, then xterm)
    PROCTERM_CHUNK_SIZE: copy buffer size in bytes (default 32768)
    PROCTERM_TERM_TIMEOUT: seconds between SIGTERM and SIGKILL (default 2)
    PROCTERM_KILL_TIMEOUT: seconds to wait after SIGKILL (default 1)
    PROCTERM_DRAIN_TIMEOUT: seconds to let output drain after exit (default 1)
    PROCTERM_LOG_DEBUG: debug logging to a temp file (default false)

Usage:
    command = Command(ExecProcess("bash", ["-c", "echo hi"]))
    await command.init(RunContext(), is_pty=False)
    await command.start(stdout, stderr)
    exit_code = await command.wait()
    await command.cleanup()
"""

__version__ = "0.1.0"

from .closer import DualCloser, DualCloseWrapper, Once, new_dual_closer
from .command import Command, CommandState
from .config import Config, get_config, load_config, reload_config
from .context import RunContext
from .errors import (
    BackendError,
    CancellationError,
    DeadlineExceededError,
    NotATerminalError,
    ProcessInterruptedError,
    ProcTermError,
    StateError,
    TerminalMismatchError,
    TransportError,
    UnsupportedPlatformError,
)
from .log import configure_logging
from .runtime import (
    DockerExecStreamer,
    ExecProcess,
    Process,
    Streamer,
    StreamingProcess,
    docker_client_from_env,
    new_docker_exec_process,
)
from .term import (
    NullTerminal,
    ResizeMonitor,
    Terminal,
    WindowSize,
    new_terminal,
    open_std_terminal,
    open_terminal,
)

__all__ = [
    "__version__",
    "BackendError",
    "CancellationError",
    "Command",
    "CommandState",
    "Config",
    "DeadlineExceededError",
    "DockerExecStreamer",
    "DualCloseWrapper",
    "DualCloser",
    "ExecProcess",
    "NotATerminalError",
    "NullTerminal",
    "Once",
    "Process",
    "ProcTermError",
    "ProcessInterruptedError",
    "ResizeMonitor",
    "RunContext",
    "StateError",
    "Streamer",
    "StreamingProcess",
    "Terminal",
    "TerminalMismatchError",
    "TransportError",
    "UnsupportedPlatformError",
    "WindowSize",
    "configure_logging",
    "docker_client_from_env",
    "get_config",
    "load_config",
    "new_docker_exec_process",
    "new_dual_closer",
    "new_terminal",
    "open_std_terminal",
    "open_terminal",
    "reload_config",
]
