"""Process backends: the Process contract, the streaming engine and concrete backends."""

from __future__ import annotations

from .docker_exec import DockerExecStreamer, docker_client_from_env, new_docker_exec_process
from .exec_process import ExecProcess
from .process import Process
from .streaming import Streamer, StreamingProcess

__all__ = [
    "DockerExecStreamer",
    "ExecProcess",
    "Process",
    "Streamer",
    "StreamingProcess",
    "docker_client_from_env",
    "new_docker_exec_process",
]
