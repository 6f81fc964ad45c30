"""Logging setup for applications embedding procterm.

procterm itself only ever creates module loggers; handlers are installed by
the application, typically through configure_logging().
"""

from __future__ import annotations

import logging
import sys

from .config import Config, get_config

__all__ = ["configure_logging"]

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(config: Config | None = None) -> logging.Logger:
    """Install handlers for the procterm namespace.

    Default mode logs INFO to stderr. With PROCTERM_LOG_DEBUG the namespace
    logs DEBUG to the generated log file instead; stderr stays untouched so
    a raw-mode terminal is not garbled by log lines.

    Args:
        config: configuration to use (defaults to the global one)

    Returns:
        The "procterm" logger
    """
    config = config or get_config()
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Keep third-party libraries (docker, urllib3) at WARNING
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logger = logging.getLogger("procterm")
    logger.setLevel(log_level)
    return logger
