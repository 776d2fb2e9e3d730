"""Application logger for attached sessions.

The engine's own modules log through ``logging.getLogger(__name__)`` like any
library. ``create_logger`` additionally builds the logger exposed as
``RpcSession.logger``: it is named after the client and, when a file is
configured, shares one log file with the engine's ``nvimrpc.*`` records.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Final

from nvimrpc.config import LoggingConfig, LogLevel

# Levels without a stdlib counterpart sit between the neighbouring ones
HTTP: Final[int] = 18
VERBOSE: Final[int] = 15
SILLY: Final[int] = 5

LEVELS: Final[dict[str, int]] = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "http": HTTP,
    "verbose": VERBOSE,
    "debug": logging.DEBUG,
    "silly": SILLY,
}

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logging.addLevelName(HTTP, "HTTP")
logging.addLevelName(VERBOSE, "VERBOSE")
logging.addLevelName(SILLY, "SILLY")


def to_logging_level(level: LogLevel | None) -> int:
    """Map a level name to a ``logging`` level; ``None`` means debug."""
    if level is None:
        return logging.DEBUG
    return LEVELS[level]


def create_logger(name: str, config: LoggingConfig | None) -> logging.Logger | None:
    """Build the application logger for a client.

    Args:
        name: Client name, used as the logger name suffix
        config: Logger settings; ``None`` disables the application logger

    Returns:
        A configured ``logging.Logger``, or ``None`` when logging is off
    """
    if config is None:
        return None

    level = to_logging_level(config.level)
    app_logger = logging.getLogger(f"nvimrpc.client.{name}")
    app_logger.setLevel(level)

    # The handler sits on the package logger so engine records from
    # nvimrpc.session etc. land in the same file as the application's.
    package_logger = logging.getLogger("nvimrpc")
    package_logger.setLevel(level)

    if config.file:
        path = Path(config.file).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        if not any(
            isinstance(h, logging.FileHandler) and Path(h.baseFilename) == path
            for h in package_logger.handlers
        ):
            handler = logging.FileHandler(path, encoding="utf-8")
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            package_logger.addHandler(handler)

    return app_logger
