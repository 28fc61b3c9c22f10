"""
Logging utilities.

WHAT: Centralized logging configuration for the HTTP app and the chat gateway
WHY: One format for request handling and socket events, quiet transport logs
HOW: Python logging with file and console handlers, levels from settings
"""

import logging
import sys
from pathlib import Path

from ..core.config import settings

TRANSPORT_LOGGERS = ("socketio", "engineio")

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _level(name: str, default: int = logging.INFO) -> int:
    return getattr(logging, name.upper(), default)


def setup_logging():
    """
    Configure application logging.

    The root logger follows LOG_LEVEL; the file handler adds source locations.
    socket.io and engine.io loggers get SOCKETIO_LOG_LEVEL.
    """
    log_file = Path(settings.LOG_FILE)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(_level(settings.LOG_LEVEL))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(_level(settings.LOG_LEVEL))
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(file_handler)

    transport_level = _level(settings.SOCKETIO_LOG_LEVEL, logging.WARNING)
    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)

    root_logger.info(
        f"Logging initialized (level={settings.LOG_LEVEL}, "
        f"socketio={settings.SOCKETIO_LOG_LEVEL}, file={log_file})"
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Module name (typically __name__)
    """
    return logging.getLogger(name)
