"""Logging setup for the attendance engine.

Every module logs through ``get_logger(__name__)``. Level and optional log
file come from ``Config`` (``LOG_LEVEL``, ``LOG_FILE``) unless passed in.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO, Tuple

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Formatter that colors level names when its stream is a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"

    def __init__(
        self,
        fmt: str = LOG_FORMAT,
        datefmt: Optional[str] = DATE_FORMAT,
        stream: Optional[TextIO] = None,
    ):
        super().__init__(fmt, datefmt=datefmt)
        stream = stream if stream is not None else sys.stdout
        self.use_color = bool(getattr(stream, "isatty", None) and stream.isatty())

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno)
        if not self.use_color or color is None:
            return super().format(record)

        # Handlers share the record; color a copy
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{self.BOLD}{record.levelname}{self.RESET}"
        record.name = f"{self.BOLD}{record.name}{self.RESET}"
        return super().format(record)


def _configured(level: Optional[str], log_file: Optional[str]) -> Tuple[int, Optional[str]]:
    if level is not None:
        return logging.getLevelName(level.upper()), log_file

    from attendance_core.config import get_config

    try:
        config = get_config()
    except ValueError:
        return logging.INFO, log_file

    if log_file is None and config.log_file is not None:
        log_file = str(config.log_file)
    return config.logging_level, log_file


def setup_logging(
    name: str = "attendance_core",
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Attach console (and optional file) handlers to a logger once.

    Args:
        name: Logger name
        level: Level name; None reads LOG_LEVEL (and LOG_FILE) from Config
        log_file: Extra plain-text log file

    Returns:
        The configured logger. Loggers that already have handlers are
        returned unchanged.

    Example:
        >>> logger = setup_logging("attendance_core", level="DEBUG")
        >>> logger.info("Queue drain started")
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    numeric_level, log_file = _configured(level, log_file)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    logger.setLevel(numeric_level)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ColoredFormatter(stream=sys.stdout))
    logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, typically ``get_logger(__name__)``."""
    return setup_logging(name)
