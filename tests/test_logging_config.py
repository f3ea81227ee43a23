"""Unit tests for logging setup."""

from __future__ import annotations

import io
import logging
import sys

from attendance_core.config import reset_config
from attendance_core.logging_config import ColoredFormatter, LOG_FORMAT, setup_logging


def test_setup_logging_with_file(tmp_path):
    """Test console and file handlers with the configured level."""
    log_file = tmp_path / "engine.log"

    logger = setup_logging("attendance_core.test_file", level="DEBUG", log_file=str(log_file))
    logger.debug("queue drained")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.DEBUG
    assert not logger.propagate
    assert len(logger.handlers) == 2
    assert "| DEBUG    | attendance_core.test_file | queue drained" in log_file.read_text()

    for handler in logger.handlers:
        handler.close()


def test_setup_logging_is_idempotent():
    """Test that repeated setup does not add duplicate handlers."""
    first = setup_logging("attendance_core.test_idempotent", level="INFO")
    second = setup_logging("attendance_core.test_idempotent", level="DEBUG")

    assert first is second
    assert len(second.handlers) == 1


def test_colored_formatter_plain_when_not_tty(monkeypatch):
    """Test that level names stay plain when stdout is not a terminal."""
    monkeypatch.setattr(sys, "stdout", io.StringIO())
    formatter = ColoredFormatter(LOG_FORMAT)
    record = logging.LogRecord("attendance_core", logging.WARNING, __file__, 1, "retrying", None, None)

    output = formatter.format(record)

    assert "WARNING" in output
    assert "\033[" not in output


def test_colored_formatter_on_terminal():
    """Test that level names are colored for a terminal stream."""

    class Terminal(io.StringIO):
        def isatty(self):
            return True

    formatter = ColoredFormatter(stream=Terminal())
    record = logging.LogRecord("attendance_core", logging.ERROR, __file__, 1, "drain failed", None, None)

    output = formatter.format(record)

    assert "\033[31m" in output
    assert record.levelname == "ERROR"


def test_level_and_file_from_config(config, monkeypatch, tmp_path):
    """Test that LOG_LEVEL and LOG_FILE are read through Config."""
    log_file = tmp_path / "from_env.log"
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("LOG_FILE", str(log_file))
    reset_config()

    logger = setup_logging("attendance_core.test_from_config")
    logger.info("hidden")
    logger.warning("entry dead-lettered")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.WARNING
    content = log_file.read_text()
    assert "entry dead-lettered" in content
    assert "hidden" not in content

    for handler in logger.handlers:
        handler.close()
