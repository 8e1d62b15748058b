"""
Diagnostic logging helpers for the observability package.

Everything here concerns the *diagnostic* channel (stdlib ``logging`` on
stderr), which reports the package's own recoverable failures: skipped PII
patterns, failed pattern fetches, persistence errors.  Structured product
logs go through :class:`platform_core.observability.logging.Logger` instead.
"""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .constants import LOG_BACKUP_COUNT, LOG_MAX_BYTES
from .observability.pii import PiiScrubber

DIAGNOSTIC_LOGGER_NAME = "platform_core"


class _DevFormatter(logging.Formatter):
    """Human-readable coloured output for local development."""

    _COLORS = {
        "DEBUG": "\033[36m",     # cyan
        "INFO": "\033[32m",      # green
        "WARNING": "\033[33m",   # yellow
        "ERROR": "\033[31m",     # red
        "CRITICAL": "\033[35m",  # magenta
    }
    _RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self._COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        base = (
            f"{color}{ts} {record.levelname:<8}{self._RESET} "
            f"{record.name} {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[0] is not None:
            base += "\n" + self.formatException(record.exc_info)
        return base


def setup_logger(
    name: str = DIAGNOSTIC_LOGGER_NAME,
    log_file: Optional[str] = None,
    level: Optional[int] = None,
    debug: bool = False,
) -> logging.Logger:
    """
    Set up a diagnostic logger with console (and optionally file) output.

    Module loggers under ``platform_core.*`` propagate here, so configuring
    the package logger once covers every component.  Each handler carries a
    :class:`PiiScrubber` filter.

    Args:
        name: Logger name.
        log_file: Filename under ``$OBSERVABILITY_LOG_DIR``. Ignored when the
            variable is unset.
        level: Logging level (overrides debug flag if provided)
        debug: If True, set level to DEBUG

    Returns:
        Configured logger
    """
    if level is None:
        level = logging.DEBUG if debug else logging.INFO

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    scrubber = PiiScrubber()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    if os.environ.get("LOG_FORMAT", "").lower() == "json":
        from .observability.logging import JsonFormatter

        console_handler.setFormatter(JsonFormatter())
    else:
        console_handler.setFormatter(_DevFormatter())
    console_handler.addFilter(scrubber)
    logger.addHandler(console_handler)

    log_dir = os.environ.get("OBSERVABILITY_LOG_DIR", "")
    if log_file and log_dir:
        log_path = Path(log_dir) / log_file
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # File handler with rotation
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        file_handler.addFilter(scrubber)
        logger.addHandler(file_handler)

    return logger
