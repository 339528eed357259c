"""
Logging setup for Prsync.

Library modules log through the standard `logging` module; the CLI routes
that tree into loguru, which owns the sinks (stderr, and the rotating
watch log for `prsync watch check`).
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = "<level>{level: <8}</level> | <cyan>{name}</cyan> - <level>{message}</level>"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

WATCH_LOG_NAME = "watch.log"


class InterceptHandler(logging.Handler):
    """Intercept standard logging messages toward Loguru sinks."""
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(verbose: bool = False) -> None:
    """Send stdlib logging to loguru with a single stderr sink."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        colorize=True,
        format=CONSOLE_FORMAT,
    )
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.INFO)


def add_watch_log_sink(log_dir: Path) -> Path:
    """Add the rotating watch log sink. Returns the log file path."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / WATCH_LOG_NAME
    logger.add(
        str(log_file),
        level="INFO",
        rotation="1 MB",
        retention=5,
        format=FILE_FORMAT,
    )
    return log_file


def last_log_line(log_file: Path) -> str | None:
    """Last non-empty line of a log file, or None if there is none."""
    try:
        with open(log_file, encoding="utf-8", errors="replace") as f:
            lines = [line.rstrip() for line in f if line.strip()]
    except OSError:
        return None
    return lines[-1] if lines else None
