"""Logging configuration for cluster assembly.

Host commands are logged at DEBUG with a ``[host]`` prefix by the modules that
run them, so a verbose run or a log file holds the full remote transcript while
the console only shows warnings and errors.
"""

import logging
import sys
from pathlib import Path
from typing import TextIO

FILE_FORMAT = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_FORMAT = "%(asctime)s %(levelname)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# SSH transport chatter would otherwise drown the per-host command log
QUIET_LOGGERS = ("paramiko", "paramiko.transport", "paramiko.sftp")


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    verbose: bool = False,
    stream: TextIO | None = None,
) -> None:
    """Configure logging for an assembly run.

    Args:
        level: Root logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file receiving every record at DEBUG, thread names included
        verbose: If True, log DEBUG everywhere, console included
        stream: Console stream, stderr by default
    """
    if verbose:
        level = "DEBUG"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            logging.warning(f"Failed to create log file handler: {e}")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
            root_logger.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
