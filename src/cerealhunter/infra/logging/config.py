from __future__ import annotations

"""
Logging Configuration Models.

Settings consumed by configure_logging(). The CLI builds them from its
--debug and --log-file flags; DEBUG runs also print the emitting thread on
the console, since traversal and analysis workers log concurrently.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

_LEVEL_MAP: Dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

CONSOLE_FMT = "%(levelname)s | %(message)s"
CONSOLE_DEBUG_FMT = "%(levelname)s | %(threadName)s | %(name)s | %(message)s"
FILE_FMT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"


@dataclass(frozen=True)
class LoggingConfig:
    """
    Attributes:
        level: Minimum severity level to capture.
        console: Write records to stderr.
        log_file: Optional rotating log file.
        max_bytes: Size of one log segment before rotation.
        backup_count: Rotated segments kept on disk.
        console_fmt: Format of stderr lines.
        file_fmt: Format of log file lines.
        datefmt: Timestamp format of log file lines.
    """
    level: str = "INFO"
    console: bool = True
    log_file: Optional[str] = None

    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 3

    console_fmt: str = CONSOLE_FMT
    file_fmt: str = FILE_FMT
    datefmt: str = "%Y-%m-%d %H:%M:%S"

    @classmethod
    def for_cli(cls, debug: bool = False, log_file: Optional[str] = None) -> "LoggingConfig":
        """Build the settings used by a command-line run."""
        if debug:
            return cls(level="DEBUG", log_file=log_file, console_fmt=CONSOLE_DEBUG_FMT)
        return cls(level="INFO", log_file=log_file)
