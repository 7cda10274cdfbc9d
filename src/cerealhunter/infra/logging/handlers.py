from __future__ import annotations

"""
Handler Factories.

Every handler built here is tagged, so reconfiguration and shutdown only
touch what this package installed and leave the handlers of pytest or of
an embedding application alone.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import List, Optional

_HANDLER_TAG_ATTR: str = "_cerealhunter_handler"


def _tag_handler(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_TAG_ATTR, True)
    return handler


def _is_our_handler(handler: logging.Handler) -> bool:
    return bool(getattr(handler, _HANDLER_TAG_ATTR, False))


class _StderrHandler(logging.StreamHandler):
    """StreamHandler that writes to whatever sys.stderr is at emit time."""

    def __init__(self) -> None:
        super().__init__(sys.stderr)

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value) -> None:
        pass


def build_console_handler(level: int, fmt: str) -> logging.Handler:
    """stderr sink; stdout carries the findings only."""
    handler = _StderrHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    return _tag_handler(handler)


def build_file_handler(
        log_file: str,
        level: int,
        fmt: str,
        datefmt: str,
        max_bytes: int,
        backup_count: int,
) -> Optional[logging.Handler]:
    """
    Open a rotating log file, creating its directory when needed.

    A file that cannot be opened must not stop the scan: the failure is
    written to stderr and None is returned.
    """
    path = os.path.abspath(log_file)
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=int(max_bytes), backupCount=int(backup_count), encoding="utf-8")
    except OSError as e:
        sys.stderr.write(f"WARNING: Cannot open log file '{log_file}': {e}\n")
        return None

    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return _tag_handler(handler)


def close_handlers(handlers: List[logging.Handler]) -> None:
    for handler in handlers:
        try:
            handler.flush()
        finally:
            handler.close()
