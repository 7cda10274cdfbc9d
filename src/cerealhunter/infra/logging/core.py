from __future__ import annotations

"""
Logging Lifecycle.

Traversal and analysis workers only put records on an in-memory queue; one
QueueListener thread owns the stderr and file handlers and does all of the
writing. The root logger carries a single tagged QueueHandler, and the
listener is kept on the root logger so that a later call (or shutdown)
can find and stop it.
"""

import atexit
import logging
import queue
from logging.handlers import QueueHandler, QueueListener
from typing import List, Optional

from cerealhunter.infra.logging.config import _LEVEL_MAP, LoggingConfig
from cerealhunter.infra.logging.handlers import (
    _is_our_handler,
    _tag_handler,
    build_console_handler,
    build_file_handler,
    close_handlers,
)

_CONFIGURED_FLAG_ATTR: str = "_cerealhunter_configured"
_QUEUE_LISTENER_ATTR: str = "_cerealhunter_queue_listener"


# ==============================================================================
# PUBLIC API
# ==============================================================================

def configure_logging(cfg: LoggingConfig, *, force: bool = False) -> logging.Logger:
    """
    Install the queue-based handlers on the root logger.

    Repeated calls are no-ops unless `force` is set, in which case the
    previous listener is flushed and replaced.

    Args:
        cfg: Logging settings.
        force: Replace an existing configuration.

    Returns:
        logging.Logger: The root logger.
    """
    root = logging.getLogger()
    if getattr(root, _CONFIGURED_FLAG_ATTR, False) and not force:
        return root

    _detach(root)

    level = _parse_level(cfg.level)
    root.setLevel(level)

    sinks = _build_sinks(cfg, level)
    if not sinks:
        return root

    records: queue.Queue[logging.LogRecord] = queue.Queue()
    listener = QueueListener(records, *sinks, respect_handler_level=True)
    listener.start()
    root.addHandler(_tag_handler(QueueHandler(records)))

    setattr(root, _QUEUE_LISTENER_ATTR, listener)
    setattr(root, _CONFIGURED_FLAG_ATTR, True)
    atexit.register(_safe_stop_listener, listener)
    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def shutdown_logging() -> None:
    """Drain pending records, then remove and close every handler we installed."""
    root = logging.getLogger()
    _detach(root)
    setattr(root, _CONFIGURED_FLAG_ATTR, False)


# ==============================================================================
# PRIVATE HELPERS
# ==============================================================================

def _parse_level(level: str) -> int:
    if not level:
        return logging.INFO
    return _LEVEL_MAP.get(str(level).strip().upper(), logging.INFO)


def _build_sinks(cfg: LoggingConfig, level: int) -> List[logging.Handler]:
    sinks: List[logging.Handler] = []
    if cfg.console:
        sinks.append(build_console_handler(level, cfg.console_fmt))
    if cfg.log_file:
        fh = build_file_handler(cfg.log_file, level, cfg.file_fmt, cfg.datefmt, cfg.max_bytes, cfg.backup_count)
        if fh is not None:
            sinks.append(fh)
    return sinks


def _detach(root: logging.Logger) -> None:
    """Stop the current listener (flushing its queue) and drop our handlers."""
    listener = getattr(root, _QUEUE_LISTENER_ATTR, None)
    if listener is not None:
        _safe_stop_listener(listener)
        close_handlers(list(listener.handlers))
        setattr(root, _QUEUE_LISTENER_ATTR, None)

    for handler in list(root.handlers):
        if _is_our_handler(handler):
            root.removeHandler(handler)
            handler.close()


def _safe_stop_listener(listener: Optional[QueueListener]) -> None:
    # QueueListener.stop() fails on an already stopped listener
    if listener is not None and getattr(listener, "_thread", None) is not None:
        listener.stop()
