from __future__ import annotations

"""
Traversal Progress Monitor.

Emits a periodic status line on a background thread while the host
traversal runs. Purely observational: it only reads counters.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ProgressMonitor:
    """
    Periodic reporter driven by an Event-based timer.

    The first line is emitted immediately on start, then every
    `interval` seconds until stop() is called.

    Args:
        status: Callable producing the status line.
        interval: Seconds between two status lines.
        emit: Sink for the status line (defaults to logger.info).
    """

    def __init__(
            self,
            status: Callable[[], str],
            interval: float = 5.0,
            emit: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._status = status
        self._interval = interval
        self._emit = emit or logger.info
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "ProgressMonitor":
        if self._thread is not None:
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="ProgressMonitor", daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self) -> "ProgressMonitor":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _run(self) -> None:
        while True:
            self._emit(self._status())
            if self._stop.wait(self._interval):
                return
