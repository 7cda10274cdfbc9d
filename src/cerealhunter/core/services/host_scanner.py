from __future__ import annotations

"""
Host-Wide Directory Traversal Service.

A fixed pool of threads drains a shared directory queue and feeds a shared
file queue with every allow-listed file found under the given roots.
Workers are both producers and consumers of the directory queue, so the
queue tracks in-flight tasks and only reports exhaustion once no worker
holds a directory that could still yield subdirectories.
"""

import errno
import logging
import os
import queue
import threading
from collections import deque
from typing import Deque, Iterable, List, Optional

from cerealhunter.core.services.progress import ProgressMonitor
from cerealhunter.domain.config import DEFAULT_EXTENSIONS, DEFAULT_PROGRESS_INTERVAL, default_worker_count
from cerealhunter.domain.scan_models import AtomicCounter, DirectoryTask
from cerealhunter.infra.fs import has_allowed_extension, normalize_extensions

logger = logging.getLogger(__name__)


# ==============================================================================
# SHARED WORK QUEUE
# ==============================================================================

class DirectoryQueue:
    """
    FIFO of DirectoryTasks with a drain barrier.

    get() blocks while the queue is empty but other tasks are still being
    processed, and returns None only when the queue is empty and no task is
    in flight. Every get() that returns a task must be paired with a
    task_done() call.
    """

    def __init__(self, tasks: Iterable[DirectoryTask] = ()) -> None:
        self._items: Deque[DirectoryTask] = deque(tasks)
        self._cond = threading.Condition()
        self._in_flight = 0

    def put(self, task: DirectoryTask) -> None:
        with self._cond:
            self._items.append(task)
            self._cond.notify()

    def get(self) -> Optional[DirectoryTask]:
        with self._cond:
            while not self._items:
                if self._in_flight == 0:
                    self._cond.notify_all()
                    return None
                self._cond.wait()
            self._in_flight += 1
            return self._items.popleft()

    def task_done(self) -> None:
        with self._cond:
            self._in_flight -= 1
            if self._in_flight == 0 and not self._items:
                self._cond.notify_all()

    def qsize(self) -> int:
        with self._cond:
            return len(self._items)


# ==============================================================================
# TRAVERSAL SERVICE
# ==============================================================================

class HostScanner:
    """
    Concurrent enumeration of candidate files under a set of roots.

    Args:
        roots: Top-level directories (mount points or user-supplied roots).
        extensions: Extension allow-list (case-insensitive).
        max_workers: Number of traversal threads.
        stay_on_volume: Do not descend into directories on another device (POSIX).
        progress_interval: Seconds between progress lines (0 disables them).
    """

    def __init__(
            self,
            roots: Iterable[str],
            extensions: Iterable[str] = DEFAULT_EXTENSIONS,
            max_workers: Optional[int] = None,
            stay_on_volume: bool = True,
            progress_interval: float = DEFAULT_PROGRESS_INTERVAL,
    ) -> None:
        self.roots: List[str] = list(roots)
        self.extensions = normalize_extensions(extensions)
        self.max_workers = max(1, max_workers or default_worker_count())
        self.stay_on_volume = stay_on_volume and os.name != "nt"
        self.progress_interval = progress_interval

        self.file_queue: queue.Queue[str] = queue.Queue()
        self.directories_processed = AtomicCounter()
        self.directories_denied = AtomicCounter()
        self.directories_failed = AtomicCounter()

    # -------------------------------------------------------------------------
    # PUBLIC API
    # -------------------------------------------------------------------------

    def run(self) -> queue.Queue[str]:
        """
        Traverse every root and return the populated file queue.

        Blocks until all traversal workers have joined.
        """
        dir_queue = DirectoryQueue(self._seed_tasks())
        logger.info(f"Scanning {len(self.roots)} root(s) with {self.max_workers} worker(s)")

        workers = [
            threading.Thread(
                target=self._worker_loop,
                args=(dir_queue,),
                name=f"DirectoryWorker-{i}",
                daemon=True,
            )
            for i in range(self.max_workers)
        ]

        monitor = None
        if self.progress_interval > 0:
            monitor = ProgressMonitor(self.status_line, interval=self.progress_interval).start()

        try:
            for worker in workers:
                worker.start()
            for worker in workers:
                worker.join()
        finally:
            if monitor is not None:
                monitor.stop()

        logger.info(
            f"Traversal complete. Directories: {self.directories_processed.value}, "
            f"Queued files: {self.file_queue.qsize()}"
        )
        return self.file_queue

    def status_line(self) -> str:
        return (
            f"Processed directories: {self.directories_processed.value}, "
            f"Queued files: {self.file_queue.qsize()}"
        )

    # -------------------------------------------------------------------------
    # WORKERS
    # -------------------------------------------------------------------------

    def _seed_tasks(self) -> List[DirectoryTask]:
        tasks: List[DirectoryTask] = []
        for root in self.roots:
            try:
                device = os.stat(root).st_dev if self.stay_on_volume else None
            except OSError as e:
                logger.warning(f"Skipping unreadable root {root}: {e}")
                continue
            tasks.append(DirectoryTask(path=root, device=device))
        return tasks

    def _worker_loop(self, dir_queue: DirectoryQueue) -> None:
        while True:
            task = dir_queue.get()
            if task is None:
                return
            try:
                self.process_directory(task, dir_queue)
            finally:
                dir_queue.task_done()

    def process_directory(self, task: DirectoryTask, dir_queue: DirectoryQueue) -> None:
        """
        List one directory: queue allow-listed files and subdirectories.

        Faults are contained here: the directory is abandoned, never retried.
        """
        current_dir = task.path
        try:
            with os.scandir(current_dir) as it:
                entries = list(it)

            subdirs: List[DirectoryTask] = []
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    child = self._child_task(entry, task)
                    if child is not None:
                        subdirs.append(child)
                elif entry.is_file(follow_symlinks=False) and has_allowed_extension(entry.name, self.extensions):
                    self.file_queue.put(entry.path)

            for child in subdirs:
                dir_queue.put(child)

            self.directories_processed.increment()

        except PermissionError as e:
            self.directories_denied.increment()
            logger.debug(f"Access denied to directory: {current_dir}. Error: {e}")
        except OSError as e:
            self.directories_failed.increment()
            if e.errno == errno.ENAMETOOLONG:
                logger.warning(f"Path too long: {current_dir}. Error: {e}")
            else:
                logger.warning(f"Error accessing directory: {current_dir}. Error: {e}")
        except Exception as e:
            self.directories_failed.increment()
            logger.warning(f"Unexpected error listing directory: {current_dir}. Error: {e}")
            logger.debug("Directory listing fault details", exc_info=True)

    def _child_task(self, entry: os.DirEntry, parent: DirectoryTask) -> Optional[DirectoryTask]:
        if not self.stay_on_volume or parent.device is None:
            return DirectoryTask(path=entry.path)

        try:
            device = entry.stat(follow_symlinks=False).st_dev
        except OSError as e:
            logger.debug(f"Cannot stat directory {entry.path}: {e}")
            return None

        if device != parent.device:
            logger.debug(f"Not crossing into another volume: {entry.path}")
            return None
        return DirectoryTask(path=entry.path, device=device)

