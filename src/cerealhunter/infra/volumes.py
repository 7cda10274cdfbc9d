from __future__ import annotations

"""
Mounted Volume Enumeration.

Resolves the top-level roots of a host-wide scan: every mounted partition
that is currently readable, the Python counterpart of enumerating ready
drives.
"""

import logging
import os
from typing import List

import psutil

logger = logging.getLogger(__name__)


def list_volume_roots() -> List[str]:
    """
    Return the mount points of all ready, readable volumes.

    Falls back to the filesystem root of the current drive when no
    partition can be enumerated (e.g. inside minimal containers).

    Returns:
        List[str]: Unique absolute root paths, in enumeration order.
    """
    roots: List[str] = []
    try:
        partitions = psutil.disk_partitions(all=False)
    except OSError as e:
        logger.warning(f"Unable to enumerate mounted volumes: {e}")
        partitions = []

    for part in partitions:
        mount = part.mountpoint
        if not mount or mount in roots:
            continue
        if not _is_ready(mount):
            logger.debug(f"Skipping volume that is not ready: {mount}")
            continue
        roots.append(mount)

    if not roots:
        fallback = os.path.abspath(os.sep)
        logger.debug(f"No volumes enumerated, falling back to {fallback}")
        roots.append(fallback)

    return roots


def _is_ready(mount: str) -> bool:
    """A volume is ready when its root is a directory we can list."""
    return os.path.isdir(mount) and os.access(mount, os.R_OK | os.X_OK)
