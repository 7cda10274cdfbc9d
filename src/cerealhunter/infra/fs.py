from __future__ import annotations

"""
FileSystem Infrastructure Layer.

Path normalisation and extension helpers shared by the CLI, the validator
and the host traversal workers.
"""

import os
from typing import Iterable, List, Optional


def normalize_path(path: Optional[str], fallback: str = "") -> str:
    """
    Normalize a path string into an absolute filesystem path.

    Handles environment variable expansion ($VAR/%VAR%) and user home
    shortcuts (~/). Reverts to fallback if the input is empty.

    Args:
        path: Raw input path string.
        fallback: Default path to use if the input is empty.

    Returns:
        str: Normalized absolute path, or "" when both inputs are empty.
    """
    p = (path or "").strip() or fallback
    if not p:
        return ""
    p = os.path.expandvars(os.path.expanduser(p))
    return os.path.abspath(p)


def normalize_extensions(extensions: Iterable[str]) -> List[str]:
    """
    Lower-case extensions and force a leading dot, preserving order.

    Args:
        extensions: Raw extension strings (".dll", "EXE", ...).

    Returns:
        List[str]: Unique, normalised extensions.
    """
    out: List[str] = []
    for ext in extensions:
        e = str(ext).strip().lower()
        if not e:
            continue
        if not e.startswith("."):
            e = "." + e
        if e not in out:
            out.append(e)
    return out


def has_allowed_extension(file_name: str, extensions: Iterable[str]) -> bool:
    """Return True if the file's extension (case-insensitive) is allow-listed."""
    _, ext = os.path.splitext(file_name)
    return bool(ext) and ext.lower() in extensions
