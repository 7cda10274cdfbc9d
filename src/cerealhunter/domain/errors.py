from __future__ import annotations

"""
Domain Exception Hierarchy.

Defines the errors raised across the scanning pipeline. Per-unit failures
(directories, files) are handled at the boundary of the unit that raised
them; only usage errors reach the interface layer.
"""


class CerealHunterError(Exception):
    """Base class for all application-level errors."""


class UsageError(CerealHunterError):
    """Raised when the run configuration cannot start a scan."""


class AssemblyOpenError(CerealHunterError):
    """
    Raised when a file cannot be opened as a managed assembly.

    Attributes:
        path: Filesystem path of the offending file.
        reason: Short description of the underlying failure.
    """

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason

    def __str__(self) -> str:
        return self.reason
