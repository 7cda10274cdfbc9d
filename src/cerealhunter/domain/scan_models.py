from __future__ import annotations

"""
Scan Domain Data Models.

Defines the immutable records exchanged between the scanning pipeline,
the call-site matcher and the interface layer, plus the small thread-safe
counter shared by concurrent workers.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, List, Optional

# -----------------------------------------------------------------------------
# TRAVERSAL MODELS
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class DirectoryTask:
    """
    A pending directory awaiting traversal.

    Attributes:
        path: Absolute directory path.
        device: Device id of the volume the task was discovered on (None if unknown).
    """
    path: str
    device: Optional[int] = None


class AtomicCounter:
    """Monotonic counter safe for concurrent increments."""

    def __init__(self, value: int = 0) -> None:
        self._value = value
        self._lock = threading.Lock()

    def increment(self, amount: int = 1) -> int:
        with self._lock:
            self._value += amount
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

# -----------------------------------------------------------------------------
# MATCHING MODELS
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class TargetSignature:
    """Fully-qualified name of the callee of a call instruction."""
    full_name: str

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True)
class MatchResult:
    """
    A single call site whose target matched a search entry.

    Attributes:
        caller: Fully-qualified name of the method containing the call.
        target: Fully-qualified name of the called method.
        pattern: The search entry found inside the target name.
        source_path: Path of the binary the method was read from.
        offset: Byte offset of the call instruction inside the method body.
        method: The calling method, kept for instruction dumps (not compared).
    """
    caller: str
    target: str
    pattern: str
    source_path: str
    offset: int
    method: Any = field(default=None, compare=False, repr=False)

# -----------------------------------------------------------------------------
# RUN RESULT MODELS
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class ScanError:
    """
    Encapsulates a per-file failure that was isolated during a run.

    Attributes:
        path: File that could not be analysed.
        kind: Failure category ("open_failure" or "analysis_fault").
        error: Descriptive error message.
    """
    path: str
    kind: str
    error: str


@dataclass(frozen=True)
class ScanSummary:
    """
    Aggregated statistics of a completed run.

    Attributes:
        mode: "path" or "scan".
        files_queued: Candidate files discovered (1 in path mode).
        files_processed: Candidate files handed to a worker.
        assemblies_scanned: Files successfully opened and matched.
        files_skipped: Candidates rejected by the classifier (also listed
            in errors as open failures).
        matches: Total number of reported call sites.
        directories_processed: Directories fully listed during traversal.
        directories_denied: Directories skipped for lack of permission.
        errors: Isolated per-file failures.
    """
    mode: str
    files_queued: int = 0
    files_processed: int = 0
    assemblies_scanned: int = 0
    files_skipped: int = 0
    matches: int = 0
    directories_processed: int = 0
    directories_denied: int = 0
    errors: List[ScanError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True unless a path-mode run failed to analyse its only file."""
        return not (self.mode == "path" and self.errors)
