from __future__ import annotations

"""
Match Reporter.

Renders call-site findings as human-readable text. Each finding (and its
optional instruction dump) is written as one block under a lock, so
findings emitted by concurrent analysis workers never interleave.
"""

import sys
import threading
from typing import List, Optional, TextIO

from cerealhunter.domain.scan_models import MatchResult
from cerealhunter.infra.metadata.model import MethodUnit

SEPARATOR = "-" * 80


class ConsoleReporter:
    """
    Thread-safe writer of MatchResults.

    Args:
        decompile: Append the full instruction dump of the calling method.
        stream: Output stream (defaults to the current sys.stdout).
    """

    def __init__(self, decompile: bool = False, stream: Optional[TextIO] = None) -> None:
        self.decompile = decompile
        self._stream = stream
        self._lock = threading.Lock()
        self.reported = 0

    def report(self, match: MatchResult) -> None:
        lines = [format_match(match)]
        if self.decompile and match.method is not None:
            lines.append("Decompiled Method:")
            lines.append(decompile_method(match.method))
            lines.append(SEPARATOR)
        lines.append("")

        stream = self._stream or sys.stdout
        with self._lock:
            stream.write("\n".join(lines) + "\n")
            stream.flush()
            self.reported += 1


def format_match(match: MatchResult) -> str:
    """Single-line description of a finding."""
    return (
        f"[*] Method: {match.caller} in {match.source_path} "
        f"calls {match.target} at offset {match.offset}"
    )


def decompile_method(method: MethodUnit) -> str:
    """
    Render a flat dump of a method: locals first, then every instruction.

    Args:
        method: Method to render; body-less methods render an empty block.

    Returns:
        str: The dump, without a trailing newline.
    """
    out: List[str] = [f"Method: {method.full_name}", "{"]

    if method.body is not None:
        for variable in method.body.variables:
            out.append(f"    var {variable}: {variable.type_name}")
        for instr in method.body.instructions:
            out.append(f"    {instr}")

    out.append("}")
    return "\n".join(out)
