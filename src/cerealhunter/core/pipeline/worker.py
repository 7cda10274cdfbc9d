from __future__ import annotations

"""
Atomic Analysis Worker.

Encapsulates the processing of a single candidate file: classification,
metadata parsing, call-site matching and reporting. Every fault is
contained here so that one bad binary never affects its siblings.
"""

import logging
from typing import Any, Dict, Sequence

from cerealhunter.core.analysis.classifier import is_dotnet_assembly
from cerealhunter.core.analysis.matcher import find_method_calls
from cerealhunter.core.reporting.reporter import ConsoleReporter
from cerealhunter.domain.errors import AssemblyOpenError
from cerealhunter.infra.metadata.reader import open_assembly

logger = logging.getLogger(__name__)

STATUS_SCANNED = "scanned"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

KIND_OPEN_FAILURE = "open_failure"
KIND_ANALYSIS_FAULT = "analysis_fault"

NOT_MANAGED_ERROR = "Not a .NET assembly"


def process_file_task(
        file_path: str,
        methods_to_search: Sequence[str],
        reporter: ConsoleReporter,
        *,
        classify: bool = True,
) -> Dict[str, Any]:
    """
    Execute the full analysis lifecycle for a single file.

    Designed to run inside a ThreadPoolExecutor; never raises.

    Args:
        file_path: Absolute path of the candidate binary.
        methods_to_search: Ordered search entries.
        reporter: Sink for the matches found in this file.
        classify: Run the header pre-filter first (host-wide mode).

    Returns:
        Dict[str, Any]: Task result with keys ok, status, file_path,
                        matches, kind and error.
    """
    result: Dict[str, Any] = {
        "ok": False,
        "status": STATUS_FAILED,
        "file_path": file_path,
        "matches": 0,
        "kind": "",
        "error": "",
    }

    try:
        # 1. Classification Phase
        if classify and not is_dotnet_assembly(file_path):
            logger.info(f"Failed to load assembly {file_path}: {NOT_MANAGED_ERROR}")
            result.update(status=STATUS_SKIPPED, kind=KIND_OPEN_FAILURE, error=NOT_MANAGED_ERROR)
            return result

        # 2. Parsing Phase
        try:
            assembly = open_assembly(file_path)
        except AssemblyOpenError as e:
            logger.warning(f"Failed to load assembly {file_path}: {e}")
            result.update(kind=KIND_OPEN_FAILURE, error=str(e))
            return result

        # 3. Matching & Reporting Phase
        count = 0
        for match in find_method_calls(assembly, methods_to_search, file_path):
            reporter.report(match)
            count += 1

        result.update(ok=True, status=STATUS_SCANNED, matches=count)
        return result

    except Exception as e:
        logger.error(f"Error processing file {file_path}: {e}")
        logger.debug("Analysis fault details", exc_info=True)
        result.update(kind=KIND_ANALYSIS_FAULT, error=str(e) or type(e).__name__)
        return result
