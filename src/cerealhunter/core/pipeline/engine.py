from __future__ import annotations

"""
Core orchestration pipeline.

Coordinates the two run modes:
1. Path mode: analyse a single binary directly (no header pre-filter).
2. Scan mode: enumerate every volume with the HostScanner, then analyse the
   queued files on a bounded thread pool sized to the host parallelism.
"""

import logging
import queue
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List, Optional

from cerealhunter.core.pipeline.worker import STATUS_SCANNED, STATUS_SKIPPED, process_file_task
from cerealhunter.core.reporting.reporter import ConsoleReporter
from cerealhunter.core.services.host_scanner import HostScanner
from cerealhunter.domain.config import MODE_SCAN
from cerealhunter.domain.scan_models import ScanError, ScanSummary
from cerealhunter.infra.volumes import list_volume_roots

logger = logging.getLogger(__name__)


def run_scan(cfg: Dict[str, Any], reporter: Optional[ConsoleReporter] = None) -> ScanSummary:
    """
    Execute a validated configuration.

    Args:
        cfg: Configuration produced by validate_config / ensure_runnable.
        reporter: Match sink; a stdout reporter is created when omitted.

    Returns:
        ScanSummary: Aggregated statistics of the run.
    """
    reporter = reporter or ConsoleReporter(decompile=bool(cfg.get("decompile")))

    if cfg.get("mode") == MODE_SCAN:
        return scan_host_for_assemblies(cfg, reporter)
    return analyze_single_assembly(cfg["assembly_path"], cfg["search_methods"], reporter)


def analyze_single_assembly(
        assembly_path: str,
        methods_to_search: List[str],
        reporter: ConsoleReporter,
) -> ScanSummary:
    """Path mode: scan one binary without the classifier pre-filter."""
    logger.info(f"Analyzing assembly: {assembly_path}")
    res = process_file_task(assembly_path, methods_to_search, reporter, classify=False)

    errors = [] if res["ok"] else [ScanError(path=assembly_path, kind=res["kind"], error=res["error"])]
    return ScanSummary(
        mode="path",
        files_queued=1,
        files_processed=1,
        assemblies_scanned=1 if res["ok"] else 0,
        matches=res["matches"],
        errors=errors,
    )


def scan_host_for_assemblies(cfg: Dict[str, Any], reporter: ConsoleReporter) -> ScanSummary:
    """
    Scan mode: traverse all roots, then analyse every queued file.

    Args:
        cfg: Validated configuration.
        reporter: Shared, thread-safe match sink.

    Returns:
        ScanSummary: Aggregated statistics of the run.
    """
    roots = cfg.get("scan_roots") or list_volume_roots()
    max_workers = int(cfg["max_workers"])

    # 1. Discovery phase (all traversal workers joined on return)
    scanner = HostScanner(
        roots,
        extensions=cfg["extensions"],
        max_workers=max_workers,
        stay_on_volume=bool(cfg.get("stay_on_volume", True)),
        progress_interval=float(cfg["progress_interval"]),
    )
    file_queue = scanner.run()
    files_queued = file_queue.qsize()

    # 2. Analysis phase (bounded fan-out)
    counters = {"processed": 0, "scanned": 0, "skipped": 0, "matches": 0}
    errors: List[ScanError] = []

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="AnalysisWorker") as executor:
        futures = []
        while True:
            try:
                file_path = file_queue.get_nowait()
            except queue.Empty:
                break
            counters["processed"] += 1
            futures.append(executor.submit(
                process_file_task,
                file_path,
                cfg["search_methods"],
                reporter,
                classify=True,
            ))

        for future in as_completed(futures):
            res = future.result()
            counters["matches"] += res["matches"]
            if res["status"] == STATUS_SCANNED:
                counters["scanned"] += 1
            elif res["status"] == STATUS_SKIPPED:
                counters["skipped"] += 1
            if res["kind"]:
                errors.append(ScanError(path=res["file_path"], kind=res["kind"], error=res["error"]))

    logger.info(f"Processing complete. Processed files: {counters['processed']}")

    return ScanSummary(
        mode="scan",
        files_queued=files_queued,
        files_processed=counters["processed"],
        assemblies_scanned=counters["scanned"],
        files_skipped=counters["skipped"],
        matches=counters["matches"],
        directories_processed=scanner.directories_processed.value,
        directories_denied=scanner.directories_denied.value,
        errors=errors,
    )
