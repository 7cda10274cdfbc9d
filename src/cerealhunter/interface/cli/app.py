from __future__ import annotations

"""
Command Line Interface (CLI) Application Controller.

Orchestrates the CLI lifecycle: logging bootstrap, merging of defaults and
command-line overrides, validation, scan execution and summary rendering.
"""

import sys
from typing import Any, Dict, List, Optional

from cerealhunter.core.pipeline.engine import run_scan
from cerealhunter.core.pipeline.validator import ensure_runnable, validate_config
from cerealhunter.core.reporting.reporter import ConsoleReporter
from cerealhunter.domain.config import get_default_config
from cerealhunter.domain.errors import UsageError
from cerealhunter.domain.scan_models import ScanSummary
from cerealhunter.infra.logging import LoggingConfig, configure_logging, get_logger
from cerealhunter.interface.cli import args as cli_args

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130

# -----------------------------------------------------------------------------
# ENTRYPOINT ORCHESTRATOR
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """
    Execute the main CLI application workflow.

    Args:
        argv: Optional list of command line arguments. Defaults to sys.argv.

    Returns:
        int: Process exit code.
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8")

    # 1. Argument parsing phase
    parser = cli_args.build_parser()
    args = parser.parse_args(argv)

    # 2. Logging bootstrap
    configure_logging(LoggingConfig.for_cli(debug=args.debug, log_file=args.log_file))

    # 3. Merge overrides and validate
    raw_conf = _merge_config(get_default_config(), cli_args.args_to_overrides(args))
    clean_conf, warnings = validate_config(raw_conf)
    for w in warnings:
        logger.warning(f"Configuration Constraint: {w}")

    if args.scan and args.assembly_path:
        logger.warning("Both --scan and --path given; running the host-wide scan.")

    try:
        ensure_runnable(clean_conf)
    except UsageError as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    # 4. Scan execution phase
    reporter = ConsoleReporter(decompile=clean_conf["decompile"])
    try:
        summary = run_scan(clean_conf, reporter)
    except KeyboardInterrupt:
        logger.warning("Scan interrupted by user.")
        return EXIT_INTERRUPTED

    # 5. Output rendering phase
    _print_human_summary(summary)
    return EXIT_OK if summary.ok else EXIT_FAILURE

# -----------------------------------------------------------------------------
# CONFIGURATION MERGING
# -----------------------------------------------------------------------------

def _merge_config(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shallow merge of override values into the base configuration.

    Only known keys are merged and None values never replace a default.
    """
    out = dict(base)
    for k, v in overrides.items():
        if k in base and v is not None:
            out[k] = v
    return out

# -----------------------------------------------------------------------------
# VIEW RENDERING (HUMAN READABLE)
# -----------------------------------------------------------------------------

def _print_human_summary(summary: ScanSummary) -> None:
    """Print the run statistics after the findings."""
    if summary.mode == "path":
        for err in summary.errors:
            print(f"ERROR: {err.path}: {err.error}", file=sys.stderr)
        print(f"Analysis complete. Matches: {summary.matches}")
        return

    print(f"Processing complete. Processed files: {summary.files_processed}")

    stats = {
        "Directories processed": summary.directories_processed,
        "Directories denied": summary.directories_denied,
        "Assemblies scanned": summary.assemblies_scanned,
        "Files skipped (not .NET)": summary.files_skipped,
        "Open failures": sum(1 for e in summary.errors if e.kind == "open_failure"),
        "Analysis faults": sum(1 for e in summary.errors if e.kind == "analysis_fault"),
        "Matches": summary.matches,
    }
    for label, value in stats.items():
        print(f"{label}: {value}")
