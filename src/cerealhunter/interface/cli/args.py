from __future__ import annotations

"""
CLI Argument Definition and Mapping.

Defines the command-line interface schema and translates the raw argparse
namespace into configuration overrides for the validator.
"""

import argparse
from typing import Any, Dict, List, Optional

from cerealhunter.domain.config import KNOWN_GADGET_SINKS

# -----------------------------------------------------------------------------
# ARGUMENT DEFINITION
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """
    Construct the argument parser for the CerealHunter CLI.

    Returns:
        argparse.ArgumentParser: Configured parser instance.
    """
    p = argparse.ArgumentParser(
        prog="cerealhunter",
        description="Deserialization hunter for .NET assemblies",
        epilog="Common sinks: " + ", ".join(KNOWN_GADGET_SINKS),
    )

    # --- Run Mode ---
    p.add_argument(
        "-p", "--path",
        dest="assembly_path",
        default=None,
        help="The path to a specific .NET assembly to analyze",
    )
    p.add_argument(
        "-s", "--scan",
        action="store_true",
        help="Scan the entire host for .NET assemblies and analyze each one",
    )

    # --- Matching ---
    p.add_argument(
        "-m", "--methods",
        dest="search_methods",
        nargs="+",
        default=None,
        metavar="SIGNATURE",
        help=(
            "The method to search for (e.g., "
            "System.Runtime.Serialization.Formatters.Binary.BinaryFormatter::Deserialize)"
        ),
    )
    p.add_argument(
        "-d", "--decompile",
        action="store_true",
        help="Decompile any identified methods. WARNING - Creates a lot of output",
    )

    # --- Host Traversal ---
    p.add_argument(
        "-r", "--root",
        dest="scan_roots",
        action="append",
        default=None,
        help="Scan this directory instead of every mounted volume (repeatable)",
    )
    p.add_argument(
        "-e", "--ext",
        dest="extensions",
        default=None,
        help="Comma-separated extension allow-list (default: .dll,.exe)",
    )
    p.add_argument(
        "-w", "--workers",
        dest="max_workers",
        type=int,
        default=None,
        help="Worker threads for traversal and analysis (default: CPU count)",
    )
    p.add_argument(
        "--progress-interval",
        dest="progress_interval",
        type=float,
        default=None,
        help="Seconds between traversal progress lines (default: 5)",
    )
    p.add_argument(
        "--cross-volumes",
        action="store_true",
        help="Follow directories mounted from other devices while traversing",
    )

    # --- Diagnostics ---
    p.add_argument(
        "--debug",
        action="store_true",
        help="Elevate logging verbosity to DEBUG.",
    )
    p.add_argument(
        "--log-file",
        dest="log_file",
        default=None,
        help="Also write diagnostics to this rotating log file.",
    )

    return p

# -----------------------------------------------------------------------------
# ARGUMENT MAPPING
# -----------------------------------------------------------------------------

def args_to_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """
    Translate the argparse Namespace into a configuration dictionary.

    Scan mode takes precedence when both --scan and --path are given.

    Args:
        args: Parsed command-line arguments.

    Returns:
        Dict[str, Any]: Configuration overrides subset.
    """
    overrides: Dict[str, Any] = {}

    if args.scan:
        overrides["mode"] = "scan"
    elif args.assembly_path:
        overrides["mode"] = "path"

    overrides["assembly_path"] = args.assembly_path
    overrides["search_methods"] = args.search_methods
    overrides["scan_roots"] = args.scan_roots
    overrides["max_workers"] = args.max_workers
    overrides["progress_interval"] = args.progress_interval

    if args.decompile:
        overrides["decompile"] = True
    if args.cross_volumes:
        overrides["stay_on_volume"] = False
    if args.extensions:
        overrides["extensions"] = _split_csv(args.extensions)

    return overrides

# -----------------------------------------------------------------------------
# HELPERS
# -----------------------------------------------------------------------------

def _split_csv(value: Optional[str]) -> Optional[List[str]]:
    """Convert a comma-separated string into a list of sanitized strings."""
    if value is None:
        return None
    parts = [x.strip() for x in value.split(",")]
    return [x for x in parts if x]
