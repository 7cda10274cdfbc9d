from __future__ import annotations

"""
Configuration Validation Service.

Gatekeeper between the interface layer and the scanning engine. Coerces
untrusted values into the expected types, fills missing keys with domain
defaults and rejects configurations that cannot start a scan.
"""

import logging
from typing import Any, Dict, List, Tuple

from cerealhunter.domain.config import (
    DEFAULT_PROGRESS_INTERVAL,
    MODE_PATH,
    MODE_SCAN,
    VALID_MODES,
    get_default_config,
)
from cerealhunter.domain.errors import UsageError
from cerealhunter.infra.fs import normalize_extensions, normalize_path

logger = logging.getLogger(__name__)

MSG_MISSING_METHODS = "You must specify one or more methods to search for using --methods or -m"
MSG_MISSING_MODE = "You must specify either --path or --scan"


# -----------------------------------------------------------------------------
# PUBLIC API
# -----------------------------------------------------------------------------

def validate_config(config: Any) -> Tuple[Dict[str, Any], List[str]]:
    """
    Validate and normalize the provided configuration dictionary.

    Args:
        config: Raw configuration data (usually a dictionary).

    Returns:
        Tuple[Dict[str, Any], List[str]]: The normalized configuration and
                                          a list of warnings.
    """
    warnings: List[str] = []
    defaults = get_default_config()

    if not isinstance(config, dict):
        msg = f"Invalid config type: expected dict, received {type(config).__name__}."
        warnings.append(f"{msg} Using defaults.")
        return defaults, warnings

    merged: Dict[str, Any] = dict(defaults)
    merged.update({k: v for k, v in config.items() if v is not None})

    # 1. Mode
    mode = merged.get("mode")
    if mode is not None and mode not in VALID_MODES:
        warnings.append(f"Unknown mode '{mode}' ignored.")
        mode = None
    merged["mode"] = mode

    # 2. Paths
    merged["assembly_path"] = normalize_path(str(merged.get("assembly_path") or ""))
    merged["scan_roots"] = [
        normalize_path(str(r)) for r in _as_list(merged.get("scan_roots")) if str(r).strip()
    ]

    # 3. Search entries: ordered, unique, non-blank
    methods: List[str] = []
    for raw in _as_list(merged.get("search_methods")):
        entry = str(raw).strip()
        if not entry:
            warnings.append("Blank search entry ignored.")
            continue
        if entry not in methods:
            methods.append(entry)
    merged["search_methods"] = methods

    # 4. Flags
    merged["decompile"] = bool(merged.get("decompile"))
    merged["stay_on_volume"] = bool(merged.get("stay_on_volume"))

    # 5. Extensions
    extensions = normalize_extensions(_as_list(merged.get("extensions")))
    if not extensions:
        warnings.append("Empty extension list, falling back to defaults.")
        extensions = list(defaults["extensions"])
    merged["extensions"] = extensions

    # 6. Numeric bounds
    merged["max_workers"] = _coerce_int(merged.get("max_workers"), defaults["max_workers"], "max_workers", warnings)
    if merged["max_workers"] < 1:
        warnings.append("max_workers must be >= 1, using 1.")
        merged["max_workers"] = 1

    interval = _coerce_float(merged.get("progress_interval"), DEFAULT_PROGRESS_INTERVAL, "progress_interval", warnings)
    if interval <= 0:
        warnings.append(f"progress_interval must be > 0, using {DEFAULT_PROGRESS_INTERVAL}.")
        interval = DEFAULT_PROGRESS_INTERVAL
    merged["progress_interval"] = interval

    for w in warnings:
        logger.debug(f"Config validation: {w}")

    return merged, warnings


def ensure_runnable(cfg: Dict[str, Any]) -> None:
    """
    Reject configurations that must not start a scan.

    Raises:
        UsageError: No search entries, or neither path nor scan mode.
    """
    if not cfg.get("search_methods"):
        raise UsageError(MSG_MISSING_METHODS)

    mode = cfg.get("mode")
    if mode == MODE_PATH and not cfg.get("assembly_path"):
        raise UsageError(MSG_MISSING_MODE)
    if mode not in (MODE_PATH, MODE_SCAN):
        raise UsageError(MSG_MISSING_MODE)


# -----------------------------------------------------------------------------
# PRIVATE HELPERS
# -----------------------------------------------------------------------------

def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def _coerce_int(value: Any, default: int, key: str, warnings: List[str]) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        warnings.append(f"Invalid integer for '{key}': {value!r}. Using {default}.")
        return default


def _coerce_float(value: Any, default: float, key: str, warnings: List[str]) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        warnings.append(f"Invalid number for '{key}': {value!r}. Using {default}.")
        return default
