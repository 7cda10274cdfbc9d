from __future__ import annotations

"""
Configuration Domain Defaults.

Provides the default runtime configuration dictionary that drives the
scanning engine, together with the constants shared by the CLI and the
validator.
"""

import os
from typing import Any, Dict, List

# -----------------------------------------------------------------------------
# Constants & Defaults
# -----------------------------------------------------------------------------
MODE_PATH = "path"
MODE_SCAN = "scan"
VALID_MODES = (MODE_PATH, MODE_SCAN)

DEFAULT_EXTENSIONS: List[str] = [".dll", ".exe"]
DEFAULT_PROGRESS_INTERVAL = 5.0

# Well-known deserialization sinks, offered in the CLI help text
KNOWN_GADGET_SINKS: List[str] = [
    "System.Runtime.Serialization.Formatters.Binary.BinaryFormatter::Deserialize",
    "System.Runtime.Serialization.NetDataContractSerializer::Deserialize",
    "System.Web.UI.LosFormatter::Deserialize",
    "System.Web.UI.ObjectStateFormatter::Deserialize",
    "System.Runtime.Serialization.Formatters.Soap.SoapFormatter::Deserialize",
    "Newtonsoft.Json.JsonConvert::DeserializeObject",
]


def default_worker_count() -> int:
    """Return the host parallelism used to size worker pools."""
    return os.cpu_count() or 1


# -----------------------------------------------------------------------------
# Configuration Models (Dict-based)
# -----------------------------------------------------------------------------
def get_default_config() -> Dict[str, Any]:
    """
    Generate the default runtime configuration.

    Returns:
        Dict[str, Any]: Default configuration values.
    """
    return {
        # Run Mode
        "mode": None,
        "assembly_path": "",

        # Matching
        "search_methods": [],
        "decompile": False,

        # Host Traversal
        "extensions": list(DEFAULT_EXTENSIONS),
        "scan_roots": [],
        "stay_on_volume": True,
        "max_workers": default_worker_count(),
        "progress_interval": DEFAULT_PROGRESS_INTERVAL,
    }
