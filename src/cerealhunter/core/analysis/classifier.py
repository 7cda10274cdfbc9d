from __future__ import annotations

"""
Managed Binary Classifier.

Cheap pre-filter for host-wide scans: decides from the PE headers alone
whether a file carries CLR metadata, so that native DLLs and executables
never reach the full metadata parse.
"""

import logging
import struct

import pefile

logger = logging.getLogger(__name__)

# IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR
_CLR_DIRECTORY_INDEX = pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR"]

# COR20 header: cb (u32), runtime version (2x u16), metadata directory (rva, size)
_COR20_HEADER = struct.Struct("<IHHII")
_METADATA_SIGNATURE = b"BSJB"


def is_dotnet_assembly(file_path: str) -> bool:
    """
    Return True if the file is a PE image with a valid CLR metadata root.

    Only the headers are parsed (pefile fast load). Any failure to open,
    read or validate the file yields False; this function never raises.

    Args:
        file_path: Path of the candidate binary.

    Returns:
        bool: Whether the file can be handed to the metadata reader.
    """
    try:
        pe = pefile.PE(file_path, fast_load=True)
    except Exception as e:
        logger.debug(f"Not a PE image: {file_path} ({e})")
        return False

    try:
        return _has_clr_metadata(pe)
    except Exception as e:
        logger.debug(f"Invalid CLR header in {file_path}: {e}")
        return False
    finally:
        pe.close()


def _has_clr_metadata(pe: pefile.PE) -> bool:
    directories = pe.OPTIONAL_HEADER.DATA_DIRECTORY
    if len(directories) <= _CLR_DIRECTORY_INDEX:
        return False

    clr_dir = directories[_CLR_DIRECTORY_INDEX]
    if not clr_dir.VirtualAddress or clr_dir.Size < _COR20_HEADER.size:
        return False

    header = pe.get_data(clr_dir.VirtualAddress, _COR20_HEADER.size)
    if len(header) < _COR20_HEADER.size:
        return False

    _, _, _, metadata_rva, metadata_size = _COR20_HEADER.unpack(header)
    if not metadata_rva or metadata_size < len(_METADATA_SIGNATURE):
        return False

    return pe.get_data(metadata_rva, len(_METADATA_SIGNATURE)) == _METADATA_SIGNATURE
