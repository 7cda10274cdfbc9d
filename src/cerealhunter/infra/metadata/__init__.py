from __future__ import annotations

from .model import (
    AssemblyUnit,
    Instruction,
    LocalVariable,
    MethodBody,
    MethodUnit,
    ModuleUnit,
    TypeUnit,
)
from .reader import open_assembly

__all__ = [
    "AssemblyUnit",
    "Instruction",
    "LocalVariable",
    "MethodBody",
    "MethodUnit",
    "ModuleUnit",
    "TypeUnit",
    "open_assembly",
]
