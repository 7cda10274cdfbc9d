from __future__ import annotations

"""
Managed Assembly Object Model.

Plain, immutable views over the metadata of an opened assembly. The reader
materialises these objects and closes the underlying PE handle, so an
AssemblyUnit can be scanned and discarded without holding file resources.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from cerealhunter.domain.scan_models import TargetSignature

CALL_MNEMONICS = ("call", "callvirt")


@dataclass(frozen=True)
class Instruction:
    """
    A single IL instruction.

    Attributes:
        offset: Byte offset inside the method body.
        mnemonic: Opcode name ("call", "ldarg.0", ...).
        operand: Rendered operand text ("" when the opcode takes none).
        call_target: Resolved callee for call instructions, else None.
    """
    offset: int
    mnemonic: str
    operand: str = ""
    call_target: Optional[TargetSignature] = None

    @property
    def is_call(self) -> bool:
        return self.mnemonic in CALL_MNEMONICS

    def __str__(self) -> str:
        text = f"IL_{self.offset:04x}: {self.mnemonic}"
        return f"{text} {self.operand}" if self.operand else text


@dataclass(frozen=True)
class LocalVariable:
    """A local variable slot declared by a method body."""
    index: int
    type_name: str

    def __str__(self) -> str:
        return f"V_{self.index}"


@dataclass(frozen=True)
class MethodBody:
    instructions: List[Instruction] = field(default_factory=list)
    variables: List[LocalVariable] = field(default_factory=list)


@dataclass(frozen=True)
class MethodUnit:
    """
    A method definition.

    Attributes:
        name: Simple method name.
        declaring_type: Full name of the declaring type.
        full_name: Signature-qualified name, e.g.
            "System.Object NS.Type::Deserialize(System.IO.Stream)".
        body: Decoded IL body, or None for abstract/extern/runtime methods.
    """
    name: str
    declaring_type: str
    full_name: str
    body: Optional[MethodBody] = None

    @property
    def has_body(self) -> bool:
        return self.body is not None


@dataclass(frozen=True)
class TypeUnit:
    full_name: str
    methods: List[MethodUnit] = field(default_factory=list)


@dataclass(frozen=True)
class ModuleUnit:
    name: str
    types: List[TypeUnit] = field(default_factory=list)


@dataclass(frozen=True)
class AssemblyUnit:
    path: str
    modules: List[ModuleUnit] = field(default_factory=list)
