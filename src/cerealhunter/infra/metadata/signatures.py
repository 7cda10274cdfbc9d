from __future__ import annotations

"""
Metadata Signature Blob Decoder.

Decodes method, field and local-variable signature blobs (ECMA-335
II.23.2) into the type names used by Mono.Cecil's FullName rendering,
e.g. "System.Void", "System.String[]" or
"System.Collections.Generic.List`1<System.Int32>".
"""

from dataclasses import dataclass, field
from typing import Callable, List, Tuple

# Resolves a TypeDefOrRef coded index (table tag, row id) to a type name
TypeResolver = Callable[[int, int], str]

TAG_TYPEDEF = 0
TAG_TYPEREF = 1
TAG_TYPESPEC = 2

# Calling convention flags (first byte of a method signature)
SIG_GENERIC = 0x10
SIG_HASTHIS = 0x20
SIG_FIELD = 0x06
SIG_LOCAL = 0x07
SIG_GENERICINST = 0x0A

ELEMENT_NAMES = {
    0x01: "System.Void",
    0x02: "System.Boolean",
    0x03: "System.Char",
    0x04: "System.SByte",
    0x05: "System.Byte",
    0x06: "System.Int16",
    0x07: "System.UInt16",
    0x08: "System.Int32",
    0x09: "System.UInt32",
    0x0A: "System.Int64",
    0x0B: "System.UInt64",
    0x0C: "System.Single",
    0x0D: "System.Double",
    0x0E: "System.String",
    0x16: "System.TypedReference",
    0x18: "System.IntPtr",
    0x19: "System.UIntPtr",
    0x1C: "System.Object",
}

ELEMENT_PTR = 0x0F
ELEMENT_BYREF = 0x10
ELEMENT_VALUETYPE = 0x11
ELEMENT_CLASS = 0x12
ELEMENT_VAR = 0x13
ELEMENT_ARRAY = 0x14
ELEMENT_GENERICINST = 0x15
ELEMENT_FNPTR = 0x1B
ELEMENT_SZARRAY = 0x1D
ELEMENT_MVAR = 0x1E
ELEMENT_CMOD_REQD = 0x1F
ELEMENT_CMOD_OPT = 0x20
ELEMENT_SENTINEL = 0x41
ELEMENT_PINNED = 0x45

_MAX_DEPTH = 64


class SignatureError(ValueError):
    """Raised when a signature blob is truncated or malformed."""


@dataclass(frozen=True)
class MethodSignature:
    return_type: str
    parameters: List[str] = field(default_factory=list)
    has_this: bool = False
    generic_arity: int = 0


def _unknown_type(tag: int, rid: int) -> str:
    return f"<type {tag}:{rid}>"


class SignatureReader:
    """
    Cursor over a single signature blob.

    Args:
        blob: Raw blob bytes (without the heap length prefix).
        resolve_type: Callback used for CLASS/VALUETYPE/CMOD type references.
    """

    def __init__(self, blob: bytes, resolve_type: TypeResolver = _unknown_type) -> None:
        self._blob = bytes(blob)
        self._pos = 0
        self._resolve_type = resolve_type

    # -------------------------------------------------------------------------
    # Primitive readers
    # -------------------------------------------------------------------------

    def read_byte(self) -> int:
        if self._pos >= len(self._blob):
            raise SignatureError("Unexpected end of signature blob")
        value = self._blob[self._pos]
        self._pos += 1
        return value

    def peek_byte(self) -> int:
        if self._pos >= len(self._blob):
            raise SignatureError("Unexpected end of signature blob")
        return self._blob[self._pos]

    def read_compressed_uint(self) -> int:
        """Decode an ECMA-335 compressed unsigned integer (1, 2 or 4 bytes)."""
        b0 = self.read_byte()
        if b0 & 0x80 == 0:
            return b0
        if b0 & 0xC0 == 0x80:
            return ((b0 & 0x3F) << 8) | self.read_byte()
        if b0 & 0xE0 == 0xC0:
            b1, b2, b3 = self.read_byte(), self.read_byte(), self.read_byte()
            return ((b0 & 0x1F) << 24) | (b1 << 16) | (b2 << 8) | b3
        raise SignatureError(f"Invalid compressed integer lead byte 0x{b0:02x}")

    def read_compressed_int(self) -> int:
        """Decode a compressed signed integer (rotated sign bit encoding)."""
        start = self._pos
        raw = self.read_compressed_uint()
        width = self._pos - start
        bits = {1: 7, 2: 14, 4: 29}[width]
        value = raw >> 1
        if raw & 1:
            value -= 1 << (bits - 1)
        return value

    def read_type_def_or_ref(self) -> str:
        coded = self.read_compressed_uint()
        return self._resolve_type(coded & 0x03, coded >> 2)

    # -------------------------------------------------------------------------
    # Type decoding
    # -------------------------------------------------------------------------

    def read_type(self, depth: int = 0) -> str:
        if depth > _MAX_DEPTH:
            raise SignatureError("Signature nesting too deep")

        element = self.read_byte()

        if element in ELEMENT_NAMES:
            return ELEMENT_NAMES[element]
        if element in (ELEMENT_CLASS, ELEMENT_VALUETYPE):
            return self.read_type_def_or_ref()
        if element == ELEMENT_PTR:
            return self.read_type(depth + 1) + "*"
        if element == ELEMENT_BYREF:
            return self.read_type(depth + 1) + "&"
        if element == ELEMENT_SZARRAY:
            return self.read_type(depth + 1) + "[]"
        if element == ELEMENT_ARRAY:
            return self._read_array(depth)
        if element == ELEMENT_GENERICINST:
            return self._read_generic_instance(depth)
        if element == ELEMENT_VAR:
            return f"!{self.read_compressed_uint()}"
        if element == ELEMENT_MVAR:
            return f"!!{self.read_compressed_uint()}"
        if element == ELEMENT_FNPTR:
            sig = self.read_method_signature(depth + 1)
            return f"method {sig.return_type} *({','.join(sig.parameters)})"
        if element in (ELEMENT_CMOD_REQD, ELEMENT_CMOD_OPT):
            modifier = self.read_type_def_or_ref()
            kind = "modreq" if element == ELEMENT_CMOD_REQD else "modopt"
            return f"{self.read_type(depth + 1)} {kind}({modifier})"
        if element == ELEMENT_PINNED:
            return self.read_type(depth + 1)

        raise SignatureError(f"Unsupported element type 0x{element:02x}")

    def _read_array(self, depth: int) -> str:
        element_type = self.read_type(depth + 1)
        rank = self.read_compressed_uint()
        num_sizes = self.read_compressed_uint()
        sizes = [self.read_compressed_uint() for _ in range(num_sizes)]
        num_bounds = self.read_compressed_uint()
        bounds = [self.read_compressed_int() for _ in range(num_bounds)]

        dims: List[str] = []
        for i in range(rank):
            lower = bounds[i] if i < len(bounds) else None
            size = sizes[i] if i < len(sizes) else None
            if lower is None and size is None:
                dims.append("" if rank == 1 else "0...")
            elif size is None:
                dims.append(f"{lower}...")
            else:
                low = lower or 0
                dims.append(f"{low}...{low + size - 1}")
        return f"{element_type}[{','.join(dims)}]"

    def _read_generic_instance(self, depth: int) -> str:
        self.read_byte()  # CLASS or VALUETYPE
        generic_type = self.read_type_def_or_ref()
        count = self.read_compressed_uint()
        args = [self.read_type(depth + 1) for _ in range(count)]
        return f"{generic_type}<{','.join(args)}>"

    # -------------------------------------------------------------------------
    # Signature decoding
    # -------------------------------------------------------------------------

    def read_method_signature(self, depth: int = 0) -> MethodSignature:
        flags = self.read_byte()
        if flags == SIG_FIELD:
            return MethodSignature(return_type=self.read_type(depth))

        generic_arity = self.read_compressed_uint() if flags & SIG_GENERIC else 0
        param_count = self.read_compressed_uint()
        return_type = self.read_type(depth)

        params: List[str] = []
        while len(params) < param_count:
            if self.peek_byte() == ELEMENT_SENTINEL:
                self.read_byte()
                params.append("...")
                param_count += 1
                continue
            params.append(self.read_type(depth))

        return MethodSignature(
            return_type=return_type,
            parameters=params,
            has_this=bool(flags & SIG_HASTHIS),
            generic_arity=generic_arity,
        )

    def read_local_signature(self) -> List[str]:
        lead = self.read_byte()
        if lead != SIG_LOCAL:
            raise SignatureError(f"Not a local variable signature (0x{lead:02x})")
        count = self.read_compressed_uint()
        return [self.read_type() for _ in range(count)]

    def read_generic_instantiation(self) -> List[str]:
        lead = self.read_byte()
        if lead != SIG_GENERICINST:
            raise SignatureError(f"Not a method instantiation blob (0x{lead:02x})")
        count = self.read_compressed_uint()
        return [self.read_type() for _ in range(count)]


# -----------------------------------------------------------------------------
# PUBLIC API
# -----------------------------------------------------------------------------

def decode_method_signature(blob: bytes, resolve_type: TypeResolver = _unknown_type) -> MethodSignature:
    """Decode a MethodDefSig/MethodRefSig (or FieldSig) blob."""
    return SignatureReader(blob, resolve_type).read_method_signature()


def decode_local_signature(blob: bytes, resolve_type: TypeResolver = _unknown_type) -> List[str]:
    """Decode a LocalVarSig blob into the ordered local type names."""
    return SignatureReader(blob, resolve_type).read_local_signature()


def decode_type_spec(blob: bytes, resolve_type: TypeResolver = _unknown_type) -> str:
    """Decode a TypeSpec blob into a single type name."""
    return SignatureReader(blob, resolve_type).read_type()


def decode_method_instantiation(blob: bytes, resolve_type: TypeResolver = _unknown_type) -> List[str]:
    """Decode a MethodSpec instantiation blob into its generic arguments."""
    return SignatureReader(blob, resolve_type).read_generic_instantiation()


def format_method_name(
        return_type: str,
        declaring_type: str,
        name: str,
        parameters: List[str],
        generic_args: Tuple[str, ...] = (),
) -> str:
    """Render a method reference the way Mono.Cecil's FullName does."""
    generic = f"<{','.join(generic_args)}>" if generic_args else ""
    return f"{return_type} {declaring_type}::{name}{generic}({','.join(parameters)})"


def is_field_signature(blob: bytes) -> bool:
    """MemberRef rows share one table for methods and fields; the lead byte tells them apart."""
    return bool(blob) and blob[0] == SIG_FIELD


def format_field_name(field_type: str, declaring_type: str, name: str) -> str:
    """Render a field reference the way Mono.Cecil's FullName does."""
    return f"{field_type} {declaring_type}::{name}"
