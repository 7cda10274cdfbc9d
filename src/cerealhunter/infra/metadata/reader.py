from __future__ import annotations

"""
Managed Assembly Reader.

Opens a PE file with dnfile, resolves metadata tokens and signature blobs
into Cecil-style names, decodes IL method bodies with dncil and returns a
fully materialised AssemblyUnit. The PE handle is closed before returning,
so callers never share or leak parser state across threads.
"""

import json
import logging
import os
from typing import Dict, List, Optional, Tuple

import dnfile
import pefile
from dncil.cil.body import CilMethodBody
from dncil.cil.body.reader import CilMethodBodyReaderBase
from dncil.cil.error import MethodBodyFormatError
from dncil.cil.opcode import OpCodes
from dncil.clr.argument import Argument
from dncil.clr.local import Local
from dncil.clr.token import InvalidToken, StringToken, Token

from cerealhunter.domain.errors import AssemblyOpenError
from cerealhunter.domain.scan_models import TargetSignature
from cerealhunter.infra.metadata.model import (
    AssemblyUnit,
    Instruction,
    LocalVariable,
    MethodBody,
    MethodUnit,
    ModuleUnit,
    TypeUnit,
)
from cerealhunter.infra.metadata.signatures import (
    TAG_TYPEDEF,
    TAG_TYPEREF,
    TAG_TYPESPEC,
    SignatureError,
    decode_local_signature,
    decode_method_instantiation,
    decode_method_signature,
    decode_type_spec,
    format_field_name,
    format_method_name,
    is_field_signature,
)

logger = logging.getLogger(__name__)

# Metadata table numbers (ECMA-335 II.22)
TABLE_TYPEREF = 0x01
TABLE_TYPEDEF = 0x02
TABLE_FIELD = 0x04
TABLE_METHODDEF = 0x06
TABLE_MEMBERREF = 0x0A
TABLE_STANDALONESIG = 0x11
TABLE_TYPESPEC = 0x1B
TABLE_METHODSPEC = 0x2B

_CALL_OPCODES = (OpCodes.Call, OpCodes.Callvirt)

_BRANCH_MNEMONICS = {
    "br", "brfalse", "brtrue", "beq", "bge", "bgt", "ble", "blt",
    "bne.un", "bge.un", "bgt.un", "ble.un", "blt.un", "leave",
}
_BRANCH_MNEMONICS |= {f"{m}.s" for m in _BRANCH_MNEMONICS}

MethodParts = Tuple[str, str, str, List[str]]


# ==============================================================================
# PUBLIC API
# ==============================================================================

def open_assembly(path: str) -> AssemblyUnit:
    """
    Parse a managed assembly into an AssemblyUnit.

    Args:
        path: Filesystem path of the binary.

    Returns:
        AssemblyUnit: Modules, types, methods and decoded IL bodies.

    Raises:
        AssemblyOpenError: The file is unreadable, not a PE image, or
            carries no CLR metadata.
    """
    try:
        pe = dnfile.dnPE(path)
    except (OSError, pefile.PEFormatError) as e:
        raise AssemblyOpenError(path, str(e)) from e

    try:
        if pe.net is None or pe.net.mdtables is None:
            raise AssemblyOpenError(path, "No CLR metadata present")
        return _AssemblyBuilder(pe, path).build()
    finally:
        pe.close()


# ==============================================================================
# PRIVATE HELPERS
# ==============================================================================

def _heap_text(value: object) -> str:
    """Return the text of a string-heap column across dnfile versions."""
    raw = getattr(value, "value", value)
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


def _heap_bytes(value: object) -> bytes:
    """Return the bytes of a blob-heap column across dnfile versions."""
    raw = getattr(value, "value", value)
    if raw is None:
        return b""
    return bytes(raw)


class _PeMethodBodyReader(CilMethodBodyReaderBase):
    """Feeds dncil with method body bytes located by RVA."""

    def __init__(self, pe: dnfile.dnPE, rva: int) -> None:
        self.pe = pe
        self.offset = self.pe.get_offset_from_rva(rva)

    def read(self, n: int) -> bytes:
        data = self.pe.get_data(self.pe.get_rva_from_offset(self.offset), n)
        self.offset += n
        return data

    def tell(self) -> int:
        return self.offset

    def seek(self, offset: int) -> int:
        self.offset = offset
        return self.offset


class _AssemblyBuilder:
    """Single-use resolver bound to one opened dnPE instance."""

    _TABLE_NAMES = {
        TABLE_TYPEREF: "TypeRef",
        TABLE_TYPEDEF: "TypeDef",
        TABLE_FIELD: "Field",
        TABLE_METHODDEF: "MethodDef",
        TABLE_MEMBERREF: "MemberRef",
        TABLE_STANDALONESIG: "StandAloneSig",
        TABLE_TYPESPEC: "TypeSpec",
        TABLE_METHODSPEC: "MethodSpec",
    }

    def __init__(self, pe: dnfile.dnPE, path: str) -> None:
        self._pe = pe
        self._path = path
        self._tables = pe.net.mdtables
        self._typedef_names: Dict[int, str] = {}
        self._typeref_names: Dict[int, str] = {}
        self._typespec_names: Dict[int, str] = {}
        self._enclosing: Dict[int, int] = {}
        self._method_owner: Dict[int, int] = {}
        self._field_owner: Dict[int, int] = {}
        self._typespec_stack: List[int] = []
        self._row_cache: Dict[str, List[object]] = {}

        for row in self._rows("NestedClass"):
            self._enclosing[row.NestedClass.row_index] = row.EnclosingClass.row_index

        for type_rid, typedef in enumerate(self._rows("TypeDef"), start=1):
            for method_ref in typedef.MethodList or []:
                self._method_owner[method_ref.row_index] = type_rid
            for field_ref in typedef.FieldList or []:
                self._field_owner[field_ref.row_index] = type_rid

    # -------------------------------------------------------------------------
    # Assembly materialisation
    # -------------------------------------------------------------------------

    def build(self) -> AssemblyUnit:
        types: List[TypeUnit] = []
        for type_rid, typedef in enumerate(self._rows("TypeDef"), start=1):
            methods: List[MethodUnit] = []
            for method_ref in typedef.MethodList or []:
                method = self._build_method(method_ref.row_index)
                if method is not None:
                    methods.append(method)
            types.append(TypeUnit(full_name=self.typedef_name(type_rid), methods=methods))

        module_rows = self._rows("Module")
        module_name = _heap_text(module_rows[0].Name) if module_rows else os.path.basename(self._path)

        return AssemblyUnit(path=self._path, modules=[ModuleUnit(name=module_name, types=types)])

    def _build_method(self, rid: int) -> Optional[MethodUnit]:
        row = self._row(TABLE_METHODDEF, rid)
        if row is None:
            return None

        ret, declaring, name, params = self._methoddef_parts(rid)
        full_name = format_method_name(ret, declaring, name, params)
        return MethodUnit(
            name=name,
            declaring_type=declaring,
            full_name=full_name,
            body=self._read_body(row, full_name),
        )

    def _read_body(self, row: object, full_name: str) -> Optional[MethodBody]:
        rva = getattr(row, "Rva", 0)
        if not rva:
            return None

        try:
            body = CilMethodBody(_PeMethodBodyReader(self._pe, rva))
        except (MethodBodyFormatError, pefile.PEFormatError, ValueError, IndexError) as e:
            logger.warning(f"Unreadable method body {full_name} in {self._path}: {e}")
            return None

        # dncil reports file positions; IL offsets count from the first code byte
        base = body.offset + body.header_size
        instructions = [self._convert_instruction(insn, base) for insn in body.instructions]
        return MethodBody(instructions=instructions, variables=self._read_locals(body))

    def _read_locals(self, body: CilMethodBody) -> List[LocalVariable]:
        token = getattr(body, "local_var_sig_tok", None)
        if token is None or not token.rid:
            return []

        sig_row = self._row(TABLE_STANDALONESIG, token.rid)
        if sig_row is None:
            return []

        try:
            type_names = decode_local_signature(_heap_bytes(sig_row.Signature), self.resolve_coded_type)
        except SignatureError as e:
            logger.debug(f"Cannot decode locals signature in {self._path}: {e}")
            return []
        return [LocalVariable(index=i, type_name=t) for i, t in enumerate(type_names)]

    def _convert_instruction(self, insn: object, base: int = 0) -> Instruction:
        mnemonic = insn.opcode.name
        operand = insn.operand

        call_target: Optional[TargetSignature] = None
        if insn.opcode in _CALL_OPCODES and isinstance(operand, Token) \
                and not isinstance(operand, (StringToken, InvalidToken)):
            target_name = self.method_name(operand.table, operand.rid)
            if target_name:
                call_target = TargetSignature(target_name)

        if call_target is not None:
            operand_text = call_target.full_name
        else:
            operand_text = self._format_operand(mnemonic, operand, base)

        return Instruction(
            offset=insn.offset - base,
            mnemonic=mnemonic,
            operand=operand_text,
            call_target=call_target,
        )

    def _format_operand(self, mnemonic: str, operand: object, base: int = 0) -> str:
        if operand is None:
            return ""
        if isinstance(operand, StringToken):
            return self._user_string(operand)
        if isinstance(operand, InvalidToken):
            return f"<invalid token 0x{operand.value:08x}>"
        if isinstance(operand, Token):
            return self.token_name(operand.table, operand.rid) or f"0x{operand.value:08x}"
        if isinstance(operand, (list, tuple)):
            return "(" + ",".join(f"IL_{t - base:04x}" for t in operand) + ")"
        if mnemonic in _BRANCH_MNEMONICS and isinstance(operand, int):
            return f"IL_{operand - base:04x}"
        if isinstance(operand, Local):
            return f"V_{operand.index}"
        if isinstance(operand, Argument):
            return f"A_{operand.index}"
        return str(operand)

    def _user_string(self, token: StringToken) -> str:
        heap = getattr(self._pe.net, "user_strings", None)
        if heap is None:
            return f"0x{token.value:08x}"
        try:
            text = _heap_text(heap.get(token.rid))
        except (UnicodeDecodeError, IndexError) as e:
            logger.debug(f"Unreadable user string 0x{token.value:08x}: {e}")
            return f"0x{token.value:08x}"
        return json.dumps(text, ensure_ascii=False)

    # -------------------------------------------------------------------------
    # Table access
    # -------------------------------------------------------------------------

    def _rows(self, table_name: str) -> List[object]:
        if table_name not in self._row_cache:
            table = getattr(self._tables, table_name, None)
            self._row_cache[table_name] = list(table.rows) if table is not None else []
        return self._row_cache[table_name]

    def _row(self, table: int, rid: int) -> Optional[object]:
        name = self._TABLE_NAMES.get(table)
        if not name or rid <= 0:
            return None
        rows = self._rows(name)
        return rows[rid - 1] if rid <= len(rows) else None

    # -------------------------------------------------------------------------
    # Type names
    # -------------------------------------------------------------------------

    def resolve_coded_type(self, tag: int, rid: int) -> str:
        """Resolve a TypeDefOrRef coded index (used by the signature decoder)."""
        if tag == TAG_TYPEDEF:
            return self.typedef_name(rid)
        if tag == TAG_TYPEREF:
            return self.typeref_name(rid)
        if tag == TAG_TYPESPEC:
            return self.typespec_name(rid)
        return f"<type {tag}:{rid}>"

    def typedef_name(self, rid: int) -> str:
        if rid in self._typedef_names:
            return self._typedef_names[rid]

        row = self._row(TABLE_TYPEDEF, rid)
        if row is None:
            return f"<typedef {rid}>"

        name = _heap_text(row.TypeName)
        enclosing = self._enclosing.get(rid)
        if enclosing and enclosing != rid:
            full = f"{self.typedef_name(enclosing)}/{name}"
        else:
            namespace = _heap_text(row.TypeNamespace)
            full = f"{namespace}.{name}" if namespace else name

        self._typedef_names[rid] = full
        return full

    def typeref_name(self, rid: int) -> str:
        if rid in self._typeref_names:
            return self._typeref_names[rid]

        row = self._row(TABLE_TYPEREF, rid)
        if row is None:
            return f"<typeref {rid}>"

        name = _heap_text(row.TypeName)
        scope = getattr(row, "ResolutionScope", None)
        scope_row = getattr(scope, "row", None)
        if isinstance(scope_row, dnfile.mdtable.TypeRefRow) and scope.row_index != rid:
            full = f"{self.typeref_name(scope.row_index)}/{name}"
        else:
            namespace = _heap_text(row.TypeNamespace)
            full = f"{namespace}.{name}" if namespace else name

        self._typeref_names[rid] = full
        return full

    def typespec_name(self, rid: int) -> str:
        if rid in self._typespec_names:
            return self._typespec_names[rid]
        if rid in self._typespec_stack:
            return f"<typespec {rid}>"

        row = self._row(TABLE_TYPESPEC, rid)
        if row is None:
            return f"<typespec {rid}>"

        self._typespec_stack.append(rid)
        try:
            full = decode_type_spec(_heap_bytes(row.Signature), self.resolve_coded_type)
        except SignatureError as e:
            logger.debug(f"Cannot decode TypeSpec {rid} in {self._path}: {e}")
            full = f"<typespec {rid}>"
        finally:
            self._typespec_stack.pop()

        self._typespec_names[rid] = full
        return full

    def _class_name(self, coded: object) -> str:
        """Resolve the parent of a MemberRef (MemberRefParent coded index)."""
        row = getattr(coded, "row", None)
        rid = getattr(coded, "row_index", 0)
        if isinstance(row, dnfile.mdtable.TypeRefRow):
            return self.typeref_name(rid)
        if isinstance(row, dnfile.mdtable.TypeDefRow):
            return self.typedef_name(rid)
        if isinstance(row, dnfile.mdtable.TypeSpecRow):
            return self.typespec_name(rid)
        if isinstance(row, dnfile.mdtable.MethodDefRow):
            return self._methoddef_parts(rid)[1]
        return "<Module>"

    # -------------------------------------------------------------------------
    # Method names
    # -------------------------------------------------------------------------

    def token_name(self, table: int, rid: int) -> str:
        """Render any metadata token operand (types, methods, fields)."""
        if table == TABLE_FIELD:
            return self.field_name(rid)
        if table == TABLE_MEMBERREF and self._is_field_ref(rid):
            return self._memberref_field_name(rid)
        method = self.method_name(table, rid)
        if method:
            return method
        if table in (TABLE_TYPEDEF, TABLE_TYPEREF, TABLE_TYPESPEC):
            tag = {TABLE_TYPEDEF: TAG_TYPEDEF, TABLE_TYPEREF: TAG_TYPEREF, TABLE_TYPESPEC: TAG_TYPESPEC}[table]
            return self.resolve_coded_type(tag, rid)
        return ""

    def method_name(self, table: int, rid: int) -> str:
        """Resolve a MethodDef, MemberRef or MethodSpec token to its full name."""
        if table == TABLE_METHODSPEC:
            return self._methodspec_name(rid)

        parts = self._method_parts(table, rid)
        if parts is None:
            return ""
        return format_method_name(*parts)

    def _method_parts(self, table: int, rid: int) -> Optional[MethodParts]:
        if table == TABLE_METHODDEF and self._row(TABLE_METHODDEF, rid) is not None:
            return self._methoddef_parts(rid)
        if table == TABLE_MEMBERREF and self._row(TABLE_MEMBERREF, rid) is not None \
                and not self._is_field_ref(rid):
            return self._memberref_parts(rid)
        return None

    def _methoddef_parts(self, rid: int) -> MethodParts:
        row = self._row(TABLE_METHODDEF, rid)
        owner = self._method_owner.get(rid)
        declaring = self.typedef_name(owner) if owner else "<Module>"
        name = _heap_text(row.Name) if row is not None else f"<method {rid}>"
        blob = _heap_bytes(row.Signature) if row is not None else b""
        return self._with_signature(blob, declaring, name)

    def _memberref_parts(self, rid: int) -> MethodParts:
        row = self._row(TABLE_MEMBERREF, rid)
        declaring = self._class_name(row.Class)
        return self._with_signature(_heap_bytes(row.Signature), declaring, _heap_text(row.Name))

    def _with_signature(self, blob: bytes, declaring: str, name: str) -> MethodParts:
        try:
            sig = decode_method_signature(blob, self.resolve_coded_type)
        except SignatureError as e:
            logger.debug(f"Cannot decode signature of {declaring}::{name}: {e}")
            return "?", declaring, name, []
        return sig.return_type, declaring, name, sig.parameters

    def _methodspec_name(self, rid: int) -> str:
        row = self._row(TABLE_METHODSPEC, rid)
        if row is None:
            return ""

        method = row.Method
        base_row = getattr(method, "row", None)
        base_rid = getattr(method, "row_index", 0)
        if isinstance(base_row, dnfile.mdtable.MethodDefRow):
            parts = self._methoddef_parts(base_rid)
        elif isinstance(base_row, dnfile.mdtable.MemberRefRow):
            parts = self._memberref_parts(base_rid)
        else:
            return ""

        try:
            args = decode_method_instantiation(_heap_bytes(row.Instantiation), self.resolve_coded_type)
        except SignatureError as e:
            logger.debug(f"Cannot decode MethodSpec {rid} in {self._path}: {e}")
            args = []
        return format_method_name(*parts, generic_args=tuple(args))

    # -------------------------------------------------------------------------
    # Field names
    # -------------------------------------------------------------------------

    def field_name(self, rid: int) -> str:
        """Resolve a Field token to "<type> <declaring>::<name>"."""
        row = self._row(TABLE_FIELD, rid)
        if row is None:
            return ""
        owner = self._field_owner.get(rid)
        declaring = self.typedef_name(owner) if owner else "<Module>"
        return self._field_with_signature(_heap_bytes(row.Signature), declaring, _heap_text(row.Name))

    def _is_field_ref(self, rid: int) -> bool:
        row = self._row(TABLE_MEMBERREF, rid)
        return row is not None and is_field_signature(_heap_bytes(row.Signature))

    def _memberref_field_name(self, rid: int) -> str:
        row = self._row(TABLE_MEMBERREF, rid)
        declaring = self._class_name(row.Class)
        return self._field_with_signature(_heap_bytes(row.Signature), declaring, _heap_text(row.Name))

    def _field_with_signature(self, blob: bytes, declaring: str, name: str) -> str:
        try:
            field_type = decode_method_signature(blob, self.resolve_coded_type).return_type
        except SignatureError as e:
            logger.debug(f"Cannot decode field signature of {declaring}::{name}: {e}")
            field_type = "?"
        return format_field_name(field_type, declaring, name)
