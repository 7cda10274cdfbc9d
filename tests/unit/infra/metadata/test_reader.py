from __future__ import annotations

"""
Unit tests for the Managed Assembly Reader.

Name resolution is exercised against in-memory metadata tables shaped like
dnfile's, so Cecil-style naming can be checked without shipping binaries.
"""

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import dnfile
import pytest
from dncil.cil.opcode import OpCodes
from dncil.clr.argument import Argument
from dncil.clr.local import Local
from dncil.clr.token import Token

from cerealhunter.core.analysis.classifier import is_dotnet_assembly
from cerealhunter.core.analysis.matcher import find_method_calls
from cerealhunter.domain.errors import AssemblyOpenError
from cerealhunter.infra.metadata.reader import _AssemblyBuilder, open_assembly


# -----------------------------------------------------------------------------
# Fake metadata
# -----------------------------------------------------------------------------

def _ref(rid: int, row: object = None) -> SimpleNamespace:
    return SimpleNamespace(row_index=rid, row=row)


def _table(*rows: object) -> SimpleNamespace:
    return SimpleNamespace(rows=list(rows))


@pytest.fixture
def builder() -> _AssemblyBuilder:
    """
    TypeDef 1 <Module>, TypeDef 2 A.B (methods 1-2, field 1), TypeDef 3 A.B/Inner (method 3).
    TypeRef 1 BinaryFormatter, TypeRef 2 Stream, TypeRef 3 List`1.
    MemberRef 1 BinaryFormatter::Deserialize, MemberRef 2 the Stream::Null field.
    """
    no_scope = _ref(1)
    tables = SimpleNamespace(
        Module=_table(SimpleNamespace(Name="sample.dll")),
        TypeDef=_table(
            SimpleNamespace(TypeName="<Module>", TypeNamespace="", MethodList=[], FieldList=[]),
            SimpleNamespace(TypeName="B", TypeNamespace="A", MethodList=[_ref(1), _ref(2)],
                            FieldList=[_ref(1)]),
            SimpleNamespace(TypeName="Inner", TypeNamespace="", MethodList=[_ref(3)], FieldList=[]),
        ),
        NestedClass=_table(SimpleNamespace(NestedClass=_ref(3), EnclosingClass=_ref(2))),
        MethodDef=_table(
            SimpleNamespace(Name="C", Signature=bytes([0x00, 0x01, 0x01, 0x0E]), Rva=0),
            SimpleNamespace(Name=".ctor", Signature=bytes([0x20, 0x00, 0x01]), Rva=0),
            SimpleNamespace(Name="Run", Signature=bytes([0x00, 0x00, 0x12, 0x0C]), Rva=0),
        ),
        TypeRef=_table(
            SimpleNamespace(TypeName="BinaryFormatter", ResolutionScope=no_scope,
                            TypeNamespace="System.Runtime.Serialization.Formatters.Binary"),
            SimpleNamespace(TypeName="Stream", TypeNamespace="System.IO", ResolutionScope=no_scope),
            SimpleNamespace(TypeName="List`1", TypeNamespace="System.Collections.Generic",
                            ResolutionScope=no_scope),
        ),
        MemberRef=_table(
            SimpleNamespace(
                Class=_ref(1, MagicMock(spec=dnfile.mdtable.TypeRefRow)),
                Name="Deserialize",
                Signature=bytes([0x20, 0x01, 0x1C, 0x12, 0x09]),
            ),
            SimpleNamespace(
                Class=_ref(2, MagicMock(spec=dnfile.mdtable.TypeRefRow)),
                Name="Null",
                Signature=bytes([0x06, 0x12, 0x09]),
            ),
        ),
        Field=_table(SimpleNamespace(Name="Count", Signature=bytes([0x06, 0x08]))),
        TypeSpec=_table(SimpleNamespace(Signature=bytes([0x15, 0x12, 0x0D, 0x01, 0x08]))),
    )
    pe = SimpleNamespace(net=SimpleNamespace(mdtables=tables, user_strings=None))
    return _AssemblyBuilder(pe, "/bin/sample.dll")


# -----------------------------------------------------------------------------
# open_assembly
# -----------------------------------------------------------------------------

def test_text_file_is_rejected(tmp_path: Path) -> None:
    f = tmp_path / "fake.dll"
    f.write_text("not a portable executable", encoding="utf-8")

    with pytest.raises(AssemblyOpenError) as exc:
        open_assembly(str(f))
    assert exc.value.path == str(f)


def test_missing_file_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(AssemblyOpenError):
        open_assembly(str(tmp_path / "missing.dll"))


# -----------------------------------------------------------------------------
# Name resolution
# -----------------------------------------------------------------------------

def test_build_materialises_types_and_methods(builder: _AssemblyBuilder) -> None:
    assembly = builder.build()

    assert assembly.path == "/bin/sample.dll"
    assert [m.name for m in assembly.modules] == ["sample.dll"]

    types = assembly.modules[0].types
    assert [t.full_name for t in types] == ["<Module>", "A.B", "A.B/Inner"]
    assert [m.full_name for m in types[1].methods] == [
        "System.Void A.B::C(System.String)",
        "System.Void A.B::.ctor()",
    ]
    assert [m.full_name for m in types[2].methods] == ["A.B/Inner A.B/Inner::Run()"]


def test_methods_without_rva_have_no_body(builder: _AssemblyBuilder) -> None:
    methods = builder.build().modules[0].types[1].methods

    assert all(not m.has_body for m in methods)
    assert methods[0].name == "C"
    assert methods[0].declaring_type == "A.B"


def test_member_ref_name(builder: _AssemblyBuilder) -> None:
    assert builder.method_name(0x0A, 1) == (
        "System.Object System.Runtime.Serialization.Formatters.Binary.BinaryFormatter"
        "::Deserialize(System.IO.Stream)"
    )


def test_type_spec_name(builder: _AssemblyBuilder) -> None:
    assert builder.token_name(0x1B, 1) == "System.Collections.Generic.List`1<System.Int32>"


def test_unknown_tokens(builder: _AssemblyBuilder) -> None:
    assert builder.method_name(0x06, 99) == ""
    assert builder.method_name(0x04, 1) == ""
    assert builder.typedef_name(42) == "<typedef 42>"


def test_call_instruction_gets_resolved_target(builder: _AssemblyBuilder) -> None:
    insn = SimpleNamespace(opcode=OpCodes.Callvirt, operand=Token(0x0A000001), offset=7)

    converted = builder._convert_instruction(insn)

    assert converted.is_call
    assert converted.offset == 7
    assert converted.call_target is not None
    assert converted.call_target.full_name.endswith("BinaryFormatter::Deserialize(System.IO.Stream)")
    assert str(converted).startswith("IL_0007: callvirt System.Object ")


def test_non_call_instruction_has_no_target(builder: _AssemblyBuilder) -> None:
    insn = SimpleNamespace(opcode=OpCodes.Ldarg_0, operand=None, offset=0)

    converted = builder._convert_instruction(insn)

    assert converted.call_target is None
    assert str(converted) == "IL_0000: ldarg.0"


def test_ldloc_and_ldarg_operands(builder: _AssemblyBuilder) -> None:
    local = SimpleNamespace(opcode=OpCodes.Ldloc_S, operand=Local(4), offset=0)
    arg = SimpleNamespace(opcode=OpCodes.Starg_S, operand=Argument(1), offset=2)

    assert str(builder._convert_instruction(local)) == "IL_0000: ldloc.s V_4"
    assert str(builder._convert_instruction(arg)) == "IL_0002: starg.s A_1"


# -----------------------------------------------------------------------------
# Field references
# -----------------------------------------------------------------------------

def test_field_definition_name(builder: _AssemblyBuilder) -> None:
    assert builder.token_name(0x04, 1) == "System.Int32 A.B::Count"


def test_member_ref_field_is_not_a_method(builder: _AssemblyBuilder) -> None:
    assert builder.token_name(0x0A, 2) == "System.IO.Stream System.IO.Stream::Null"
    assert builder.method_name(0x0A, 2) == ""


def test_load_field_instruction_shows_field_name(builder: _AssemblyBuilder) -> None:
    insn = SimpleNamespace(opcode=OpCodes.Ldsfld, operand=Token(0x0A000002), offset=3)

    converted = builder._convert_instruction(insn)

    assert converted.call_target is None
    assert str(converted) == "IL_0003: ldsfld System.IO.Stream System.IO.Stream::Null"


# -----------------------------------------------------------------------------
# Body-relative offsets
# -----------------------------------------------------------------------------

def test_offsets_are_rebased_on_first_code_byte(builder: _AssemblyBuilder) -> None:
    # fat header at file position 0x248, code starts 12 bytes later
    base = 0x248 + 12
    call = SimpleNamespace(opcode=OpCodes.Callvirt, operand=Token(0x0A000001), offset=base + 0x0F)
    branch = SimpleNamespace(opcode=OpCodes.Brfalse_S, operand=base + 0x15, offset=base + 0x0B)
    switch = SimpleNamespace(opcode=OpCodes.Switch, operand=[base + 0x20, base + 0x2A], offset=base)

    assert builder._convert_instruction(call, base).offset == 0x0F
    assert str(builder._convert_instruction(branch, base)) == "IL_000b: brfalse.s IL_0015"
    assert str(builder._convert_instruction(switch, base)) == "IL_0000: switch (IL_0020,IL_002a)"


# -----------------------------------------------------------------------------
# Hand-assembled managed DLL
# -----------------------------------------------------------------------------

SINK = (
    "System.Object System.Runtime.Serialization.Formatters.Binary.BinaryFormatter"
    "::Deserialize(System.IO.Stream)"
)


def test_real_assembly_types_and_methods(managed_dll: str) -> None:
    assembly = open_assembly(managed_dll)

    assert assembly.path == managed_dll
    assert [m.name for m in assembly.modules] == ["sample.dll"]
    types = assembly.modules[0].types
    assert [t.full_name for t in types] == ["<Module>", "Sample.Loader"]
    assert [m.full_name for m in types[1].methods] == [
        "System.Object Sample.Loader::Load(System.IO.Stream)",
        "System.String Sample.Loader::Describe()",
    ]
    assert all(m.has_body for m in types[1].methods)


def test_real_fat_body_listing(managed_dll: str) -> None:
    load = open_assembly(managed_dll).modules[0].types[1].methods[0]

    assert [str(i) for i in load.body.instructions] == [
        "IL_0000: newobj System.Void System.Runtime.Serialization.Formatters.Binary.BinaryFormatter::.ctor()",
        "IL_0005: stloc.0",
        "IL_0006: ldsfld System.Boolean Sample.Loader::Trusted",
        "IL_000b: brfalse.s IL_0015",
        "IL_000d: ldloc.0",
        "IL_000e: ldarg.1",
        f"IL_000f: callvirt {SINK}",
        "IL_0014: ret",
        "IL_0015: ldnull",
        "IL_0016: ret",
    ]
    assert [(v.index, v.type_name) for v in load.body.variables] == [
        (0, "System.Runtime.Serialization.Formatters.Binary.BinaryFormatter"),
    ]


def test_real_tiny_body_listing(managed_dll: str) -> None:
    describe = open_assembly(managed_dll).modules[0].types[1].methods[1]

    assert [str(i) for i in describe.body.instructions] == [
        'IL_0000: ldstr "payload"',
        "IL_0005: ldsfld System.String System.String::Empty",
        "IL_000a: call System.String System.String::Concat(System.String,System.String)",
        "IL_000f: ret",
    ]
    assert describe.body.variables == []


def test_real_assembly_call_site(managed_dll: str) -> None:
    assert is_dotnet_assembly(managed_dll)

    matches = list(find_method_calls(open_assembly(managed_dll), ["BinaryFormatter::Deserialize"]))

    assert len(matches) == 1
    assert matches[0].caller == "System.Object Sample.Loader::Load(System.IO.Stream)"
    assert matches[0].target == SINK
    assert matches[0].offset == 15
    assert matches[0].source_path == managed_dll
