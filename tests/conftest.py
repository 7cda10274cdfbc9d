from __future__ import annotations

"""
Global Pytest Configuration and Fixtures.

This module sets up the testing environment, including:
1. Path manipulation to ensure the 'src' directory is importable.
2. Factories for in-memory assemblies used by matcher and pipeline tests.
3. A hand-assembled managed DLL for tests that go through dnfile and dncil.
"""

import os
import struct
import sys
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pytest

# -----------------------------------------------------------------------------
# Path Configuration
# -----------------------------------------------------------------------------
_SRC_PATH = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if _SRC_PATH not in sys.path:
    sys.path.insert(0, _SRC_PATH)

from cerealhunter.domain.scan_models import TargetSignature  # noqa: E402
from cerealhunter.infra.metadata.model import (  # noqa: E402
    AssemblyUnit,
    Instruction,
    LocalVariable,
    MethodBody,
    MethodUnit,
    ModuleUnit,
    TypeUnit,
)


# -----------------------------------------------------------------------------
# Shared Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def make_method() -> Callable[..., MethodUnit]:
    """
    Return a factory building a MethodUnit whose body calls the given targets.

    Each target becomes a `callvirt` preceded by an `ldarg.0`, so call
    offsets are 1, 7, 13, ... and a trailing `ret` closes the body.
    """

    def _factory(
            full_name: str,
            calls: Sequence[str] = (),
            has_body: bool = True,
            variables: Sequence[str] = (),
    ) -> MethodUnit:
        declaring, _, name = full_name.partition("::")
        if not has_body:
            return MethodUnit(name=name, declaring_type=declaring, full_name=full_name, body=None)

        instructions: List[Instruction] = []
        offset = 0
        for target in calls:
            instructions.append(Instruction(offset=offset, mnemonic="ldarg.0"))
            instructions.append(Instruction(
                offset=offset + 1,
                mnemonic="callvirt",
                operand=target,
                call_target=TargetSignature(target),
            ))
            offset += 6
        instructions.append(Instruction(offset=offset, mnemonic="ret"))

        body = MethodBody(
            instructions=instructions,
            variables=[LocalVariable(index=i, type_name=t) for i, t in enumerate(variables)],
        )
        return MethodUnit(name=name, declaring_type=declaring, full_name=full_name, body=body)

    return _factory


@pytest.fixture
def make_assembly() -> Callable[..., AssemblyUnit]:
    """Return a factory wrapping methods into a single-module, single-type assembly."""

    def _factory(methods: Sequence[MethodUnit], path: str = "/bin/sample.dll",
                 type_name: Optional[str] = None) -> AssemblyUnit:
        type_unit = TypeUnit(full_name=type_name or "Sample.Type", methods=list(methods))
        return AssemblyUnit(path=path, modules=[ModuleUnit(name="sample.dll", types=[type_unit])])

    return _factory


# -----------------------------------------------------------------------------
# Minimal Managed Binary
# -----------------------------------------------------------------------------
# A hand-assembled PE32 image with real CLR metadata, so the dnfile/dncil
# reader and the header classifier run against bytes laid out the way a
# compiler emits them:
#
#   namespace Sample {
#       public class Loader {
#           public static bool Trusted;
#           public object Load(Stream s) {
#               var f = new BinaryFormatter();
#               if (!Trusted) return null;
#               return f.Deserialize(s);
#           }
#           public static string Describe() { return "payload" + string.Empty; }
#       }
#   }

_TEXT_RVA = 0x2000
_FILE_ALIGNMENT = 0x200
_SECTION_ALIGNMENT = 0x2000

SAMPLE_LOAD = "System.Object Sample.Loader::Load(System.IO.Stream)"
SAMPLE_DESCRIBE = "System.String Sample.Loader::Describe()"
SAMPLE_SINK = (
    "System.Object System.Runtime.Serialization.Formatters.Binary.BinaryFormatter"
    "::Deserialize(System.IO.Stream)"
)


def _pad(data: bytes, alignment: int = 4) -> bytes:
    return data + b"\0" * (-len(data) % alignment)


def _strings_heap(names: Sequence[str]) -> Tuple[bytes, Dict[str, int]]:
    data = bytearray(b"\0")
    offsets: Dict[str, int] = {"": 0}
    for name in names:
        if name not in offsets:
            offsets[name] = len(data)
            data += name.encode("utf-8") + b"\0"
    return _pad(bytes(data)), offsets


def _blob_heap(blobs: Sequence[bytes]) -> Tuple[bytes, Dict[bytes, int]]:
    data = bytearray(b"\0")
    offsets: Dict[bytes, int] = {}
    for blob in blobs:
        if blob not in offsets:
            offsets[blob] = len(data)
            data += bytes([len(blob)]) + blob
    return _pad(bytes(data)), offsets


def _metadata() -> Tuple[bytes, bytes, bytes, bytes, Dict[int, List[bytes]]]:
    """Return the #Strings, #US, #GUID and #Blob heaps plus the table rows by table number."""
    strings, s = _strings_heap([
        "sample.dll", "<Module>", "Loader", "Sample", "Object", "System", "BinaryFormatter",
        "System.Runtime.Serialization.Formatters.Binary", "Stream", "System.IO", "String",
        "Trusted", "Load", "Describe", "Deserialize", ".ctor", "Empty", "Concat",
    ])

    field_bool = bytes([0x06, 0x02])
    object_from_stream = bytes([0x20, 0x01, 0x1C, 0x12, 0x0D])
    static_string = bytes([0x00, 0x00, 0x0E])
    ctor = bytes([0x20, 0x00, 0x01])
    field_string = bytes([0x06, 0x0E])
    concat = bytes([0x00, 0x02, 0x0E, 0x0E, 0x0E])
    locals_sig = bytes([0x07, 0x01, 0x12, 0x09])
    blobs, b = _blob_heap([field_bool, object_from_stream, static_string, ctor, field_string, concat, locals_sig])

    text = "payload".encode("utf-16-le")
    user_strings = _pad(b"\0" + bytes([len(text) + 1]) + text + b"\0")
    guids = bytes(range(16))

    scope = (1 << 2) | 0                   # ResolutionScope -> Module 1
    bf_parent = (2 << 3) | 1               # MemberRefParent -> TypeRef 2
    string_parent = (4 << 3) | 1           # MemberRefParent -> TypeRef 4

    # method RVAs are patched in by _text_section()
    tables = {
        0x00: [struct.pack("<HHHHH", 0, s["sample.dll"], 1, 0, 0)],
        0x01: [
            struct.pack("<HHH", scope, s["Object"], s["System"]),
            struct.pack("<HHH", scope, s["BinaryFormatter"], s["System.Runtime.Serialization.Formatters.Binary"]),
            struct.pack("<HHH", scope, s["Stream"], s["System.IO"]),
            struct.pack("<HHH", scope, s["String"], s["System"]),
        ],
        0x02: [
            struct.pack("<IHHHHH", 0, s["<Module>"], 0, 0, 1, 1),
            struct.pack("<IHHHHH", 0x00100001, s["Loader"], s["Sample"], (1 << 2) | 1, 1, 1),
        ],
        0x04: [struct.pack("<HHH", 0x0016, s["Trusted"], b[field_bool])],
        0x06: [
            struct.pack("<IHHHHH", 0, 0, 0x0086, s["Load"], b[object_from_stream], 1),
            struct.pack("<IHHHHH", 0, 0, 0x0096, s["Describe"], b[static_string], 1),
        ],
        0x0A: [
            struct.pack("<HHH", bf_parent, s["Deserialize"], b[object_from_stream]),
            struct.pack("<HHH", bf_parent, s[".ctor"], b[ctor]),
            struct.pack("<HHH", string_parent, s["Empty"], b[field_string]),
            struct.pack("<HHH", string_parent, s["Concat"], b[concat]),
        ],
        0x11: [struct.pack("<H", b[locals_sig])],
    }
    return strings, user_strings, guids, blobs, tables


def _tables_stream(tables: Dict[int, List[bytes]]) -> bytes:
    mask_valid = 0
    for number in tables:
        mask_valid |= 1 << number
    header = struct.pack("<IBBBBQQ", 0, 2, 0, 0, 1, mask_valid, 0)
    counts = b"".join(struct.pack("<I", len(tables[n])) for n in sorted(tables))
    rows = b"".join(b"".join(tables[n]) for n in sorted(tables))
    return _pad(header + counts + rows)


def _metadata_root(streams: Sequence[Tuple[str, bytes]]) -> bytes:
    version = _pad(b"v4.0.30319\0")
    root = struct.pack("<IHHII", 0x424A5342, 1, 1, 0, len(version)) + version + struct.pack("<HH", 0, len(streams))

    names = [_pad(name.encode("ascii") + b"\0") for name, _ in streams]
    offset = len(root) + sum(8 + len(n) for n in names)
    headers = b""
    for name, (_, data) in zip(names, streams):
        headers += struct.pack("<II", offset, len(data)) + name
        offset += len(data)
    return root + headers + b"".join(data for _, data in streams)


def _method_bodies() -> Tuple[bytes, bytes]:
    load_code = bytes([
        0x73, 0x02, 0x00, 0x00, 0x0A,      # IL_0000 newobj BinaryFormatter::.ctor
        0x0A,                              # IL_0005 stloc.0
        0x7E, 0x01, 0x00, 0x00, 0x04,      # IL_0006 ldsfld Loader::Trusted
        0x2C, 0x08,                        # IL_000b brfalse.s IL_0015
        0x06,                              # IL_000d ldloc.0
        0x03,                              # IL_000e ldarg.1
        0x6F, 0x01, 0x00, 0x00, 0x0A,      # IL_000f callvirt BinaryFormatter::Deserialize
        0x2A,                              # IL_0014 ret
        0x14,                              # IL_0015 ldnull
        0x2A,                              # IL_0016 ret
    ])
    # fat header: flags 0x3013 (fat, init locals, 3 dwords), max stack 2, locals StandAloneSig 1
    load = struct.pack("<HHII", 0x3013, 2, len(load_code), 0x11000001) + load_code

    describe_code = bytes([
        0x72, 0x01, 0x00, 0x00, 0x70,      # IL_0000 ldstr "payload"
        0x7E, 0x03, 0x00, 0x00, 0x0A,      # IL_0005 ldsfld String::Empty
        0x28, 0x04, 0x00, 0x00, 0x0A,      # IL_000a call String::Concat
        0x2A,                              # IL_000f ret
    ])
    describe = bytes([(len(describe_code) << 2) | 0x02]) + describe_code
    return load, describe


def _text_section() -> Tuple[bytes, int]:
    """Lay out CLR header, method bodies and metadata; return (bytes, CLR header size)."""
    clr_size = 72
    load, describe = _method_bodies()

    text = bytearray(clr_size)
    load_rva = _TEXT_RVA + len(text)
    text += _pad(load)
    describe_rva = _TEXT_RVA + len(text)
    text += _pad(describe)

    strings, user_strings, guids, blobs, tables = _metadata()
    tables[0x06][0] = struct.pack("<I", load_rva) + tables[0x06][0][4:]
    tables[0x06][1] = struct.pack("<I", describe_rva) + tables[0x06][1][4:]
    metadata = _metadata_root([
        ("#~", _tables_stream(tables)),
        ("#Strings", strings),
        ("#US", user_strings),
        ("#GUID", guids),
        ("#Blob", blobs),
    ])

    metadata_rva = _TEXT_RVA + len(text)
    text += metadata
    # COR20 header: cb, runtime 2.5, metadata directory, ILONLY, no entry point
    text[0:clr_size] = struct.pack("<IHHIIII", clr_size, 2, 5, metadata_rva, len(metadata), 1, 0) + b"\0" * 48
    return bytes(text), clr_size


def build_managed_pe() -> bytes:
    """Return the bytes of the sample managed DLL described above."""
    text, clr_size = _text_section()
    raw_size = len(_pad(text, _FILE_ALIGNMENT))
    image_size = _TEXT_RVA + len(_pad(text, _SECTION_ALIGNMENT))

    dos = bytearray(0x80)
    dos[0:2] = b"MZ"
    struct.pack_into("<I", dos, 0x3C, len(dos))

    file_header = struct.pack("<HHIIIHH", 0x14C, 1, 0, 0, 0, 0xE0, 0x2102)
    optional_header = struct.pack(
        "<HBBIIIIIIIIIHHHHHHIIIIHHIIIIII",
        0x10B, 8, 0, raw_size, 0, 0, 0, _TEXT_RVA, 0, 0x10000000, _SECTION_ALIGNMENT, _FILE_ALIGNMENT,
        4, 0, 0, 0, 4, 0,
        0, image_size, _FILE_ALIGNMENT, 0,
        3, 0x8540,
        0x100000, 0x1000, 0x100000, 0x1000, 0, 16,
    )
    directories = [(0, 0)] * 16
    directories[14] = (_TEXT_RVA, clr_size)
    optional_header += b"".join(struct.pack("<II", rva, size) for rva, size in directories)

    section = struct.pack("<8sIIIIIIHHI", b".text", len(text), _TEXT_RVA, raw_size, _FILE_ALIGNMENT,
                          0, 0, 0, 0, 0x60000020)

    headers = bytes(dos) + b"PE\0\0" + file_header + optional_header + section
    return _pad(headers, _FILE_ALIGNMENT) + _pad(text, _FILE_ALIGNMENT)


@pytest.fixture
def managed_dll(tmp_path) -> str:
    """Write the sample managed DLL to disk and return its path."""
    path = tmp_path / "sample.dll"
    path.write_bytes(build_managed_pe())
    return str(path)
