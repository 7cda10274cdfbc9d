from __future__ import annotations

"""
Call-Site Matcher.

Walks every method body of an opened assembly and flags call/callvirt
instructions whose resolved target name contains one of the configured
search entries. Matching is plain case-sensitive substring containment,
so "Foo" also flags "My.Foo.Bar::Baz".
"""

from typing import Iterator, Optional, Sequence

from cerealhunter.domain.scan_models import MatchResult
from cerealhunter.infra.metadata.model import AssemblyUnit, MethodUnit


def find_method_calls(
        assembly: AssemblyUnit,
        methods_to_search: Sequence[str],
        source_path: Optional[str] = None,
) -> Iterator[MatchResult]:
    """
    Yield every matching call site in the assembly.

    Args:
        assembly: The opened assembly.
        methods_to_search: Ordered search entries.
        source_path: Path reported in results (defaults to the assembly path).

    Yields:
        MatchResult: One per (call instruction, matching entry) pair.
    """
    if not methods_to_search:
        return

    path = source_path or assembly.path
    for module in assembly.modules:
        for type_unit in module.types:
            for method in type_unit.methods:
                if method.has_body:
                    yield from analyze_method(method, methods_to_search, path)


def analyze_method(
        method: MethodUnit,
        methods_to_search: Sequence[str],
        source_path: str,
) -> Iterator[MatchResult]:
    """Yield the matching call sites of a single method, in instruction order."""
    if not method.has_body:
        return

    for instr in method.body.instructions:
        if not instr.is_call or instr.call_target is None:
            continue

        target_name = instr.call_target.full_name
        for entry in methods_to_search:
            if entry and entry in target_name:
                yield MatchResult(
                    caller=method.full_name,
                    target=target_name,
                    pattern=entry,
                    source_path=source_path,
                    offset=instr.offset,
                    method=method,
                )
