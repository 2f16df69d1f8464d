"""
CPU set formatting.

Formats a set of physical CPU numbers as the range string used in domain
definitions, e.g. ``{0, 1, 2, 3, 5, 8, 9}`` -> ``"0-3,5,8-9"``.
"""

from __future__ import annotations

from collections.abc import Iterable

def format_cpu_ranges(cpus: Iterable[int]) -> str:
    ordered = sorted(set(cpus))
    if not ordered:
        return ""

    parts: list[str] = []
    start = prev = ordered[0]
    for cpu in ordered[1:]:
        if cpu == prev + 1:
            prev = cpu
            continue
        parts.append(_range(start, prev))
        start = prev = cpu
    parts.append(_range(start, prev))
    return ",".join(parts)

def _range(start: int, end: int) -> str:
    return str(start) if start == end else f"{start}-{end}"
