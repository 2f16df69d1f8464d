"""Flag validation helpers shared by the operation surface."""

from __future__ import annotations

from xenunified.core.exceptions import InvalidArgumentError

def check_flags(operation: str, flags: int, allowed: int = 0) -> None:
    """Reject any bit in ``flags`` outside ``allowed``.

    Raises:
        InvalidArgumentError: before any backend is consulted.
    """
    unknown = int(flags) & ~int(allowed)
    if unknown:
        raise InvalidArgumentError(
            f"{operation}: unsupported flags (0x{unknown:x})"
        )
