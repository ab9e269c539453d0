"""Identifier interpolation for operator-supplied SQL names.

Table, column, index and access-method names cannot be bound as parameters,
so they are written into statement text here and nowhere else. The console
trusts its operator: names pass through unquoted and follow PostgreSQL's
usual unquoted-identifier folding. This is not a defense against untrusted
input; a hardened deployment needs an allow-list or quoting layer at this
seam.
"""

from __future__ import annotations

from typing import Iterable


def interpolate_identifier(name: str) -> str:
    """Return ``name`` ready to be placed into SQL text as an identifier."""

    identifier = name.strip()
    if not identifier:
        raise ValueError("Identifier must not be empty.")
    return identifier


def interpolate_identifier_list(names: Iterable[str]) -> str:
    """Comma-join identifiers for column lists."""

    return ", ".join(interpolate_identifier(name) for name in names)


__all__ = ["interpolate_identifier", "interpolate_identifier_list"]
