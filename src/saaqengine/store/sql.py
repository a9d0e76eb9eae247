"""Small helpers for building parametrized SQL text."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


def bind_in(prefix: str, values: Iterable[Any], params: dict[str, Any]) -> str:
    """Add one named parameter per value and return the IN-list body.

    Values are sorted so identical filters produce identical statements.
    An empty iterable yields ``NULL``, which matches nothing.

        >>> params = {}
        >>> bind_in("mk", {3, 1}, params)
        ':mk0, :mk1'
        >>> params
        {'mk0': 1, 'mk1': 3}
    """
    ordered = sorted(values)
    if not ordered:
        return "NULL"
    names = []
    for i, value in enumerate(ordered):
        name = f"{prefix}{i}"
        params[name] = value
        names.append(f":{name}")
    return ", ".join(names)
