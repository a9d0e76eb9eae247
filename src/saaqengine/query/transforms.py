"""Series post-processing: normalize to the first year, then cumulate.

Values are float or None. None marks a year with no meaningful value
(missing baseline, undefined ratio) and is never replaced by a number.
"""

from __future__ import annotations

from collections.abc import Sequence

Value = float | None


def normalize_series(values: Sequence[Value]) -> list[Value]:
    """Divide every value by the first one.

    A first value of zero or None makes the whole series None.
    """
    if not values:
        return []
    first = values[0]
    if first is None or first == 0:
        return [None] * len(values)
    return [None if v is None else v / first for v in values]


def cumulative_sum(values: Sequence[Value]) -> list[Value]:
    """Running sum; a None point stays None and does not reset the total."""
    total = 0.0
    result: list[Value] = []
    for v in values:
        if v is None:
            result.append(None)
            continue
        total += v
        result.append(total)
    return result


def post_process(values: Sequence[Value], normalize: bool = False, cumulative: bool = False) -> list[Value]:
    """Apply normalization, then the running sum. The order is fixed."""
    result = list(values)
    if normalize:
        result = normalize_series(result)
    if cumulative:
        result = cumulative_sum(result)
    return result
