"""EXPLAIN QUERY PLAN classification.

A plan step that scans a fact table without an index is a full scan; a
scan through an index (covering or not) is a partial scan; anything else
uses index searches only.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from saaqengine.core.errors import SlowQueryWarning

if TYPE_CHECKING:
    from saaqengine.query.builder import Query
    from saaqengine.store.database import StoreHandle

_SCAN_RE = re.compile(r"^SCAN (?:TABLE )?(\w+)(?: AS (\w+))?(.*)$")

_FACT_NAMES = {
    "vehicles": {"vehicles", "v"},
    "licenses": {"licenses", "l"},
}


class PlanKind(str, Enum):
    INDEXED = "indexed"
    PARTIAL_SCAN = "partial_scan"
    FULL_SCAN = "full_scan"


@dataclass(frozen=True)
class PlanClassification:
    kind: PlanKind
    details: list[str] = field(default_factory=list)
    warning: SlowQueryWarning | None = None

    @property
    def is_full_scan(self) -> bool:
        return self.kind is PlanKind.FULL_SCAN


def classify_plan(details: list[str], fact_table: str) -> PlanClassification:
    """Classify EXPLAIN QUERY PLAN detail lines for a statement over fact_table."""
    names = _FACT_NAMES.get(fact_table, {fact_table})
    kind = PlanKind.INDEXED
    for detail in details:
        match = _SCAN_RE.match(detail.strip())
        if match is None:
            continue
        table, alias, rest = match.group(1), match.group(2), match.group(3)
        if table not in names and alias not in names:
            continue
        if "USING" in rest:
            kind = PlanKind.PARTIAL_SCAN
        else:
            return PlanClassification(
                PlanKind.FULL_SCAN,
                details,
                SlowQueryWarning.full_scan(fact_table, details),
            )
    return PlanClassification(kind, details)


def explain_plan(handle: StoreHandle, query: Query) -> PlanClassification:
    rows = handle.all(f"EXPLAIN QUERY PLAN {query.sql}", query.params)
    return classify_plan([str(r[-1]) for r in rows], query.fact_table)
