"""Query results: a yearly series and its summary statistics."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from saaqengine.core.errors import SlowQueryWarning


@dataclass(frozen=True)
class TimePoint:
    year: int
    value: float | None


@dataclass(frozen=True)
class SummaryStatistics:
    """Statistics over the non-None points of a series."""

    point_count: int
    minimum: float | None = None
    maximum: float | None = None
    mean: float | None = None
    total: float | None = None
    first_year: int | None = None
    first_value: float | None = None
    last_year: int | None = None
    last_value: float | None = None
    absolute_change: float | None = None
    percent_change: float | None = None
    compound_annual_growth: float | None = None

    @classmethod
    def from_points(cls, points: list[TimePoint]) -> SummaryStatistics:
        known = [p for p in points if p.value is not None]
        if not known:
            return cls(point_count=0)
        values = [float(p.value) for p in known]  # type: ignore[arg-type]
        first, last = known[0], known[-1]
        first_value, last_value = float(first.value), float(last.value)  # type: ignore[arg-type]

        percent = None
        if first_value != 0:
            percent = (last_value - first_value) * 100.0 / abs(first_value)

        cagr = None
        span = last.year - first.year
        if span > 0 and first_value > 0 and last_value >= 0:
            cagr = ((last_value / first_value) ** (1.0 / span) - 1.0) * 100.0

        return cls(
            point_count=len(known),
            minimum=min(values),
            maximum=max(values),
            mean=sum(values) / len(values),
            total=sum(values),
            first_year=first.year,
            first_value=first_value,
            last_year=last.year,
            last_value=last_value,
            absolute_change=last_value - first_value,
            percent_change=percent,
            compound_annual_growth=cagr,
        )

    def to_dict(self) -> dict[str, Any]:
        return {k: getattr(self, k) for k in self.__dataclass_fields__}


@dataclass(frozen=True)
class TimeSeries:
    label: str
    points: list[TimePoint]
    unit: str | None = None

    @property
    def years(self) -> list[int]:
        return [p.year for p in self.points]

    @property
    def values(self) -> list[float | None]:
        return [p.value for p in self.points]

    def value_for(self, year: int) -> float | None:
        for p in self.points:
            if p.year == year:
                return p.value
        return None


@dataclass(frozen=True)
class QueryResult:
    series: TimeSeries
    summary: SummaryStatistics
    filter: dict[str, Any] = field(default_factory=dict)
    warning: SlowQueryWarning | None = None
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.series.label,
            "unit": self.series.unit,
            "points": [{"year": p.year, "value": p.value} for p in self.series.points],
            "summary": self.summary.to_dict(),
            "filter": self.filter,
            "warning": self.warning.to_dict() if self.warning else None,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
