"""Value types for regularization: mappings, statistics and the canonical hierarchy."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from saaqengine.config.constants import PLACEHOLDER_FUEL_TYPE_ID, PLACEHOLDER_FUEL_TYPE_LABEL


@dataclass(frozen=True)
class MappingRequest:
    """Uncurated (make, model[, model year]) to canonical (make, model) with optional pins.

    model_year_id None makes a wildcard (pair-level) mapping. fuel_type_id is
    only meaningful on a triplet mapping; vehicle_type_id on either.
    """

    uncurated_make_id: int
    uncurated_model_id: int
    canonical_make_id: int
    canonical_model_id: int
    model_year_id: int | None = None
    fuel_type_id: int | None = None
    vehicle_type_id: int | None = None

    @property
    def is_wildcard(self) -> bool:
        return self.model_year_id is None


@dataclass(frozen=True)
class MappingRecord:
    """A stored mapping with display names."""

    id: int
    uncurated_make_id: int
    uncurated_make: str
    uncurated_model_id: int
    uncurated_model: str
    canonical_make_id: int
    canonical_make: str
    canonical_model_id: int
    canonical_model: str
    model_year_id: int | None
    model_year: int | None
    fuel_type_id: int | None
    fuel_type: str | None
    vehicle_type_id: int | None
    vehicle_type: str | None
    record_count: int
    year_range_start: int | None
    year_range_end: int | None
    created_date: float | None
    percentage_of_uncurated: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "uncurated": f"{self.uncurated_make} {self.uncurated_model}",
            "canonical": f"{self.canonical_make} {self.canonical_model}",
            "model_year": self.model_year,
            "fuel_type": self.fuel_type,
            "vehicle_type": self.vehicle_type,
            "record_count": self.record_count,
            "year_range": [self.year_range_start, self.year_range_end],
            "percentage_of_uncurated": round(self.percentage_of_uncurated, 3),
        }


@dataclass(frozen=True)
class RegularizationDisplay:
    """What an uncurated pair maps to, for filter badges."""

    canonical_make: str
    canonical_model: str
    record_count: int


@dataclass(frozen=True)
class MakeRegularizationDisplay:
    canonical_make: str
    record_count: int


@dataclass(frozen=True)
class UncuratedPair:
    """A make/model pair seen in uncurated years."""

    make_id: int
    make_name: str
    model_id: int
    model_name: str
    record_count: int
    percentage_of_uncurated: float
    earliest_year: int
    latest_year: int
    has_mapping: bool = False
    exists_in_curated: bool = False

    @property
    def key(self) -> tuple[int, int]:
        return (self.make_id, self.model_id)


@dataclass(frozen=True)
class RegularizationStatistics:
    mapping_count: int
    covered_records: int
    total_uncurated_records: int

    @property
    def coverage_percent(self) -> float:
        if self.total_uncurated_records == 0:
            return 0.0
        return self.covered_records * 100.0 / self.total_uncurated_records


@dataclass(frozen=True)
class FieldCoverage:
    """Records among mapped uncurated records whose field is assigned."""

    assigned: int
    total: int

    @property
    def percent(self) -> float:
        return self.assigned * 100.0 / self.total if self.total else 0.0


@dataclass(frozen=True)
class DetailedStatistics:
    """Coverage broken down by what a mapping pins."""

    summary: RegularizationStatistics
    make_model: FieldCoverage
    fuel_type: FieldCoverage
    vehicle_type: FieldCoverage
    wildcard_mappings: int
    triplet_mappings: int


@dataclass(frozen=True)
class Expansion:
    """Ids the regularization step added to a filter."""

    added_make_ids: frozenset[int] = frozenset()
    added_model_ids: frozenset[int] = frozenset()
    injected_make_ids: frozenset[int] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not (self.added_make_ids or self.added_model_ids or self.injected_make_ids)


# ============================================================================
# CANONICAL HIERARCHY
# ============================================================================


@dataclass(frozen=True)
class FuelTypeInfo:
    id: int
    code: str | None
    description: str | None
    record_count: int

    @property
    def is_placeholder(self) -> bool:
        return self.id == PLACEHOLDER_FUEL_TYPE_ID

    @classmethod
    def placeholder(cls, record_count: int) -> FuelTypeInfo:
        return cls(PLACEHOLDER_FUEL_TYPE_ID, None, PLACEHOLDER_FUEL_TYPE_LABEL, record_count)


@dataclass(frozen=True)
class VehicleTypeInfo:
    id: int | None
    code: str | None
    description: str | None
    record_count: int


@dataclass
class CanonicalModel:
    """One model in curated years.

    model_years maps model_year_id (None when unknown) to the fuel types
    observed for that model year.
    """

    model_id: int
    model_name: str
    make_id: int
    make_name: str
    model_years: dict[int | None, list[FuelTypeInfo]] = field(default_factory=dict)
    model_year_values: dict[int, int] = field(default_factory=dict)
    vehicle_types: list[VehicleTypeInfo] = field(default_factory=list)
    record_count: int = 0

    def fuel_types_for(self, model_year_id: int | None) -> list[FuelTypeInfo]:
        return self.model_years.get(model_year_id, [])


@dataclass
class CanonicalMake:
    make_id: int
    make_name: str
    models: list[CanonicalModel] = field(default_factory=list)

    @property
    def record_count(self) -> int:
        return sum(m.record_count for m in self.models)


@dataclass
class CanonicalHierarchy:
    """Make -> model -> model year -> fuel types, over curated years."""

    cache_key: str
    curated_years: tuple[int, ...]
    mapping_version: int
    makes: list[CanonicalMake] = field(default_factory=list)

    def find_make(self, make_id: int) -> CanonicalMake | None:
        return next((m for m in self.makes if m.make_id == make_id), None)

    def find_model(self, make_id: int, model_id: int) -> CanonicalModel | None:
        make = self.find_make(make_id)
        if make is None:
            return None
        return next((m for m in make.models if m.model_id == model_id), None)

    def find_model_by_name(self, make_name: str, model_name: str) -> CanonicalModel | None:
        for make in self.makes:
            if make.make_name != make_name:
                continue
            for model in make.models:
                if model.model_name == model_name:
                    return model
        return None

    @property
    def model_count(self) -> int:
        return sum(len(m.models) for m in self.makes)

    @property
    def record_count(self) -> int:
        return sum(m.record_count for m in self.makes)
