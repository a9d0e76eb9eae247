"""FilterSpec (caller request) and FilterIds (resolved dimension ids)."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from saaqengine.core.errors import QueryValidationError
from saaqengine.dimensions.registry import Dimension, get_spec
from saaqengine.models import EntityScope
from saaqengine.query.tokens import FilterToken, parse_tokens
from saaqengine.regularization.models import Expansion

UnresolvedPolicy = Literal["raise", "collect"]


class LicenseClass(str, Enum):
    """License classes held, each backed by a boolean column on licenses."""

    LEARNER_123 = "learner_123"
    LEARNER_5 = "learner_5"
    LEARNER_6A6R = "learner_6a6r"
    DRIVER_1234 = "driver_1234"
    DRIVER_5 = "driver_5"
    DRIVER_6ABCE = "driver_6abce"
    DRIVER_6D = "driver_6d"
    DRIVER_8 = "driver_8"
    PROBATIONARY = "probationary"

    @property
    def column(self) -> str:
        return _LICENSE_CLASS_COLUMNS[self]


_LICENSE_CLASS_COLUMNS = {
    LicenseClass.LEARNER_123: "has_learner_permit_123",
    LicenseClass.LEARNER_5: "has_learner_permit_5",
    LicenseClass.LEARNER_6A6R: "has_learner_permit_6a6r",
    LicenseClass.DRIVER_1234: "has_driver_license_1234",
    LicenseClass.DRIVER_5: "has_driver_license_5",
    LicenseClass.DRIVER_6ABCE: "has_driver_license_6abce",
    LicenseClass.DRIVER_6D: "has_driver_license_6d",
    LicenseClass.DRIVER_8: "has_driver_license_8",
    LicenseClass.PROBATIONARY: "is_probationary",
}


@dataclass(frozen=True)
class AgeRange:
    """Vehicle age bracket in years (data year minus model year), inclusive."""

    min_age: int
    max_age: int | None = None

    def __post_init__(self) -> None:
        if self.min_age < 0:
            raise QueryValidationError.invalid("age range minimum must be >= 0", min_age=self.min_age)
        if self.max_age is not None and self.max_age < self.min_age:
            raise QueryValidationError.invalid(
                "age range maximum is below its minimum",
                min_age=self.min_age,
                max_age=self.max_age,
            )


# Categories resolved by token lookup against the cache.
TOKEN_DIMENSIONS: tuple[Dimension, ...] = (
    Dimension.ADMIN_REGION,
    Dimension.MRC,
    Dimension.MUNICIPALITY,
    Dimension.VEHICLE_CLASS,
    Dimension.VEHICLE_TYPE,
    Dimension.MAKE,
    Dimension.MODEL,
    Dimension.FUEL_TYPE,
    Dimension.COLOR,
    Dimension.AGE_GROUP,
    Dimension.GENDER,
    Dimension.LICENSE_TYPE,
    Dimension.EXPERIENCE_LEVEL,
)


@dataclass
class FilterSpec:
    """What the caller wants to filter on, in display terms.

    values maps a dimension to the labels selected for it. Years, model
    years and axle counts are plain integers. Nothing here is persisted.
    """

    scope: EntityScope = EntityScope.VEHICLE
    years: set[int] = field(default_factory=set)
    values: dict[Dimension, list[str]] = field(default_factory=dict)
    model_years: set[int] = field(default_factory=set)
    axle_counts: set[int] = field(default_factory=set)
    age_ranges: list[AgeRange] = field(default_factory=list)
    license_classes: set[LicenseClass] = field(default_factory=set)
    limit_to_curated_years: bool = False

    def with_values(self, dimension: Dimension | str, *labels: str) -> FilterSpec:
        """Return a copy with labels appended to a dimension."""
        dim = Dimension(dimension)
        values = {k: list(v) for k, v in self.values.items()}
        values.setdefault(dim, []).extend(labels)
        return dataclasses.replace(self, values=values)

    def tokens(self) -> dict[Dimension, list[FilterToken]]:
        """Parse every label once."""
        parsed = {}
        for dim, labels in self.values.items():
            tokens = parse_tokens(labels)
            if tokens:
                parsed[dim] = tokens
        return parsed

    def validate(self) -> None:
        """Fail fast on combinations the translator cannot express.

        Raises:
            QueryValidationError: dimension outside the entity scope, token
                lookup requested for a non-token dimension.
        """
        for dim in self.values:
            if dim not in TOKEN_DIMENSIONS:
                raise QueryValidationError.invalid(
                    f"{dim.value} is filtered through its own field, not labels",
                    dimension=dim.value,
                )
            if not get_spec(dim).applies_to(self.scope):
                raise QueryValidationError.invalid(
                    f"{dim.value} does not apply to {self.scope.value} queries",
                    dimension=dim.value,
                    scope=self.scope.value,
                )
        if self.scope is EntityScope.LICENSE:
            if self.model_years or self.axle_counts or self.age_ranges:
                raise QueryValidationError.invalid(
                    "model years, axle counts and vehicle ages apply to vehicle queries only"
                )
        elif self.license_classes:
            raise QueryValidationError.invalid("license classes apply to license queries only")
        for count in self.axle_counts:
            if count < 0:
                raise QueryValidationError.invalid("axle count must be >= 0", axle_count=count)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope.value,
            "years": sorted(self.years),
            "values": {k.value: list(v) for k, v in self.values.items()},
            "model_years": sorted(self.model_years),
            "axle_counts": sorted(self.axle_counts),
            "age_ranges": [[r.min_age, r.max_age] for r in self.age_ranges],
            "license_classes": sorted(c.value for c in self.license_classes),
            "limit_to_curated_years": self.limit_to_curated_years,
        }


@dataclass(frozen=True)
class QueryOptions:
    """Per-call knobs; defaults come from RegularizationConfig."""

    regularization_enabled: bool = False
    coupling: bool = True
    include_pre_schema_fuel_type: bool = False
    on_unresolved: UnresolvedPolicy = "raise"


@dataclass(frozen=True)
class FilterIds:
    """Resolved filter: dimension ids per category.

    An empty set means "no constraint". makes/models hold the effective ids
    after regularization; expansion records what regularization added so
    the directly resolved ids can always be recovered.
    """

    scope: EntityScope = EntityScope.VEHICLE
    years: frozenset[int] = frozenset()
    admin_regions: frozenset[int] = frozenset()
    mrcs: frozenset[int] = frozenset()
    municipalities: frozenset[int] = frozenset()
    vehicle_classes: frozenset[int] = frozenset()
    vehicle_types: frozenset[int] = frozenset()
    makes: frozenset[int] = frozenset()
    models: frozenset[int] = frozenset()
    model_years: frozenset[int] = frozenset()
    fuel_types: frozenset[int] = frozenset()
    colors: frozenset[int] = frozenset()
    axle_counts: frozenset[int] = frozenset()
    age_ranges: tuple[AgeRange, ...] = ()
    age_groups: frozenset[int] = frozenset()
    genders: frozenset[int] = frozenset()
    license_types: frozenset[int] = frozenset()
    experience_levels: frozenset[int] = frozenset()
    license_classes: frozenset[LicenseClass] = frozenset()
    regularized: bool = False
    include_pre_schema_fuel_type: bool = False
    expansion: Expansion | None = None
    unresolved: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def without_expansion(self) -> FilterIds:
        """The ids as resolved, before regularization touched them."""
        if self.expansion is None:
            return self
        return dataclasses.replace(
            self,
            makes=self.makes - self.expansion.added_make_ids - self.expansion.injected_make_ids,
            models=self.models - self.expansion.added_model_ids,
            regularized=False,
            expansion=None,
        )

    def ids_for(self, dimension: Dimension) -> frozenset[int]:
        attr = DIMENSION_ATTRS.get(dimension)
        if attr is None:
            return frozenset()
        return getattr(self, attr)  # type: ignore[no-any-return]

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"scope": self.scope.value}
        for dim, attr in DIMENSION_ATTRS.items():
            ids = getattr(self, attr)
            if ids:
                result[dim.value] = sorted(ids)
        if self.axle_counts:
            result["axle_counts"] = sorted(self.axle_counts)
        if self.age_ranges:
            result["age_ranges"] = [[r.min_age, r.max_age] for r in self.age_ranges]
        if self.license_classes:
            result["license_classes"] = sorted(c.value for c in self.license_classes)
        result["regularized"] = self.regularized
        if self.unresolved:
            result["unresolved"] = {k: list(v) for k, v in self.unresolved.items()}
        return result


DIMENSION_ATTRS: dict[Dimension, str] = {
    Dimension.YEAR: "years",
    Dimension.ADMIN_REGION: "admin_regions",
    Dimension.MRC: "mrcs",
    Dimension.MUNICIPALITY: "municipalities",
    Dimension.VEHICLE_CLASS: "vehicle_classes",
    Dimension.VEHICLE_TYPE: "vehicle_types",
    Dimension.MAKE: "makes",
    Dimension.MODEL: "models",
    Dimension.MODEL_YEAR: "model_years",
    Dimension.FUEL_TYPE: "fuel_types",
    Dimension.COLOR: "colors",
    Dimension.AGE_GROUP: "age_groups",
    Dimension.GENDER: "genders",
    Dimension.LICENSE_TYPE: "license_types",
    Dimension.EXPERIENCE_LEVEL: "experience_levels",
}
