"""Metric definitions: what a query aggregates per year."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from saaqengine.core.errors import QueryValidationError
from saaqengine.models import EntityScope

if TYPE_CHECKING:
    from saaqengine.query.filters import FilterSpec

MODEL_YEAR_JOIN = "LEFT JOIN model_year_enum my ON v.model_year_id = my.id"
CYLINDER_JOIN = "LEFT JOIN cylinder_count_enum cc ON v.cylinder_count_id = cc.id"


class MetricType(str, Enum):
    COUNT = "count"
    SUM = "sum"
    AVERAGE = "average"
    MEDIAN = "median"
    MINIMUM = "minimum"
    MAXIMUM = "maximum"
    PERCENTAGE = "percentage"
    COVERAGE = "coverage"
    ROAD_WEAR_INDEX = "road_wear_index"

    @property
    def needs_field(self) -> bool:
        return self in _MEASURE_METRICS


_MEASURE_METRICS = frozenset(
    {MetricType.SUM, MetricType.AVERAGE, MetricType.MEDIAN, MetricType.MINIMUM, MetricType.MAXIMUM}
)

_AGGREGATES = {
    MetricType.SUM: "SUM",
    MetricType.AVERAGE: "AVG",
    MetricType.MINIMUM: "MIN",
    MetricType.MAXIMUM: "MAX",
}


def aggregate_function(metric: MetricType) -> str:
    return _AGGREGATES[metric]


class MeasureField(str, Enum):
    """Numeric vehicle measures (expression, join it needs, unit)."""

    NET_MASS = "net_mass"
    DISPLACEMENT = "displacement"
    CYLINDER_COUNT = "cylinder_count"
    VEHICLE_AGE = "vehicle_age"
    MODEL_YEAR = "model_year"

    @property
    def expression(self) -> str:
        return _MEASURES[self][0]

    @property
    def join(self) -> str | None:
        return _MEASURES[self][1]

    @property
    def unit(self) -> str | None:
        return _MEASURES[self][2]


_MEASURES: dict[MeasureField, tuple[str, str | None, str | None]] = {
    MeasureField.NET_MASS: ("v.net_mass_int", None, "kg"),
    MeasureField.DISPLACEMENT: ("v.displacement_int", None, "cm³"),
    MeasureField.CYLINDER_COUNT: ("cc.count", CYLINDER_JOIN, None),
    MeasureField.VEHICLE_AGE: ("(y.year - my.year)", MODEL_YEAR_JOIN, "years"),
    MeasureField.MODEL_YEAR: ("my.year", MODEL_YEAR_JOIN, None),
}


class CoverageField(str, Enum):
    """Columns whose non-null share a coverage metric reports."""

    NET_MASS = "net_mass"
    DISPLACEMENT = "displacement"
    CYLINDER_COUNT = "cylinder_count"
    MODEL_YEAR = "model_year"
    FUEL_TYPE = "fuel_type"
    VEHICLE_TYPE = "vehicle_type"
    VEHICLE_CLASS = "vehicle_class"
    MAKE = "make"
    MODEL = "model"
    COLOR = "color"
    AXLE_COUNT = "axle_count"
    VEHICLE_MRC = "vehicle_mrc"
    VEHICLE_MUNICIPALITY = "vehicle_municipality"
    AGE_GROUP = "age_group"
    GENDER = "gender"
    LICENSE_TYPE = "license_type"
    LICENSE_MRC = "license_mrc"
    EXPERIENCE_GLOBAL = "experience_global"

    @property
    def column(self) -> str:
        return _COVERAGE[self][0]

    @property
    def scope(self) -> EntityScope:
        return _COVERAGE[self][1]


_V, _L = EntityScope.VEHICLE, EntityScope.LICENSE
_COVERAGE: dict[CoverageField, tuple[str, EntityScope]] = {
    CoverageField.NET_MASS: ("v.net_mass_int", _V),
    CoverageField.DISPLACEMENT: ("v.displacement_int", _V),
    CoverageField.CYLINDER_COUNT: ("v.cylinder_count_id", _V),
    CoverageField.MODEL_YEAR: ("v.model_year_id", _V),
    CoverageField.FUEL_TYPE: ("v.fuel_type_id", _V),
    CoverageField.VEHICLE_TYPE: ("v.vehicle_type_id", _V),
    CoverageField.VEHICLE_CLASS: ("v.vehicle_class_id", _V),
    CoverageField.MAKE: ("v.make_id", _V),
    CoverageField.MODEL: ("v.model_id", _V),
    CoverageField.COLOR: ("v.original_color_id", _V),
    CoverageField.AXLE_COUNT: ("v.max_axles", _V),
    CoverageField.VEHICLE_MRC: ("v.mrc_id", _V),
    CoverageField.VEHICLE_MUNICIPALITY: ("v.municipality_id", _V),
    CoverageField.AGE_GROUP: ("l.age_group_id", _L),
    CoverageField.GENDER: ("l.gender_id", _L),
    CoverageField.LICENSE_TYPE: ("l.license_type_id", _L),
    CoverageField.LICENSE_MRC: ("l.mrc_id", _L),
    CoverageField.EXPERIENCE_GLOBAL: ("l.experience_global_id", _L),
}


class RWIMode(str, Enum):
    SUM = "sum"
    AVERAGE = "average"
    MEDIAN = "median"


_LICENSE_METRICS = frozenset({MetricType.COUNT, MetricType.PERCENTAGE, MetricType.COVERAGE})


@dataclass(frozen=True)
class MetricSpec:
    """What to compute per year, plus series post-processing.

    baseline: the denominator filter of a percentage metric.
    coverage_as_percentage: coverage as non-null share (True) or raw
        null count (False).
    """

    metric: MetricType = MetricType.COUNT
    field: MeasureField | None = None
    baseline: FilterSpec | None = None
    coverage_field: CoverageField | None = None
    coverage_as_percentage: bool = True
    rwi_mode: RWIMode = RWIMode.AVERAGE
    normalize: bool = False
    cumulative: bool = False
    label: str | None = None

    def validate(self, scope: EntityScope) -> None:
        """Raises QueryValidationError for metric/scope/field combinations that cannot run."""
        if scope is EntityScope.LICENSE and self.metric not in _LICENSE_METRICS:
            raise QueryValidationError.invalid(
                f"{self.metric.value} is not available for license queries",
                metric=self.metric.value,
            )
        if self.metric.needs_field and self.field is None:
            raise QueryValidationError.invalid(f"{self.metric.value} needs a measure field", metric=self.metric.value)
        if self.metric is MetricType.PERCENTAGE:
            if self.baseline is None:
                raise QueryValidationError.invalid("percentage needs a baseline filter")
            if self.baseline.scope is not scope:
                raise QueryValidationError.invalid(
                    "percentage baseline must query the same entity",
                    baseline_scope=self.baseline.scope.value,
                    scope=scope.value,
                )
        if self.metric is MetricType.COVERAGE:
            if self.coverage_field is None:
                raise QueryValidationError.invalid("coverage needs a coverage field")
            if self.coverage_field.scope is not scope:
                raise QueryValidationError.invalid(
                    f"{self.coverage_field.value} is not a {scope.value} field",
                    coverage_field=self.coverage_field.value,
                )

    def describe(self) -> str:
        if self.label:
            return self.label
        if self.metric is MetricType.COVERAGE and self.coverage_field is not None:
            kind = "coverage %" if self.coverage_as_percentage else "missing"
            return f"{self.coverage_field.value} {kind}"
        if self.metric is MetricType.ROAD_WEAR_INDEX:
            return f"road wear index ({self.rwi_mode.value})"
        if self.field is not None and self.metric.needs_field:
            return f"{self.metric.value} of {self.field.value}"
        return self.metric.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric.value,
            "field": self.field.value if self.field else None,
            "coverage_field": self.coverage_field.value if self.coverage_field else None,
            "coverage_as_percentage": self.coverage_as_percentage,
            "rwi_mode": self.rwi_mode.value,
            "normalize": self.normalize,
            "cumulative": self.cumulative,
            "baseline": self.baseline.to_dict() if self.baseline else None,
        }
