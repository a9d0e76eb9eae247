"""Dimension registry: one entry per integer-enumerated categorical field."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from sqlmodel import SQLModel

from saaqengine.core.errors import SchemaError
from saaqengine.models import (
    AdminRegionEnum,
    AgeGroupEnum,
    AxleCountEnum,
    ColorEnum,
    CylinderCountEnum,
    EntityScope,
    ExperienceLevelEnum,
    FuelTypeEnum,
    GenderEnum,
    LicenseTypeEnum,
    MakeEnum,
    ModelEnum,
    ModelYearEnum,
    MrcEnum,
    MunicipalityEnum,
    VehicleClassEnum,
    VehicleTypeEnum,
    YearEnum,
)


class Dimension(str, Enum):
    YEAR = "year"
    ADMIN_REGION = "admin_region"
    MRC = "mrc"
    MUNICIPALITY = "municipality"
    VEHICLE_CLASS = "vehicle_class"
    VEHICLE_TYPE = "vehicle_type"
    MAKE = "make"
    MODEL = "model"
    MODEL_YEAR = "model_year"
    FUEL_TYPE = "fuel_type"
    COLOR = "color"
    CYLINDER_COUNT = "cylinder_count"
    AXLE_COUNT = "axle_count"
    AGE_GROUP = "age_group"
    GENDER = "gender"
    LICENSE_TYPE = "license_type"
    EXPERIENCE_LEVEL = "experience_level"


_BOTH = frozenset({EntityScope.VEHICLE, EntityScope.LICENSE})
_VEHICLE = frozenset({EntityScope.VEHICLE})
_LICENSE = frozenset({EntityScope.LICENSE})


@dataclass(frozen=True)
class DimensionSpec:
    """How a dimension is stored.

    value_column holds the unique value (code, name or number); label_column,
    when set, holds a human description that is not part of the identity.
    """

    dimension: Dimension
    model: type[SQLModel]
    value_column: str
    scopes: frozenset[EntityScope]
    label_column: str | None = None
    parent_column: str | None = None
    numeric: bool = False
    label_required: bool = False

    @property
    def table(self) -> str:
        return self.model.__tablename__  # type: ignore[attr-defined,return-value]

    def applies_to(self, scope: EntityScope) -> bool:
        return scope in self.scopes


DIMENSIONS: dict[Dimension, DimensionSpec] = {
    spec.dimension: spec
    for spec in (
        DimensionSpec(Dimension.YEAR, YearEnum, "year", _BOTH, numeric=True),
        DimensionSpec(
            Dimension.ADMIN_REGION, AdminRegionEnum, "code", _BOTH, "name", label_required=True
        ),
        DimensionSpec(Dimension.MRC, MrcEnum, "code", _BOTH, "name", label_required=True),
        DimensionSpec(
            Dimension.MUNICIPALITY, MunicipalityEnum, "code", _BOTH, "name", label_required=True
        ),
        DimensionSpec(Dimension.VEHICLE_CLASS, VehicleClassEnum, "code", _VEHICLE, "description"),
        DimensionSpec(Dimension.VEHICLE_TYPE, VehicleTypeEnum, "code", _VEHICLE, "description"),
        DimensionSpec(Dimension.MAKE, MakeEnum, "name", _VEHICLE),
        DimensionSpec(Dimension.MODEL, ModelEnum, "name", _VEHICLE, parent_column="make_id"),
        DimensionSpec(Dimension.MODEL_YEAR, ModelYearEnum, "year", _VEHICLE, numeric=True),
        DimensionSpec(Dimension.FUEL_TYPE, FuelTypeEnum, "code", _VEHICLE, "description"),
        DimensionSpec(Dimension.COLOR, ColorEnum, "name", _VEHICLE),
        DimensionSpec(Dimension.CYLINDER_COUNT, CylinderCountEnum, "count", _VEHICLE, numeric=True),
        DimensionSpec(Dimension.AXLE_COUNT, AxleCountEnum, "count", _VEHICLE, numeric=True),
        DimensionSpec(Dimension.AGE_GROUP, AgeGroupEnum, "range_text", _LICENSE),
        DimensionSpec(Dimension.GENDER, GenderEnum, "code", _LICENSE, "description"),
        DimensionSpec(Dimension.LICENSE_TYPE, LicenseTypeEnum, "type_name", _LICENSE, "description"),
        DimensionSpec(Dimension.EXPERIENCE_LEVEL, ExperienceLevelEnum, "level_text", _LICENSE),
    )
}


def get_spec(dimension: Dimension | str) -> DimensionSpec:
    """Look up a dimension by enum member or name."""
    try:
        return DIMENSIONS[Dimension(dimension)]
    except ValueError as e:
        raise SchemaError.unknown_dimension(str(dimension)) from e


def dimensions_for(scope: EntityScope) -> list[DimensionSpec]:
    """Dimensions a cache snapshot of this scope loads."""
    return [spec for spec in DIMENSIONS.values() if spec.applies_to(scope)]
