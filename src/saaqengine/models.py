"""SQLModel definitions for the dimensional store.

Single source of truth for all table schemas.

Layout:
- Dimension tables (`*_enum`): integer id + unique value, grown by ingestion,
  never mutated or deleted.
- Fact tables (`vehicles`, `licenses`): one row per entity-year, dimension
  foreign keys plus integer measures.
- Regularization: curated mapping table and the derived canonical hierarchy
  cache.
- Engine state: generation stamps and the import log.
"""

from enum import Enum

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

# ============================================================================
# ENUMS
# ============================================================================


class EntityScope(str, Enum):
    """Which fact table a cache snapshot, filter or import targets."""

    VEHICLE = "vehicle"
    LICENSE = "license"


class GenerationKind(str, Enum):
    """What a published generation stamp tracks."""

    DATA = "data"
    MAPPINGS = "mappings"


class ImportStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"  # some rows skipped
    FAILED = "failed"
    CANCELLED = "cancelled"


# ============================================================================
# SHARED DIMENSIONS
# ============================================================================


class YearEnum(SQLModel, table=True):
    __tablename__ = "year_enum"

    id: int | None = Field(default=None, primary_key=True)
    year: int = Field(unique=True, index=True)


class AdminRegionEnum(SQLModel, table=True):
    __tablename__ = "admin_region_enum"

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)
    name: str


class MrcEnum(SQLModel, table=True):
    """Regional county municipality (MRC)."""

    __tablename__ = "mrc_enum"

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)
    name: str


class MunicipalityEnum(SQLModel, table=True):
    """Municipality; name equals code until geographic names are registered."""

    __tablename__ = "municipality_enum"

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)
    name: str


# ============================================================================
# VEHICLE DIMENSIONS
# ============================================================================


class VehicleClassEnum(SQLModel, table=True):
    """Usage classification (PAU, CAU, ...)."""

    __tablename__ = "vehicle_class_enum"

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)
    description: str | None = None


class VehicleTypeEnum(SQLModel, table=True):
    """Physical vehicle type (AU, CA, MC, ...)."""

    __tablename__ = "vehicle_type_enum"

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)
    description: str | None = None


class MakeEnum(SQLModel, table=True):
    __tablename__ = "make_enum"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)


class ModelEnum(SQLModel, table=True):
    """Model names are scoped by make: the same spelling under two makes is two rows."""

    __tablename__ = "model_enum"
    __table_args__ = (UniqueConstraint("name", "make_id", name="uq_model_name_make"),)

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    make_id: int = Field(foreign_key="make_enum.id", index=True)


class ModelYearEnum(SQLModel, table=True):
    __tablename__ = "model_year_enum"

    id: int | None = Field(default=None, primary_key=True)
    year: int = Field(unique=True, index=True)


class FuelTypeEnum(SQLModel, table=True):
    __tablename__ = "fuel_type_enum"

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)
    description: str | None = None


class ColorEnum(SQLModel, table=True):
    __tablename__ = "color_enum"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True, index=True)


class CylinderCountEnum(SQLModel, table=True):
    __tablename__ = "cylinder_count_enum"

    id: int | None = Field(default=None, primary_key=True)
    count: int = Field(unique=True, index=True)


class AxleCountEnum(SQLModel, table=True):
    __tablename__ = "axle_count_enum"

    id: int | None = Field(default=None, primary_key=True)
    count: int = Field(unique=True, index=True)


# ============================================================================
# LICENSE DIMENSIONS
# ============================================================================


class AgeGroupEnum(SQLModel, table=True):
    __tablename__ = "age_group_enum"

    id: int | None = Field(default=None, primary_key=True)
    range_text: str = Field(unique=True, index=True)


class GenderEnum(SQLModel, table=True):
    __tablename__ = "gender_enum"

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True)
    description: str | None = None


class LicenseTypeEnum(SQLModel, table=True):
    __tablename__ = "license_type_enum"

    id: int | None = Field(default=None, primary_key=True)
    type_name: str = Field(unique=True, index=True)
    description: str | None = None


class ExperienceLevelEnum(SQLModel, table=True):
    __tablename__ = "experience_level_enum"

    id: int | None = Field(default=None, primary_key=True)
    level_text: str = Field(unique=True, index=True)


# ============================================================================
# FACT TABLES
# ============================================================================


class Vehicle(SQLModel, table=True):
    """One registered vehicle in one year."""

    __tablename__ = "vehicles"
    __table_args__ = (UniqueConstraint("year_id", "vehicle_sequence", name="uq_vehicle_year_seq"),)

    id: int | None = Field(default=None, primary_key=True)
    year_id: int = Field(foreign_key="year_enum.id", index=True)
    vehicle_sequence: str
    vehicle_class_id: int | None = Field(default=None, foreign_key="vehicle_class_enum.id", index=True)
    vehicle_type_id: int | None = Field(default=None, foreign_key="vehicle_type_enum.id", index=True)
    make_id: int | None = Field(default=None, foreign_key="make_enum.id", index=True)
    model_id: int | None = Field(default=None, foreign_key="model_enum.id", index=True)
    model_year_id: int | None = Field(default=None, foreign_key="model_year_enum.id", index=True)
    fuel_type_id: int | None = Field(default=None, foreign_key="fuel_type_enum.id", index=True)
    admin_region_id: int | None = Field(default=None, foreign_key="admin_region_enum.id", index=True)
    mrc_id: int | None = Field(default=None, foreign_key="mrc_enum.id", index=True)
    municipality_id: int | None = Field(default=None, foreign_key="municipality_enum.id", index=True)
    cylinder_count_id: int | None = Field(default=None, foreign_key="cylinder_count_enum.id", index=True)
    axle_count_id: int | None = Field(default=None, foreign_key="axle_count_enum.id", index=True)
    original_color_id: int | None = Field(default=None, foreign_key="color_enum.id", index=True)
    net_mass_int: int | None = None  # kg
    displacement_int: int | None = None  # cm³
    max_axles: int | None = Field(default=None, index=True)


class License(SQLModel, table=True):
    """One license holder in one year."""

    __tablename__ = "licenses"
    __table_args__ = (UniqueConstraint("year_id", "license_sequence", name="uq_license_year_seq"),)

    id: int | None = Field(default=None, primary_key=True)
    year_id: int = Field(foreign_key="year_enum.id", index=True)
    license_sequence: str
    age_group_id: int | None = Field(default=None, foreign_key="age_group_enum.id", index=True)
    gender_id: int | None = Field(default=None, foreign_key="gender_enum.id", index=True)
    admin_region_id: int | None = Field(default=None, foreign_key="admin_region_enum.id", index=True)
    mrc_id: int | None = Field(default=None, foreign_key="mrc_enum.id", index=True)
    license_type_id: int | None = Field(default=None, foreign_key="license_type_enum.id", index=True)
    has_learner_permit_123: bool = False
    has_learner_permit_5: bool = False
    has_learner_permit_6a6r: bool = False
    has_driver_license_1234: bool = False
    has_driver_license_5: bool = False
    has_driver_license_6abce: bool = False
    has_driver_license_6d: bool = False
    has_driver_license_8: bool = False
    is_probationary: bool = False
    experience_1234_id: int | None = Field(default=None, foreign_key="experience_level_enum.id", index=True)
    experience_5_id: int | None = Field(default=None, foreign_key="experience_level_enum.id", index=True)
    experience_6abce_id: int | None = Field(default=None, foreign_key="experience_level_enum.id", index=True)
    experience_global_id: int | None = Field(default=None, foreign_key="experience_level_enum.id", index=True)


# ============================================================================
# REGULARIZATION
# ============================================================================


class MakeModelRegularization(SQLModel, table=True):
    """Curated mapping from an uncurated make/model spelling to a canonical one.

    A NULL model_year_id is a wildcard (pair-level) mapping; a non-NULL one is a
    triplet mapping that may also pin the fuel type for that model year.
    """

    __tablename__ = "make_model_regularization"
    __table_args__ = (
        UniqueConstraint(
            "uncurated_make_id",
            "uncurated_model_id",
            "model_year_id",
            name="uq_regularization_triplet",
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    uncurated_make_id: int = Field(foreign_key="make_enum.id", index=True)
    uncurated_model_id: int = Field(foreign_key="model_enum.id", index=True)
    model_year_id: int | None = Field(default=None, foreign_key="model_year_enum.id", index=True)
    canonical_make_id: int = Field(foreign_key="make_enum.id", index=True)
    canonical_model_id: int = Field(foreign_key="model_enum.id", index=True)
    fuel_type_id: int | None = Field(default=None, foreign_key="fuel_type_enum.id")
    vehicle_type_id: int | None = Field(default=None, foreign_key="vehicle_type_enum.id")
    record_count: int = 0
    year_range_start: int | None = None
    year_range_end: int | None = None
    created_date: float | None = None


class CanonicalHierarchyCache(SQLModel, table=True):
    """Materialized (make, model, model year, fuel, type) counts over curated years.

    Rows are keyed by cache_key, a hash of the curated years and the mapping
    version they were computed under. Derivable; safe to drop.
    """

    __tablename__ = "canonical_hierarchy_cache"

    id: int | None = Field(default=None, primary_key=True)
    cache_key: str = Field(index=True)
    make_id: int
    model_id: int
    model_year_id: int | None = None
    fuel_type_id: int | None = None
    vehicle_type_id: int | None = None
    record_count: int = 0


# ============================================================================
# ENGINE STATE
# ============================================================================


class EngineState(SQLModel, table=True):
    """Generation stamps (singleton row, id=1)."""

    __tablename__ = "engine_state"

    id: int = Field(default=1, primary_key=True)
    data_generation: int = 0
    mapping_version: int = 0
    updated_at: float | None = None


class Generation(SQLModel, table=True):
    """Append-only log of published generation stamps."""

    __tablename__ = "generations"

    id: int | None = Field(default=None, primary_key=True)
    kind: str = Field(index=True)  # GenerationKind value
    generation: int
    published_at: float
    detail: str | None = None


class ImportLog(SQLModel, table=True):
    """One row per imported batch."""

    __tablename__ = "import_log"

    id: int | None = Field(default=None, primary_key=True)
    file_name: str | None = None
    year: int = Field(index=True)
    entity: str  # EntityScope value
    record_count: int = 0
    error_count: int = 0
    status: str = ImportStatus.COMPLETED.value
    imported_at: float | None = None


# ============================================================================
# TABLE GROUPS
# ============================================================================

DIMENSION_TABLES: tuple[type[SQLModel], ...] = (
    YearEnum,
    AdminRegionEnum,
    MrcEnum,
    MunicipalityEnum,
    VehicleClassEnum,
    VehicleTypeEnum,
    MakeEnum,
    ModelEnum,
    ModelYearEnum,
    FuelTypeEnum,
    ColorEnum,
    CylinderCountEnum,
    AxleCountEnum,
    AgeGroupEnum,
    GenderEnum,
    LicenseTypeEnum,
    ExperienceLevelEnum,
)

FACT_TABLES: tuple[type[SQLModel], ...] = (Vehicle, License)
