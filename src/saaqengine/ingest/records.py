"""Raw SAAQ records: field parsing for vehicle and license rows.

A raw row is a mapping of SAAQ column names to strings (as read from the
open-data CSV files). Empty strings and missing keys both mean "unknown".
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from saaqengine.config.constants import UNKNOWN_CLASSIFICATION
from saaqengine.core.errors import RecordError
from saaqengine.dimensions.labels import extract_code, strip_trailing_code

RawRow = Mapping[str, Any]

MIN_MODEL_YEAR = 1900
MAX_MODEL_YEAR = 2100

_TRUE = frozenset({"OUI", "O", "1", "TRUE", "T", "Y", "YES"})
_FALSE = frozenset({"NON", "N", "0", "FALSE", "F", "NO"})


@dataclass(frozen=True)
class RowError:
    """One skipped row of an import."""

    row: int
    field: str | None
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"row": self.row, "field": self.field, "message": self.message}


@dataclass(frozen=True)
class GeoRef:
    """A geographic value as found in a record: "Montréal (06)" -> code 06."""

    code: str
    name: str

    @classmethod
    def parse(cls, raw: str) -> GeoRef:
        code = extract_code(raw)
        if code is None:
            return cls(code=raw, name=raw)
        name = strip_trailing_code(raw)
        return cls(code=code, name=name or code)


# ============================================================================
# FIELD HELPERS
# ============================================================================


def _text(raw: RawRow, key: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _number(raw: RawRow, key: str) -> float | None:
    value = _text(raw, key)
    if value is None:
        return None
    try:
        # French exports use a decimal comma.
        return float(value.replace(",", "."))
    except ValueError as e:
        raise RecordError.invalid_field(key, value, "not a number") from e


def _int(raw: RawRow, key: str, *, minimum: int = 0) -> int | None:
    number = _number(raw, key)
    if number is None:
        return None
    if number != int(number):
        raise RecordError.invalid_field(key, raw.get(key), "not an integer")
    value = int(number)
    if value < minimum:
        raise RecordError.invalid_field(key, value, f"must be at least {minimum}")
    return value


def _rounded(raw: RawRow, key: str) -> int | None:
    number = _number(raw, key)
    if number is None:
        return None
    if number < 0:
        raise RecordError.invalid_field(key, number, "must not be negative")
    return round(number)


def _flag(raw: RawRow, key: str) -> bool:
    value = _text(raw, key)
    if value is None:
        return False
    upper = value.upper()
    if upper in _TRUE:
        return True
    if upper in _FALSE:
        return False
    raise RecordError.invalid_field(key, value, "expected OUI or NON")


def _geo(raw: RawRow, key: str) -> GeoRef | None:
    value = _text(raw, key)
    return GeoRef.parse(value) if value is not None else None


# ============================================================================
# RECORDS
# ============================================================================


@dataclass(frozen=True)
class VehicleRecord:
    sequence: str
    vehicle_class: str
    vehicle_type: str | None = None
    make: str | None = None
    model: str | None = None
    model_year: int | None = None
    net_mass: int | None = None
    cylinder_count: int | None = None
    displacement: int | None = None
    max_axles: int | None = None
    color: str | None = None
    fuel_type: str | None = None
    admin_region: GeoRef | None = None
    mrc: GeoRef | None = None
    municipality: str | None = None

    @classmethod
    def from_raw(cls, raw: RawRow, *, year: int | None = None) -> VehicleRecord:
        """Parse one vehicle row.

        A missing sequence number becomes "<year>_UNKNOWN" when the year is
        given; a missing class becomes "UNK".

        Raises:
            RecordError: a field that is present but malformed.
        """
        sequence = _text(raw, "NOSEQ_VEH")
        if sequence is None:
            if year is None:
                raise RecordError.invalid_field("NOSEQ_VEH", None, "sequence number is missing")
            sequence = f"{year}_UNKNOWN"

        model_year = _int(raw, "ANNEE_MOD")
        if model_year is not None and not MIN_MODEL_YEAR <= model_year <= MAX_MODEL_YEAR:
            raise RecordError.invalid_field(
                "ANNEE_MOD", model_year, f"outside {MIN_MODEL_YEAR}-{MAX_MODEL_YEAR}"
            )

        make = _text(raw, "MARQ_VEH")
        model = _text(raw, "MODEL_VEH")
        if model is not None and make is None:
            raise RecordError.invalid_field("MODEL_VEH", model, "model given without a make")

        return cls(
            sequence=sequence,
            vehicle_class=_text(raw, "CLAS") or UNKNOWN_CLASSIFICATION,
            vehicle_type=_text(raw, "TYP_VEH_CATEG_USA"),
            make=make,
            model=model,
            model_year=model_year,
            net_mass=_rounded(raw, "MASSE_NETTE"),
            cylinder_count=_int(raw, "NB_CYL"),
            displacement=_rounded(raw, "CYL_VEH"),
            max_axles=_int(raw, "NB_ESIEU_MAX", minimum=1),
            color=_text(raw, "COUL_ORIG"),
            fuel_type=_text(raw, "TYP_CARBU"),
            admin_region=_geo(raw, "REG_ADM"),
            mrc=_geo(raw, "MRC"),
            municipality=_text(raw, "CG_FIXE"),
        )


LICENSE_FLAGS: dict[str, str] = {
    "IND_PERMISAPPRENTI_123": "has_learner_permit_123",
    "IND_PERMISAPPRENTI_5": "has_learner_permit_5",
    "IND_PERMISAPPRENTI_6A6R": "has_learner_permit_6a6r",
    "IND_PERMISCONDUIRE_1234": "has_driver_license_1234",
    "IND_PERMISCONDUIRE_5": "has_driver_license_5",
    "IND_PERMISCONDUIRE_6ABCE": "has_driver_license_6abce",
    "IND_PERMISCONDUIRE_6D": "has_driver_license_6d",
    "IND_PERMISCONDUIRE_8": "has_driver_license_8",
    "IND_PROBATOIRE": "is_probationary",
}

LICENSE_EXPERIENCE: dict[str, str] = {
    "EXPERIENCE_1234": "experience_1234_id",
    "EXPERIENCE_5": "experience_5_id",
    "EXPERIENCE_6ABCE": "experience_6abce_id",
    "EXPERIENCE_GLOBALE": "experience_global_id",
}


@dataclass(frozen=True)
class LicenseRecord:
    sequence: str
    age_group: str | None = None
    gender: str | None = None
    admin_region: GeoRef | None = None
    mrc: GeoRef | None = None
    license_type: str | None = None
    flags: Mapping[str, bool] | None = None
    experience: Mapping[str, str | None] | None = None

    @classmethod
    def from_raw(cls, raw: RawRow, *, year: int | None = None) -> LicenseRecord:
        """Parse one license holder row.

        flags is keyed by fact column; experience by the fact column of the
        experience level id.

        Raises:
            RecordError: missing sequence number or a malformed indicator.
        """
        sequence = _text(raw, "NOSEQ_TITUL")
        if sequence is None:
            if year is None:
                raise RecordError.invalid_field("NOSEQ_TITUL", None, "sequence number is missing")
            sequence = f"{year}_UNKNOWN"

        return cls(
            sequence=sequence,
            age_group=_text(raw, "AGE_1ER_JUIN"),
            gender=_text(raw, "SEXE"),
            admin_region=_geo(raw, "REG_ADM"),
            mrc=_geo(raw, "MRC"),
            license_type=_text(raw, "TYPE_PERMIS"),
            flags={column: _flag(raw, key) for key, column in LICENSE_FLAGS.items()},
            experience={column: _text(raw, key) for key, column in LICENSE_EXPERIENCE.items()},
        )
