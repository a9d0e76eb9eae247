"""Tests for raw record parsing."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from saaqengine.core.errors import ErrorCode, RecordError
from saaqengine.ingest.records import GeoRef, LicenseRecord, RowError, VehicleRecord


class TestVehicleRecord:
    def test_full_row(self, make_vehicle_row: Callable[..., dict[str, Any]]) -> None:
        record = VehicleRecord.from_raw(make_vehicle_row("A00001"), year=2020)

        assert record.sequence == "A00001"
        assert record.vehicle_class == "PAU"
        assert record.make == "HONDA"
        assert record.model == "CR-V"
        assert record.model_year == 2018
        assert record.net_mass == 1500
        assert record.cylinder_count == 4
        assert record.max_axles == 2
        assert record.admin_region == GeoRef(code="06", name="Montréal")
        assert record.mrc == GeoRef(code="66", name="Montréal")
        assert record.municipality == "66023"

    def test_decimal_comma_is_rounded(self, make_vehicle_row: Callable[..., dict[str, Any]]) -> None:
        record = VehicleRecord.from_raw(make_vehicle_row("A1", MASSE_NETTE="1500,6", CYL_VEH="1998.4"))
        assert record.net_mass == 1501
        assert record.displacement == 1998

    def test_blank_fields_are_unknown(self, make_vehicle_row: Callable[..., dict[str, Any]]) -> None:
        record = VehicleRecord.from_raw(
            make_vehicle_row("A1", CLAS="", TYP_CARBU="  ", MASSE_NETTE="", COUL_ORIG=None)
        )
        assert record.vehicle_class == "UNK"
        assert record.fuel_type is None
        assert record.net_mass is None
        assert record.color is None

    def test_missing_sequence_uses_year(self, make_vehicle_row: Callable[..., dict[str, Any]]) -> None:
        record = VehicleRecord.from_raw(make_vehicle_row(""), year=2023)
        assert record.sequence == "2023_UNKNOWN"

    def test_missing_sequence_without_year_raises(self, make_vehicle_row: Callable[..., dict[str, Any]]) -> None:
        with pytest.raises(RecordError) as exc_info:
            VehicleRecord.from_raw(make_vehicle_row(""))
        assert exc_info.value.details["field"] == "NOSEQ_VEH"

    @pytest.mark.parametrize(
        ("fields", "field"),
        [
            ({"ANNEE_MOD": "abc"}, "ANNEE_MOD"),
            ({"ANNEE_MOD": "1850"}, "ANNEE_MOD"),
            ({"ANNEE_MOD": "2018.5"}, "ANNEE_MOD"),
            ({"MASSE_NETTE": "-10"}, "MASSE_NETTE"),
            ({"NB_ESIEU_MAX": "0"}, "NB_ESIEU_MAX"),
            ({"NB_CYL": "4,5"}, "NB_CYL"),
            ({"MARQ_VEH": ""}, "MODEL_VEH"),
        ],
    )
    def test_malformed_field(
        self,
        make_vehicle_row: Callable[..., dict[str, Any]],
        fields: dict[str, str],
        field: str,
    ) -> None:
        with pytest.raises(RecordError) as exc_info:
            VehicleRecord.from_raw(make_vehicle_row("A1", **fields))
        assert exc_info.value.code is ErrorCode.INGEST_INVALID_RECORD
        assert exc_info.value.details["field"] == field

    def test_make_without_model_is_allowed(self, make_vehicle_row: Callable[..., dict[str, Any]]) -> None:
        record = VehicleRecord.from_raw(make_vehicle_row("A1", model=None))
        assert record.make == "HONDA"
        assert record.model is None


class TestLicenseRecord:
    def test_flags_and_experience(self, make_license_row: Callable[..., dict[str, Any]]) -> None:
        record = LicenseRecord.from_raw(make_license_row("L1"))

        assert record.sequence == "L1"
        assert record.age_group == "25-34"
        assert record.admin_region == GeoRef(code="13", name="Laval")
        assert record.flags is not None
        assert record.flags["has_driver_license_5"] is True
        assert record.flags["is_probationary"] is False
        # Absent indicators read as "no".
        assert record.flags["has_driver_license_8"] is False
        assert record.experience is not None
        assert record.experience["experience_global_id"] == "10 ans ou plus"
        assert record.experience["experience_5_id"] is None

    def test_flag_spellings(self, make_license_row: Callable[..., dict[str, Any]]) -> None:
        record = LicenseRecord.from_raw(make_license_row("L1", IND_PROBATOIRE="o", IND_PERMISCONDUIRE_5="0"))
        assert record.flags is not None
        assert record.flags["is_probationary"] is True
        assert record.flags["has_driver_license_5"] is False

    def test_bad_flag(self, make_license_row: Callable[..., dict[str, Any]]) -> None:
        with pytest.raises(RecordError, match="expected OUI or NON"):
            LicenseRecord.from_raw(make_license_row("L1", IND_PROBATOIRE="PEUT-ETRE"))

    def test_missing_sequence(self, make_license_row: Callable[..., dict[str, Any]]) -> None:
        assert LicenseRecord.from_raw(make_license_row(""), year=2022).sequence == "2022_UNKNOWN"
        with pytest.raises(RecordError):
            LicenseRecord.from_raw(make_license_row(""))


class TestGeoRef:
    @pytest.mark.parametrize(
        ("raw", "code", "name"),
        [
            ("Montréal (06)", "06", "Montréal"),
            ("Laval (65 )", "65", "Laval"),
            ("66023", "66023", "66023"),
        ],
    )
    def test_parse(self, raw: str, code: str, name: str) -> None:
        assert GeoRef.parse(raw) == GeoRef(code=code, name=name)


def test_row_error_to_dict() -> None:
    assert RowError(row=3, field="ANNEE_MOD", message="not a number").to_dict() == {
        "row": 3,
        "field": "ANNEE_MOD",
        "message": "not a number",
    }
