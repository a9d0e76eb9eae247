"""Tests for the dimensional schema: id allocation, seeds and index checks."""

from __future__ import annotations

import pytest
from sqlalchemy import text

from saaqengine.core.errors import ErrorCode, SchemaError
from saaqengine.dimensions.registry import Dimension, dimensions_for, get_spec
from saaqengine.dimensions.schema import DimensionSchema, normalize_value
from saaqengine.models import EntityScope
from saaqengine.store.database import Database


class TestRegistry:
    def test_unknown_dimension(self) -> None:
        with pytest.raises(SchemaError) as exc_info:
            get_spec("paint_finish")
        assert exc_info.value.code is ErrorCode.SCHEMA_UNKNOWN_DIMENSION

    def test_scopes(self) -> None:
        vehicle = {s.dimension for s in dimensions_for(EntityScope.VEHICLE)}
        license_ = {s.dimension for s in dimensions_for(EntityScope.LICENSE)}

        assert Dimension.MODEL in vehicle and Dimension.MODEL not in license_
        assert Dimension.GENDER in license_ and Dimension.GENDER not in vehicle
        assert Dimension.ADMIN_REGION in vehicle & license_

    @pytest.mark.parametrize(
        ("dimension", "raw", "expected"),
        [
            (Dimension.MAKE, "  HONDA ", "HONDA"),
            (Dimension.MODEL_YEAR, "2018", 2018),
            (Dimension.CYLINDER_COUNT, 6, 6),
        ],
    )
    def test_normalize_value(self, dimension: Dimension, raw: object, expected: object) -> None:
        assert normalize_value(get_spec(dimension), raw) == expected

    @pytest.mark.parametrize(
        ("dimension", "raw"),
        [(Dimension.MAKE, "   "), (Dimension.MODEL_YEAR, "20x8"), (Dimension.COLOR, None)],
    )
    def test_normalize_rejects(self, dimension: Dimension, raw: object) -> None:
        with pytest.raises(SchemaError):
            normalize_value(get_spec(dimension), raw)


class TestDimensionSchema:
    def test_create_is_idempotent_and_seeds_once(self, temp_db: Database) -> None:
        schema = DimensionSchema(temp_db)
        before = schema.count(Dimension.FUEL_TYPE)

        schema.create()

        assert before > 0
        assert schema.count(Dimension.FUEL_TYPE) == before

    def test_seeded_codes_have_descriptions(self, temp_db: Database) -> None:
        rows = temp_db.execute_raw("SELECT description FROM fuel_type_enum WHERE code = 'E'")
        assert rows[0][0] == "Gasoline"

    def test_get_or_create_returns_stable_ids(self, temp_db: Database) -> None:
        schema = DimensionSchema(temp_db)

        first = schema.get_or_create_id(Dimension.MAKE, "HONDA")
        second = schema.get_or_create_id(Dimension.MAKE, " HONDA ")

        assert first == second
        assert schema.lookup_value(Dimension.MAKE, first) == "HONDA"

    def test_models_are_scoped_by_make(self, temp_db: Database) -> None:
        schema = DimensionSchema(temp_db)
        honda = schema.get_or_create_id(Dimension.MAKE, "HONDA")
        acura = schema.get_or_create_id(Dimension.MAKE, "ACURA")

        honda_mdx = schema.get_or_create_id(Dimension.MODEL, "MDX", parent_id=honda)
        acura_mdx = schema.get_or_create_id(Dimension.MODEL, "MDX", parent_id=acura)

        assert honda_mdx != acura_mdx
        assert schema.lookup_id(Dimension.MODEL, "MDX", parent_id=acura) == acura_mdx

    def test_model_without_make_rejected(self, temp_db: Database) -> None:
        with pytest.raises(SchemaError, match="parent id"):
            DimensionSchema(temp_db).get_or_create_id(Dimension.MODEL, "CIVIC")

    def test_writer_counts_new_values(self, temp_db: Database) -> None:
        schema = DimensionSchema(temp_db)
        with temp_db.bulk_writer() as bulk:
            dims = schema.writer(bulk)
            dims.get_or_create_id(Dimension.COLOR, "BLEU")
            dims.get_or_create_id(Dimension.COLOR, "BLEU")
            dims.get_or_create_id(Dimension.FUEL_TYPE, "E")

        assert dims.created == {Dimension.COLOR: 1}

    def test_register_geography_renames(self, temp_db: Database) -> None:
        schema = DimensionSchema(temp_db)
        mrc_id = schema.register_geography(Dimension.MRC, "66", "Montreal")

        assert schema.register_geography(Dimension.MRC, "66", "Montréal") == mrc_id
        rows = temp_db.execute_raw("SELECT name FROM mrc_enum WHERE id = :id", {"id": mrc_id})
        assert rows[0][0] == "Montréal"

    def test_register_geography_rejects_other_dimensions(self, temp_db: Database) -> None:
        with pytest.raises(SchemaError):
            DimensionSchema(temp_db).register_geography(Dimension.MAKE, "X", "Y")

    def test_lookup_missing_value(self, temp_db: Database) -> None:
        assert DimensionSchema(temp_db).lookup_id(Dimension.MAKE, "DELOREAN") is None


class TestIndexVerification:
    def test_fresh_schema_passes(self, temp_db: Database) -> None:
        DimensionSchema(temp_db).verify_indexes()

    def test_missing_foreign_key_index_fails(self, temp_db: Database) -> None:
        with temp_db.engine.connect() as conn:
            conn.execute(text("DROP INDEX ix_vehicles_original_color_id"))
            conn.commit()

        with pytest.raises(SchemaError) as exc_info:
            DimensionSchema(temp_db).verify_indexes()

        assert exc_info.value.code is ErrorCode.SCHEMA_MISSING_INDEX
        assert exc_info.value.details == {"table": "vehicles", "column": "original_color_id"}
