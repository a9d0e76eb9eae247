"""Tests for batch ingestion."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any
from unittest.mock import patch

import pytest

from saaqengine.config.models import IngestConfig
from saaqengine.core.errors import ErrorCode, IngestError, StorageError
from saaqengine.dimensions.registry import Dimension
from saaqengine.engine import Engine
from saaqengine.ingest.importer import Importer
from saaqengine.models import EntityScope, ImportStatus
from saaqengine.store.generation import GenerationManager

RowsFactory = Callable[..., list[dict[str, Any]]]


def vehicle_count(engine: Engine, year: int) -> int:
    rows = engine.db.execute_raw(
        "SELECT COUNT(*) FROM vehicles v JOIN year_enum y ON v.year_id = y.id WHERE y.year = :year",
        {"year": year},
    )
    return int(rows[0][0])


def log_statuses(engine: Engine) -> list[str]:
    return [row[0] for row in engine.db.execute_raw("SELECT status FROM import_log ORDER BY id")]


class TestImportBatch:
    def test_inserts_rows_and_allocates_dimensions(self, engine: Engine, make_vehicle_rows: RowsFactory) -> None:
        result = engine.import_batch(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 5), file_name="2020.csv")

        assert result.inserted == 5
        assert result.skipped == 0
        assert result.status is ImportStatus.COMPLETED
        assert result.dimensions_created["make"] == 1
        assert result.dimensions_created["model"] == 1
        # Seeded classification values are reused.
        assert "vehicle_class" not in result.dimensions_created
        assert vehicle_count(engine, 2020) == 5
        assert log_statuses(engine) == ["completed"]

    def test_publish_bumps_data_generation(self, engine: Engine, make_vehicle_rows: RowsFactory) -> None:
        before = engine.generation().data_generation

        result = engine.import_batch(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 2))

        assert result.stamp is not None
        assert result.stamp.data_generation == before + 1
        assert engine.generation().data_generation == before + 1

    def test_failed_generation_bump_discards_rows(
        self, seeded_engine: Engine, make_vehicle_rows: RowsFactory
    ) -> None:
        before = seeded_engine.generation()
        failure = StorageError.io_error("generation_bump", "disk I/O error")

        with (
            patch.object(GenerationManager, "bump", side_effect=failure),
            pytest.raises(IngestError) as exc_info,
        ):
            seeded_engine.import_batch(EntityScope.VEHICLE, 2021, make_vehicle_rows("F", 5, model="FIT"))

        assert exc_info.value.code is ErrorCode.INGEST_BATCH_FAILED
        assert vehicle_count(seeded_engine, 2021) == 0
        assert seeded_engine.generation() == before
        assert seeded_engine.schema.lookup_id(Dimension.YEAR, 2021) is None

    def test_same_value_reuses_id_across_batches(self, engine: Engine, make_vehicle_rows: RowsFactory) -> None:
        engine.import_batch(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 2))
        result = engine.import_batch(EntityScope.VEHICLE, 2023, make_vehicle_rows("B", 2))

        assert "make" not in result.dimensions_created
        assert result.dimensions_created["year"] == 1

    def test_malformed_rows_are_skipped(
        self,
        engine: Engine,
        make_vehicle_rows: RowsFactory,
        make_vehicle_row: Callable[..., dict[str, Any]],
    ) -> None:
        rows = [*make_vehicle_rows("A", 1), make_vehicle_row("A9", ANNEE_MOD="abc"), *make_vehicle_rows("B", 1)]

        result = engine.import_batch(EntityScope.VEHICLE, 2020, rows)

        assert result.inserted == 2
        assert result.skipped == 1
        assert result.status is ImportStatus.PARTIAL
        assert result.errors[0].row == 2
        assert result.errors[0].field == "ANNEE_MOD"
        assert log_statuses(engine) == ["partial"]

    def test_duplicate_sequence_within_batch(
        self, engine: Engine, make_vehicle_row: Callable[..., dict[str, Any]]
    ) -> None:
        result = engine.import_batch(
            EntityScope.VEHICLE, 2020, [make_vehicle_row("A1"), make_vehicle_row("A1", model="CIVIC")]
        )

        assert result.inserted == 1
        assert result.errors[0].message.endswith("duplicate within the batch")

    def test_row_errors_are_capped(self, engine: Engine, make_vehicle_rows: RowsFactory) -> None:
        engine.importer.config = IngestConfig(max_row_errors=2)

        result = engine.import_batch(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 5, ANNEE_MOD="x"))

        assert result.skipped == 5
        assert len(result.errors) == 2

    def test_error_cap_only_bounds_the_report(
        self,
        engine: Engine,
        make_vehicle_rows: RowsFactory,
        make_vehicle_row: Callable[..., dict[str, Any]],
    ) -> None:
        engine.importer.config = IngestConfig(max_row_errors=1)
        bad = [make_vehicle_row(f"X{i}", ANNEE_MOD="x") for i in range(3)]

        result = engine.import_batch(EntityScope.VEHICLE, 2020, [*bad, *make_vehicle_rows("A", 2)])

        assert result.status is ImportStatus.PARTIAL
        assert result.skipped == 3
        assert [e.row for e in result.errors] == [1]
        assert vehicle_count(engine, 2020) == 2

    def test_replace_year(self, engine: Engine, make_vehicle_rows: RowsFactory) -> None:
        engine.import_batch(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 5))

        result = engine.import_batch(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 2), replace_year=True)

        assert result.replaced == 5
        assert result.inserted == 2
        assert vehicle_count(engine, 2020) == 2

    def test_duplicate_against_stored_rows_fails_whole_batch(
        self, engine: Engine, make_vehicle_rows: RowsFactory
    ) -> None:
        engine.import_batch(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 1))
        generation = engine.generation().data_generation

        with pytest.raises(IngestError) as exc_info:
            engine.import_batch(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 3, model="CIVIC"))

        assert exc_info.value.code is ErrorCode.INGEST_BATCH_FAILED
        assert vehicle_count(engine, 2020) == 1
        # The model created inside the failed transaction was rolled back too.
        honda = engine.schema.lookup_id(Dimension.MAKE, "HONDA")
        assert engine.schema.lookup_id(Dimension.MODEL, "CIVIC", parent_id=honda) is None
        assert engine.generation().data_generation == generation
        assert log_statuses(engine) == ["completed", "failed"]

    def test_license_batch(self, engine: Engine, make_license_row: Callable[..., dict[str, Any]]) -> None:
        result = engine.import_batch(
            EntityScope.LICENSE, 2022, [make_license_row("L1"), make_license_row("L2", IND_PROBATOIRE="OUI")]
        )

        assert result.inserted == 2
        rows = engine.db.execute_raw(
            "SELECT license_sequence, has_driver_license_5, is_probationary, experience_global_id "
            "FROM licenses ORDER BY license_sequence"
        )
        assert [(r[0], bool(r[1]), bool(r[2])) for r in rows] == [("L1", True, False), ("L2", True, True)]
        assert rows[0][3] == engine.schema.lookup_id(Dimension.EXPERIENCE_LEVEL, "10 ans ou plus")

    def test_to_dict(self, engine: Engine, make_vehicle_rows: RowsFactory) -> None:
        data = engine.import_batch(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 1)).to_dict()

        assert data["scope"] == "vehicle"
        assert data["status"] == "completed"
        assert data["generation"]["data_generation"] >= 1


class TestCancellation:
    @pytest.fixture
    def importer(self, engine: Engine) -> Importer:
        return Importer(engine.db, engine.schema, IngestConfig(batch_size=2))

    def test_cancel_between_chunks_rolls_back(
        self, engine: Engine, importer: Importer, make_vehicle_rows: RowsFactory
    ) -> None:
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(IngestError) as exc_info:
            importer.import_batch(EntityScope.VEHICLE, 2021, make_vehicle_rows("A", 5), cancel=cancel)

        assert exc_info.value.code is ErrorCode.INGEST_CANCELLED
        assert exc_info.value.details == {"year": 2021, "rows_done": 2}
        assert engine.schema.lookup_id(Dimension.YEAR, 2021) is None
        assert log_statuses(engine) == ["cancelled"]

    def test_unset_event_completes(self, engine: Engine, importer: Importer, make_vehicle_rows: RowsFactory) -> None:
        result = importer.import_batch(EntityScope.VEHICLE, 2021, make_vehicle_rows("A", 5), cancel=threading.Event())

        assert result.inserted == 5
        assert vehicle_count(engine, 2021) == 5

    def test_progress_reports_running_insert_count(self, importer: Importer, make_vehicle_rows: RowsFactory) -> None:
        seen: list[int] = []

        importer.import_batch(EntityScope.VEHICLE, 2021, make_vehicle_rows("A", 5), progress=seen.append)

        assert seen == [2, 4, 5]
