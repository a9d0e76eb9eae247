"""Importer: raw record batches -> dimension ids + fact rows.

One batch is one (scope, year) pair and runs in a single write
transaction: the optional deletion of the year's existing facts, every
dimension allocation, every fact insert and the data generation bump
commit together or not at all.
Malformed rows are skipped and reported; storage faults fail the batch.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from saaqengine.core.errors import EngineError, ErrorCode, IngestError, RecordError, SchemaError, StorageError
from saaqengine.core.logging import operation
from saaqengine.dimensions.registry import Dimension
from saaqengine.ingest.records import GeoRef, LicenseRecord, RawRow, RowError, VehicleRecord
from saaqengine.models import EntityScope, GenerationKind, ImportLog, ImportStatus, License, Vehicle
from saaqengine.store.generation import GenerationManager

if TYPE_CHECKING:
    from saaqengine.config.models import IngestConfig
    from saaqengine.dimensions.schema import DimensionSchema, DimensionWriter
    from saaqengine.store.database import BulkWriter, Database
    from saaqengine.store.generation import GenerationStamp

logger = structlog.get_logger()

_FACT_MODELS = {EntityScope.VEHICLE: Vehicle, EntityScope.LICENSE: License}


@dataclass
class ImportResult:
    """Outcome of one batch."""

    scope: EntityScope
    year: int
    inserted: int = 0
    skipped: int = 0
    replaced: int = 0
    errors: list[RowError] = field(default_factory=list)
    dimensions_created: dict[str, int] = field(default_factory=dict)
    status: ImportStatus = ImportStatus.COMPLETED
    stamp: GenerationStamp | None = None
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope.value,
            "year": self.year,
            "inserted": self.inserted,
            "skipped": self.skipped,
            "replaced": self.replaced,
            "errors": [e.to_dict() for e in self.errors],
            "dimensions_created": self.dimensions_created,
            "status": self.status.value,
            "generation": self.stamp.to_dict() if self.stamp else None,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


class Importer:
    """Single-writer ingestion of raw record batches."""

    def __init__(
        self,
        db: Database,
        schema: DimensionSchema,
        config: IngestConfig,
        on_published: Callable[[ImportResult], None] | None = None,
    ) -> None:
        self.db = db
        self.schema = schema
        self.config = config
        self.on_published = on_published

    def import_batch(
        self,
        scope: EntityScope,
        year: int,
        rows: Iterable[RawRow],
        *,
        replace_year: bool = False,
        file_name: str | None = None,
        cancel: threading.Event | None = None,
        progress: Callable[[int], None] | None = None,
    ) -> ImportResult:
        """Import one year of records for an entity.

        Args:
            scope: Entity the rows describe.
            year: Data year of the batch.
            rows: Raw rows keyed by SAAQ column name.
            replace_year: Delete the year's existing facts in the same
                transaction before inserting.
            file_name: Source recorded in the import log.
            cancel: Checked between insert chunks.
            progress: Called with the running insert count after each chunk.

        Raises:
            IngestError: storage failure or cancellation; nothing of the batch
                is committed.
        """
        start = time.perf_counter()
        result = ImportResult(scope=scope, year=year)
        with operation("import", scope=scope, year=year, file=file_name) as outcome:
            logger.debug("import_started", replace_year=replace_year)
            try:
                self._write_batch(result, rows, replace_year, file_name, cancel, progress)
            except IngestError as e:
                self._log_failure(result, file_name, e)
                raise
            except StorageError as e:
                self._log_failure(result, file_name, e)
                raise IngestError.batch_failed(year, e.message) from e
            self.db.analyze()
            result.elapsed_seconds = time.perf_counter() - start
            outcome.update(inserted=result.inserted, skipped=result.skipped, replaced=result.replaced)
        if self.on_published is not None:
            self.on_published(result)
        return result

    def _write_batch(
        self,
        result: ImportResult,
        rows: Iterable[RawRow],
        replace_year: bool,
        file_name: str | None,
        cancel: threading.Event | None,
        progress: Callable[[int], None] | None,
    ) -> None:
        scope, year = result.scope, result.year
        model = _FACT_MODELS[scope]
        chunk_size = self.config.batch_size

        def flush(chunk: list[dict[str, Any]]) -> None:
            result.inserted += writer.insert_many(model, chunk)
            if progress is not None:
                progress(result.inserted)
            if cancel is not None and cancel.is_set():
                raise IngestError.cancelled(year, result.inserted)

        with self.db.bulk_writer() as writer:
            dims = self.schema.writer(writer)
            year_id = dims.get_or_create_id(Dimension.YEAR, year)
            if replace_year:
                result.replaced = writer.delete_where(model, "year_id = :year_id", {"year_id": year_id})

            seen: set[str] = set()
            chunk: list[dict[str, Any]] = []
            for index, raw in enumerate(rows, start=1):
                values = self._row_values(scope, dims, year, year_id, index, raw, seen, result)
                if values is None:
                    continue
                chunk.append(values)
                if len(chunk) >= chunk_size:
                    flush(chunk)
                    chunk = []
            flush(chunk)

            result.dimensions_created = {d.value: n for d, n in dims.created.items()}
            if result.skipped:
                result.status = ImportStatus.PARTIAL
            self._write_log(writer, result, file_name)
            with writer.session() as session:
                result.stamp = GenerationManager.bump(session, GenerationKind.DATA, f"{scope.value} {year}")

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def _row_values(
        self,
        scope: EntityScope,
        dims: DimensionWriter,
        year: int,
        year_id: int,
        index: int,
        raw: RawRow,
        seen: set[str],
        result: ImportResult,
    ) -> dict[str, Any] | None:
        """Fact row for a raw row, or None after recording why it was skipped."""
        try:
            if scope is EntityScope.VEHICLE:
                record: VehicleRecord | LicenseRecord = VehicleRecord.from_raw(raw, year=year)
            else:
                record = LicenseRecord.from_raw(raw, year=year)
            if record.sequence in seen:
                raise RecordError.invalid_field("sequence", record.sequence, "duplicate within the batch")
            if isinstance(record, VehicleRecord):
                values = self._vehicle_values(dims, year_id, record)
            else:
                values = self._license_values(dims, year_id, record)
        except (RecordError, SchemaError) as e:
            result.skipped += 1
            if len(result.errors) < self.config.max_row_errors:
                result.errors.append(RowError(row=index, field=e.details.get("field"), message=e.message))
            return None
        seen.add(record.sequence)
        return values

    @staticmethod
    def _optional(dims: DimensionWriter, dimension: Dimension, value: Any, **kwargs: Any) -> int | None:
        if value is None:
            return None
        return dims.get_or_create_id(dimension, value, **kwargs)

    def _geography(self, dims: DimensionWriter, dimension: Dimension, geo: GeoRef | None) -> int | None:
        if geo is None:
            return None
        return dims.get_or_create_id(dimension, geo.code, label=geo.name)

    def _vehicle_values(self, dims: DimensionWriter, year_id: int, record: VehicleRecord) -> dict[str, Any]:
        make_id = self._optional(dims, Dimension.MAKE, record.make)
        model_id = None
        if record.model is not None:
            model_id = dims.get_or_create_id(Dimension.MODEL, record.model, parent_id=make_id)
        return {
            "year_id": year_id,
            "vehicle_sequence": record.sequence,
            "vehicle_class_id": dims.get_or_create_id(Dimension.VEHICLE_CLASS, record.vehicle_class),
            "vehicle_type_id": self._optional(dims, Dimension.VEHICLE_TYPE, record.vehicle_type),
            "make_id": make_id,
            "model_id": model_id,
            "model_year_id": self._optional(dims, Dimension.MODEL_YEAR, record.model_year),
            "fuel_type_id": self._optional(dims, Dimension.FUEL_TYPE, record.fuel_type),
            "admin_region_id": self._geography(dims, Dimension.ADMIN_REGION, record.admin_region),
            "mrc_id": self._geography(dims, Dimension.MRC, record.mrc),
            "municipality_id": self._optional(dims, Dimension.MUNICIPALITY, record.municipality),
            "cylinder_count_id": self._optional(dims, Dimension.CYLINDER_COUNT, record.cylinder_count),
            "axle_count_id": self._optional(dims, Dimension.AXLE_COUNT, record.max_axles),
            "original_color_id": self._optional(dims, Dimension.COLOR, record.color),
            "net_mass_int": record.net_mass,
            "displacement_int": record.displacement,
            "max_axles": record.max_axles,
        }

    def _license_values(self, dims: DimensionWriter, year_id: int, record: LicenseRecord) -> dict[str, Any]:
        values: dict[str, Any] = {
            "year_id": year_id,
            "license_sequence": record.sequence,
            "age_group_id": self._optional(dims, Dimension.AGE_GROUP, record.age_group),
            "gender_id": self._optional(dims, Dimension.GENDER, record.gender),
            "admin_region_id": self._geography(dims, Dimension.ADMIN_REGION, record.admin_region),
            "mrc_id": self._geography(dims, Dimension.MRC, record.mrc),
            "license_type_id": self._optional(dims, Dimension.LICENSE_TYPE, record.license_type),
        }
        values.update(record.flags or {})
        for column, level in (record.experience or {}).items():
            values[column] = self._optional(dims, Dimension.EXPERIENCE_LEVEL, level)
        return values

    # ------------------------------------------------------------------
    # Import log
    # ------------------------------------------------------------------

    @staticmethod
    def _write_log(writer: BulkWriter, result: ImportResult, file_name: str | None) -> None:
        writer.insert_many(
            ImportLog,
            [
                {
                    "file_name": file_name,
                    "year": result.year,
                    "entity": result.scope.value,
                    "record_count": result.inserted,
                    "error_count": result.skipped,
                    "status": result.status.value,
                    "imported_at": time.time(),
                }
            ],
        )

    def _log_failure(self, result: ImportResult, file_name: str | None, error: EngineError) -> None:
        """Record a rolled-back batch in the import log (own transaction)."""
        status = ImportStatus.CANCELLED if error.code is ErrorCode.INGEST_CANCELLED else ImportStatus.FAILED
        result.status = status
        logger.debug("import_rolled_back", status=status.value, skipped=result.skipped)
        with self.db.session() as session:
            session.add(
                ImportLog(
                    file_name=file_name,
                    year=result.year,
                    entity=result.scope.value,
                    record_count=0,
                    error_count=result.skipped,
                    status=status.value,
                    imported_at=time.time(),
                )
            )
            session.commit()
