"""DimensionSchema: table setup, seeding and id allocation.

Dimension ids are assigned once and never reused or mutated. Allocation
(get-or-create) belongs to the single ingestion writer; everything else only
reads.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from saaqengine.core.errors import SchemaError, StorageError
from saaqengine.dimensions.registry import DIMENSIONS, Dimension, DimensionSpec, get_spec
from saaqengine.dimensions.seeds import SEEDS
from saaqengine.store.indexes import create_additional_indexes, verify_dimension_indexes

if TYPE_CHECKING:
    from saaqengine.store.database import BulkWriter, Database, StoreHandle

logger = structlog.get_logger()

_GEOGRAPHY = (Dimension.ADMIN_REGION, Dimension.MRC, Dimension.MUNICIPALITY)


def normalize_value(spec: DimensionSpec, raw_value: Any) -> str | int:
    """Canonical stored form of a raw value.

    Raises:
        SchemaError: empty strings, non-numeric values for numeric dimensions.
    """
    if raw_value is None:
        raise SchemaError.invalid_value(spec.dimension.value, raw_value, "value is missing")
    if spec.numeric:
        try:
            return int(str(raw_value).strip())
        except ValueError as e:
            raise SchemaError.invalid_value(spec.dimension.value, raw_value, "not an integer") from e
    value = str(raw_value).strip()
    if not value:
        raise SchemaError.invalid_value(spec.dimension.value, raw_value, "value is empty")
    return value


class DimensionWriter:
    """Get-or-create id allocation bound to the writer's connection.

    Keeps an in-process id cache for the lifetime of one import; ids are
    stable so cached entries never go stale.
    """

    def __init__(self, handle: StoreHandle) -> None:
        self._handle = handle
        self._ids: dict[tuple[Dimension, str | int, int | None], int] = {}
        self.created: dict[Dimension, int] = {}

    def get_or_create_id(
        self,
        dimension: Dimension | str,
        raw_value: Any,
        *,
        parent_id: int | None = None,
        label: str | None = None,
    ) -> int:
        """Return the id for a value, allocating one if the value is new.

        Args:
            dimension: Target dimension.
            raw_value: Value as found in the raw record.
            parent_id: Make id, required for models.
            label: Description/name stored alongside a newly created value.

        Raises:
            SchemaError: malformed value or missing parent.
        """
        spec = get_spec(dimension)
        value = normalize_value(spec, raw_value)
        if spec.parent_column is not None and parent_id is None:
            raise SchemaError.invalid_value(spec.dimension.value, raw_value, "parent id is required")

        key = (spec.dimension, value, parent_id)
        cached = self._ids.get(key)
        if cached is not None:
            return cached

        existing = self._select_id(spec, value, parent_id)
        if existing is None:
            existing = self._insert(spec, value, parent_id, label)
            self.created[spec.dimension] = self.created.get(spec.dimension, 0) + 1

        self._ids[key] = existing
        return existing

    def _select_id(self, spec: DimensionSpec, value: str | int, parent_id: int | None) -> int | None:
        sql = f"SELECT id FROM {spec.table} WHERE {spec.value_column} = :value"
        params: dict[str, Any] = {"value": value}
        if spec.parent_column is not None:
            sql += f" AND {spec.parent_column} = :parent"
            params["parent"] = parent_id
        found = self._handle.scalar(sql, params)
        return int(found) if found is not None else None

    def _insert(
        self,
        spec: DimensionSpec,
        value: str | int,
        parent_id: int | None,
        label: str | None,
    ) -> int:
        record: dict[str, Any] = {spec.value_column: value}
        if spec.parent_column is not None:
            record[spec.parent_column] = parent_id
        if spec.label_column is not None:
            if label is None and spec.label_required:
                label = str(value)
            record[spec.label_column] = label

        columns = ", ".join(record)
        placeholders = ", ".join(f":{c}" for c in record)
        result = self._handle.execute(
            f"INSERT INTO {spec.table} ({columns}) VALUES ({placeholders})",
            record,
        )
        new_id = result.lastrowid
        if new_id is None:
            raise StorageError.io_error("dimension_insert", f"no id returned for {spec.table}")
        logger.debug("dimension_value_created", dimension=spec.dimension.value, value=value, id=new_id)
        return int(new_id)

    def update_label(self, dimension: Dimension | str, raw_value: Any, label: str) -> bool:
        """Set the description/name of an existing value. Returns False if unknown."""
        spec = get_spec(dimension)
        if spec.label_column is None:
            raise SchemaError.invalid_value(spec.dimension.value, raw_value, "dimension has no label")
        value = normalize_value(spec, raw_value)
        result = self._handle.execute(
            f"UPDATE {spec.table} SET {spec.label_column} = :label WHERE {spec.value_column} = :value",
            {"label": label, "value": value},
        )
        return bool(result.rowcount)


class DimensionSchema:
    """Creates, seeds and verifies the dimensional schema."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def create(self) -> None:
        """Create tables and indexes, seed fixed values, verify indexes.

        Idempotent.

        Raises:
            SchemaError: any storage failure during setup, or a missing index.
        """
        try:
            self.db.create_all()
            create_additional_indexes(self.db.engine)
            self.seed()
        except StorageError as e:
            raise SchemaError.setup_failed(e.message) from e
        self.verify_indexes()
        logger.info("schema_ready", db_path=str(self.db.db_path), dimensions=len(DIMENSIONS))

    def verify_indexes(self) -> None:
        """Boot-time check that every id and dimension foreign key is indexed."""
        verify_dimension_indexes(self.db.engine)

    def seed(self) -> None:
        """Insert the fixed dimension values that are not present yet."""
        with self.db.bulk_writer() as writer:
            for dimension, rows in SEEDS.items():
                spec = DIMENSIONS[dimension]
                for row in rows:
                    writer.insert_or_ignore(spec.model, row)

    def writer(self, bulk_writer: BulkWriter) -> DimensionWriter:
        """Id allocator bound to an open bulk writer (ingestion path)."""
        return DimensionWriter(bulk_writer.handle)

    def get_or_create_id(
        self,
        dimension: Dimension | str,
        raw_value: Any,
        *,
        parent_id: int | None = None,
        label: str | None = None,
    ) -> int:
        """Single-value get-or-create in its own write transaction.

        Bulk imports should use writer() instead.
        """
        with self.db.bulk_writer() as bulk:
            return DimensionWriter(bulk.handle).get_or_create_id(
                dimension, raw_value, parent_id=parent_id, label=label
            )

    def register_geography(self, dimension: Dimension | str, code: str, name: str) -> int:
        """Create or rename a region, MRC or municipality."""
        spec = get_spec(dimension)
        if spec.dimension not in _GEOGRAPHY:
            raise SchemaError.invalid_value(spec.dimension.value, code, "not a geographic dimension")
        with self.db.bulk_writer() as bulk:
            dims = DimensionWriter(bulk.handle)
            dim_id = dims.get_or_create_id(spec.dimension, code, label=name)
            dims.update_label(spec.dimension, code, name.strip())
            return dim_id

    def lookup_id(self, dimension: Dimension | str, raw_value: Any, *, parent_id: int | None = None) -> int | None:
        """Id of an existing value, or None."""
        spec = get_spec(dimension)
        value = normalize_value(spec, raw_value)
        with self.db.read_handle("dimension_lookup") as handle:
            sql = f"SELECT id FROM {spec.table} WHERE {spec.value_column} = :value"
            params: dict[str, Any] = {"value": value}
            if spec.parent_column is not None and parent_id is not None:
                sql += f" AND {spec.parent_column} = :parent"
                params["parent"] = parent_id
            found = handle.scalar(sql, params)
        return int(found) if found is not None else None

    def lookup_value(self, dimension: Dimension | str, dim_id: int) -> str | int | None:
        """Stored value for an id, or None."""
        spec = get_spec(dimension)
        with self.db.read_handle("dimension_lookup") as handle:
            return handle.scalar(
                f"SELECT {spec.value_column} FROM {spec.table} WHERE id = :id", {"id": dim_id}
            )

    def count(self, dimension: Dimension | str) -> int:
        spec = get_spec(dimension)
        with self.db.read_handle("dimension_count") as handle:
            return int(handle.scalar(f"SELECT COUNT(*) FROM {spec.table}") or 0)
