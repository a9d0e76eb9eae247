"""Additional index creation and boot-time index verification.

Single-column indexes come from Field(index=True) declarations in models.py.
The composites below serve the fixed query shapes (year-grouped aggregates
filtered by class, fuel, geography or make/model).

Call create_additional_indexes() after Database.create_all(), then
verify_dimension_indexes() before serving queries.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import text

from saaqengine.core.errors import SchemaError
from saaqengine.models import DIMENSION_TABLES, FACT_TABLES, MakeModelRegularization

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine


ADDITIONAL_INDEXES = [
    # Vehicles: year-grouped aggregates
    "CREATE INDEX IF NOT EXISTS idx_vehicles_year_class ON vehicles(year_id, vehicle_class_id)",
    "CREATE INDEX IF NOT EXISTS idx_vehicles_year_fuel ON vehicles(year_id, fuel_type_id)",
    "CREATE INDEX IF NOT EXISTS idx_vehicles_year_region ON vehicles(year_id, admin_region_id)",
    "CREATE INDEX IF NOT EXISTS idx_vehicles_year_municipality ON vehicles(year_id, municipality_id)",
    "CREATE INDEX IF NOT EXISTS idx_vehicles_municipality_class_year "
    "ON vehicles(municipality_id, vehicle_class_id, year_id)",
    "CREATE INDEX IF NOT EXISTS idx_vehicles_region_class_year "
    "ON vehicles(admin_region_id, vehicle_class_id, year_id)",
    "CREATE INDEX IF NOT EXISTS idx_vehicles_make_model_year ON vehicles(make_id, model_id, year_id)",
    "CREATE INDEX IF NOT EXISTS idx_vehicles_make_model_model_year "
    "ON vehicles(make_id, model_id, model_year_id)",
    # Licenses
    "CREATE INDEX IF NOT EXISTS idx_licenses_year_type ON licenses(year_id, license_type_id)",
    "CREATE INDEX IF NOT EXISTS idx_licenses_year_age ON licenses(year_id, age_group_id)",
    "CREATE INDEX IF NOT EXISTS idx_licenses_year_gender ON licenses(year_id, gender_id)",
    "CREATE INDEX IF NOT EXISTS idx_licenses_year_region ON licenses(year_id, admin_region_id)",
    "CREATE INDEX IF NOT EXISTS idx_licenses_mrc_type_year ON licenses(mrc_id, license_type_id, year_id)",
    "CREATE INDEX IF NOT EXISTS idx_licenses_region_type_year "
    "ON licenses(admin_region_id, license_type_id, year_id)",
    # Regularization lookups
    "CREATE INDEX IF NOT EXISTS idx_regularization_uncurated_triplet "
    "ON make_model_regularization(uncurated_make_id, uncurated_model_id, model_year_id)",
    "CREATE INDEX IF NOT EXISTS idx_regularization_canonical_pair "
    "ON make_model_regularization(canonical_make_id, canonical_model_id)",
    # One wildcard (pair-level) mapping per uncurated pair; NULLs escape the table constraint
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_regularization_wildcard_unique "
    "ON make_model_regularization(uncurated_make_id, uncurated_model_id) "
    "WHERE model_year_id IS NULL",
    "CREATE INDEX IF NOT EXISTS idx_hierarchy_cache_key_make_model "
    "ON canonical_hierarchy_cache(cache_key, make_id, model_id)",
]


def _index_name(sql: str) -> str:
    return sql.split(" ON ")[0].split()[-1]


def create_additional_indexes(engine: Engine) -> None:
    """
    Create additional composite indexes.

    Call this after Database.create_all() to add performance indexes
    that cannot be expressed via SQLModel Field() declarations.
    """
    with engine.connect() as conn:
        for sql in ADDITIONAL_INDEXES:
            conn.execute(text(sql))
        conn.commit()


def drop_additional_indexes(engine: Engine) -> None:
    """Drop additional indexes (for testing/reset)."""
    with engine.connect() as conn:
        for sql in ADDITIONAL_INDEXES:
            conn.execute(text(f"DROP INDEX IF EXISTS {_index_name(sql)}"))
        conn.commit()


def _leading_index_columns(conn: Connection, table: str) -> set[str]:
    """Columns that lead at least one index on the table."""
    leading: set[str] = set()
    for row in conn.execute(text(f"PRAGMA index_list('{table}')")):
        index_name = row[1]
        info = list(conn.execute(text(f"PRAGMA index_info('{index_name}')")))
        first = min(info, key=lambda r: r[0], default=None)
        if first is not None and first[2] is not None:
            leading.add(first[2])
    return leading


def _has_rowid_primary_key(conn: Connection, table: str, column: str) -> bool:
    """An INTEGER PRIMARY KEY column is the table's rowid, i.e. its clustered index."""
    for row in conn.execute(text(f"PRAGMA table_info('{table}')")):
        _cid, name, col_type, _notnull, _default, pk = row[:6]
        if name == column:
            return bool(pk) and str(col_type).upper() == "INTEGER"
    return False


def verify_dimension_indexes(engine: Engine) -> None:
    """Check that every id and dimension foreign key is indexed.

    - Every dimension table's id is a rowid primary key and its value
      column carries an index.
    - Every dimension foreign key on the fact tables and the mapping table
      leads an index.

    Raises:
        SchemaError: naming the first table/column without an index.
    """
    with engine.connect() as conn:
        for model in DIMENSION_TABLES:
            table = model.__table__  # type: ignore[attr-defined]
            if not _has_rowid_primary_key(conn, table.name, "id"):
                raise SchemaError.missing_index(table.name, "id")
            leading = _leading_index_columns(conn, table.name)
            value_columns = [
                c.name for c in table.columns if c.name != "id" and (c.unique or c.index)
            ]
            for column in value_columns:
                if column not in leading:
                    raise SchemaError.missing_index(table.name, column)

        for model in (*FACT_TABLES, MakeModelRegularization):
            table = model.__table__  # type: ignore[attr-defined]
            leading = _leading_index_columns(conn, table.name)
            for column in table.columns:
                if column.foreign_keys and column.index and column.name not in leading:
                    raise SchemaError.missing_index(table.name, column.name)
