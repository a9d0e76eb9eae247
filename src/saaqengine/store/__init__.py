"""Storage layer: engine, connection handles, indexes and generation stamps."""

from saaqengine.store.database import BulkWriter, Database, StoreHandle, storage_errors
from saaqengine.store.generation import GenerationManager, GenerationStamp
from saaqengine.store.indexes import (
    ADDITIONAL_INDEXES,
    create_additional_indexes,
    drop_additional_indexes,
    verify_dimension_indexes,
)

__all__ = [
    "Database",
    "BulkWriter",
    "StoreHandle",
    "storage_errors",
    "GenerationManager",
    "GenerationStamp",
    "ADDITIONAL_INDEXES",
    "create_additional_indexes",
    "drop_additional_indexes",
    "verify_dimension_indexes",
]
