"""Ingestion of raw SAAQ record batches (single writer)."""

from saaqengine.ingest.importer import Importer, ImportResult
from saaqengine.ingest.records import GeoRef, LicenseRecord, RowError, VehicleRecord
from saaqengine.ingest.worker import BackgroundImporter, ImporterState, ImporterStatus

__all__ = [
    "BackgroundImporter",
    "GeoRef",
    "ImportResult",
    "Importer",
    "ImporterState",
    "ImporterStatus",
    "LicenseRecord",
    "RowError",
    "VehicleRecord",
]
