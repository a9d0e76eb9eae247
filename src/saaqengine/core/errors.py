"""Engine error types with typed error codes.

Error code ranges:
- 1xxx: Schema
- 2xxx: Config
- 3xxx: Regularization
- 4xxx: Filter resolution / cache
- 5xxx: Query
- 6xxx: Storage
- 7xxx: Ingest
- 9xxx: Internal
"""

from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Schema (1xxx)
    SCHEMA_SETUP_FAILED = 1001
    SCHEMA_MISSING_INDEX = 1002
    SCHEMA_UNKNOWN_DIMENSION = 1003
    SCHEMA_INVALID_VALUE = 1004

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_MISSING_REQUIRED = 2003
    CONFIG_FILE_NOT_FOUND = 2004

    # Regularization (3xxx)
    REGULARIZATION_CONFLICTING_MAPPING = 3001
    REGULARIZATION_NO_CURATED_YEARS = 3002
    REGULARIZATION_UNKNOWN_ID = 3003
    REGULARIZATION_INVALID_YEARS = 3004

    # Filter resolution (4xxx)
    FILTER_UNRESOLVED_VALUE = 4001
    FILTER_CACHE_NOT_READY = 4002

    # Query (5xxx)
    QUERY_INVALID = 5001
    QUERY_SLOW_PLAN = 5002

    # Storage (6xxx)
    STORAGE_IO_ERROR = 6001
    STORAGE_HANDLE_MISUSE = 6002

    # Ingest (7xxx)
    INGEST_BATCH_FAILED = 7001
    INGEST_INVALID_RECORD = 7002
    INGEST_CANCELLED = 7003

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


class EngineError(Exception):
    """Base error with structured context for callers and CLI output.

    Instances stay mutable: contextlib assigns `__traceback__` on the way out.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.details = details if details is not None else {}

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'CONFIG_PARSE_ERROR')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class SchemaError(EngineError):
    """Malformed dimension or table setup. Fatal at boot."""

    @classmethod
    def setup_failed(cls, reason: str) -> "SchemaError":
        return cls(
            code=ErrorCode.SCHEMA_SETUP_FAILED,
            message=f"Schema setup failed: {reason}",
            details={"reason": reason},
        )

    @classmethod
    def missing_index(cls, table: str, column: str) -> "SchemaError":
        return cls(
            code=ErrorCode.SCHEMA_MISSING_INDEX,
            message=f"No index covers {table}.{column}",
            details={"table": table, "column": column},
        )

    @classmethod
    def unknown_dimension(cls, name: str) -> "SchemaError":
        return cls(
            code=ErrorCode.SCHEMA_UNKNOWN_DIMENSION,
            message=f"Unknown dimension: {name}",
            details={"dimension": name},
        )

    @classmethod
    def invalid_value(cls, dimension: str, value: Any, reason: str) -> "SchemaError":
        return cls(
            code=ErrorCode.SCHEMA_INVALID_VALUE,
            message=f"Invalid value {value!r} for dimension '{dimension}': {reason}",
            details={"dimension": dimension, "value": str(value), "reason": reason},
        )


class ConfigError(EngineError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def missing_required(cls, field: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_MISSING_REQUIRED,
            message=f"Missing required config field: {field}",
            details={"field": field},
        )

    @classmethod
    def file_not_found(cls, path: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_FILE_NOT_FOUND,
            message=f"Config file not found: {path}",
            details={"path": path},
        )


class RegularizationError(EngineError):
    """Regularization setup errors other than make-consistency violations."""

    @classmethod
    def no_curated_years(cls) -> "RegularizationError":
        return cls(
            code=ErrorCode.REGULARIZATION_NO_CURATED_YEARS,
            message="No curated years configured",
        )

    @classmethod
    def unknown_id(cls, kind: str, value: int) -> "RegularizationError":
        return cls(
            code=ErrorCode.REGULARIZATION_UNKNOWN_ID,
            message=f"Unknown {kind} id: {value}",
            details={"kind": kind, "id": value},
        )

    @classmethod
    def overlapping_years(cls, years: list[int]) -> "RegularizationError":
        return cls(
            code=ErrorCode.REGULARIZATION_INVALID_YEARS,
            message=f"Years cannot be both curated and uncurated: {years}",
            details={"years": years},
        )


class ConflictingMapping(EngineError):
    """An uncurated make would map to two different canonical makes."""

    @classmethod
    def make_already_mapped(
        cls,
        uncurated_make: str,
        existing_canonical: str,
        requested_canonical: str,
    ) -> "ConflictingMapping":
        return cls(
            code=ErrorCode.REGULARIZATION_CONFLICTING_MAPPING,
            message=(
                f"Make '{uncurated_make}' already maps to '{existing_canonical}'. "
                "All models from the same make must map to the same canonical make."
            ),
            details={
                "uncurated_make": uncurated_make,
                "existing_canonical_make": existing_canonical,
                "requested_canonical_make": requested_canonical,
            },
        )


class UnresolvedFilterValue(EngineError):
    """One or more filter tokens matched no dimension value."""

    @classmethod
    def for_tokens(cls, unresolved: dict[str, list[str]]) -> "UnresolvedFilterValue":
        parts = [f"{category}: {', '.join(values)}" for category, values in unresolved.items()]
        return cls(
            code=ErrorCode.FILTER_UNRESOLVED_VALUE,
            message=f"Unresolved filter values ({'; '.join(parts)})",
            details={"unresolved": unresolved},
        )


class CacheNotReady(EngineError):
    """Filter cache has no ready snapshot."""

    @classmethod
    def in_state(cls, state: str) -> "CacheNotReady":
        return cls(
            code=ErrorCode.FILTER_CACHE_NOT_READY,
            message=f"Filter cache is not ready (state: {state})",
            retryable=True,
            details={"state": state},
        )


class QueryValidationError(EngineError):
    """Metric or filter combination the builder cannot express."""

    @classmethod
    def invalid(cls, reason: str, **details: Any) -> "QueryValidationError":
        return cls(
            code=ErrorCode.QUERY_INVALID,
            message=f"Invalid query: {reason}",
            details=details,
        )


class SlowQueryWarning(EngineError):
    """Plan classification predicts a full scan of a fact table.

    Informational by default; raised only when the slow-query policy is
    ``reject``.
    """

    @classmethod
    def full_scan(cls, table: str, plan: list[str]) -> "SlowQueryWarning":
        return cls(
            code=ErrorCode.QUERY_SLOW_PLAN,
            message=f"Query plan scans {table} without an index",
            details={"table": table, "plan": plan},
        )


class StorageError(EngineError):
    """Underlying I/O or connection fault. Never retried by the engine."""

    @classmethod
    def io_error(cls, operation: str, reason: str) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_IO_ERROR,
            message=f"Storage failure during {operation}: {reason}",
            retryable=True,
            details={"operation": operation, "reason": reason},
        )

    @classmethod
    def handle_misuse(cls, reason: str) -> "StorageError":
        return cls(
            code=ErrorCode.STORAGE_HANDLE_MISUSE,
            message=f"Connection handle misuse: {reason}",
            details={"reason": reason},
        )


class IngestError(EngineError):
    """Batch-level ingestion failure."""

    @classmethod
    def batch_failed(cls, year: int, reason: str) -> "IngestError":
        return cls(
            code=ErrorCode.INGEST_BATCH_FAILED,
            message=f"Import of year {year} failed: {reason}",
            details={"year": year, "reason": reason},
        )

    @classmethod
    def cancelled(cls, year: int, rows_done: int) -> "IngestError":
        return cls(
            code=ErrorCode.INGEST_CANCELLED,
            message=f"Import of year {year} cancelled after {rows_done} rows",
            details={"year": year, "rows_done": rows_done},
        )


class RecordError(EngineError):
    """A single raw record could not be parsed. Reported per row."""

    @classmethod
    def invalid_field(cls, field: str, value: Any, reason: str) -> "RecordError":
        return cls(
            code=ErrorCode.INGEST_INVALID_RECORD,
            message=f"Invalid {field} value {value!r}: {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )


class InternalError(EngineError):
    """Internal/unexpected errors."""

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
