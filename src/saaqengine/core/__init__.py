"""Core module exports."""

from saaqengine.core.errors import (
    CacheNotReady,
    ConfigError,
    ConflictingMapping,
    EngineError,
    ErrorCode,
    IngestError,
    InternalError,
    QueryValidationError,
    RecordError,
    RegularizationError,
    SchemaError,
    SlowQueryWarning,
    StorageError,
    UnresolvedFilterValue,
)
from saaqengine.core.logging import (
    configure_logging,
    get_request_id,
    operation,
    request_scope,
)
from saaqengine.core.progress import spinner, status

__all__ = [
    # Errors
    "EngineError",
    "ErrorCode",
    "SchemaError",
    "ConfigError",
    "RegularizationError",
    "ConflictingMapping",
    "UnresolvedFilterValue",
    "CacheNotReady",
    "QueryValidationError",
    "SlowQueryWarning",
    "StorageError",
    "IngestError",
    "RecordError",
    "InternalError",
    # Logging
    "configure_logging",
    "get_request_id",
    "operation",
    "request_scope",
    # Progress
    "spinner",
    "status",
]
