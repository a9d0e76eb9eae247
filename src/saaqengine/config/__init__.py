"""Config module exports."""

from saaqengine.config.loader import get_database_path, get_rwi_config_path, load_config
from saaqengine.config.models import (
    DatabaseConfig,
    EngineConfig,
    IngestConfig,
    LoggingConfig,
    QueryConfig,
    RegularizationConfig,
    RWIStorageConfig,
    YearsConfig,
)

__all__ = [
    "load_config",
    "get_database_path",
    "get_rwi_config_path",
    "EngineConfig",
    "DatabaseConfig",
    "IngestConfig",
    "LoggingConfig",
    "QueryConfig",
    "RegularizationConfig",
    "RWIStorageConfig",
    "YearsConfig",
]
