"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (SAAQ__SECTION__KEY)
3. Project YAML (.saaq/config.yaml)
4. Global YAML (~/.config/saaq/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    SAAQ__<SECTION>__<KEY>=<VALUE>

Examples:
    SAAQ__LOGGING__LEVEL=DEBUG
    SAAQ__YEARS__CURATED=[2011,2012,2013]
    SAAQ__REGULARIZATION__COUPLING=false
    SAAQ__QUERY__SLOW_QUERY_POLICY=reject
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from saaqengine.config.constants import (
    DEFAULT_CURATED_YEARS,
    DEFAULT_UNCURATED_YEARS,
    FUEL_TYPE_SCHEMA_YEAR,
)

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
SlowQueryPolicy = Literal["ignore", "warn", "reject"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration.

    Env vars: Not directly configurable via env (use YAML for multi-output).
    """

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        SAAQ__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every generated statement.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class DatabaseConfig(BaseModel):
    """Database connection configuration.

    Env vars:
        SAAQ__DATABASE__PATH: SQLite file location
        SAAQ__DATABASE__BUSY_TIMEOUT_MS: SQLite busy timeout
        SAAQ__DATABASE__MAX_RETRIES: Retry attempts for locked writes (0 = caller decides)
    """

    path: str | None = Field(
        default=None,
        description="SQLite database file. Default: .saaq/saaq.db in the project directory.",
    )
    busy_timeout_ms: int = Field(
        default=30000,
        description="SQLite busy timeout (ms). How long to wait for locks.",
    )
    max_retries: int = Field(
        default=0,
        description="Retry attempts for 'database is locked' on serialized writes. "
        "Zero leaves the retry policy to the caller.",
    )
    retry_base_delay_sec: float = Field(
        default=0.1,
        description="Base delay between retries (exponential backoff).",
    )
    cache_size_kb: int = Field(
        default=64000,
        description="SQLite page cache per connection (KiB).",
    )

    @field_validator("max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_retries must be >= 0, got {v}")
        return v


class YearsConfig(BaseModel):
    """Curated/uncurated year split.

    Curated years carry validated categorical spellings; uncurated years are
    raw exports whose make/model spellings may need regularization.

    Env vars:
        SAAQ__YEARS__CURATED: JSON list of curated years
        SAAQ__YEARS__UNCURATED: JSON list of uncurated years
    """

    curated: list[int] = Field(default_factory=lambda: list(DEFAULT_CURATED_YEARS))
    uncurated: list[int] = Field(default_factory=lambda: list(DEFAULT_UNCURATED_YEARS))

    @model_validator(mode="after")
    def validate_disjoint(self) -> "YearsConfig":
        overlap = sorted(set(self.curated) & set(self.uncurated))
        if overlap:
            raise ValueError(f"years cannot be both curated and uncurated: {overlap}")
        return self


class RegularizationConfig(BaseModel):
    """Regularization behavior.

    Env vars:
        SAAQ__REGULARIZATION__ENABLED: Expand filters through the mapping table
        SAAQ__REGULARIZATION__COUPLING: Inject mapping makes when filtering by model
        SAAQ__REGULARIZATION__INCLUDE_PRE_SCHEMA_FUEL_TYPE: Allow pre-2017 fuel matches
    """

    enabled: bool = Field(
        default=False,
        description="Expand make/model filters through the mapping table.",
    )
    coupling: bool = Field(
        default=True,
        description="When filtering by model without a make, restrict to the makes "
        "referenced by the expanding mappings.",
    )
    include_pre_schema_fuel_type: bool = Field(
        default=False,
        description="Let records from years before the fuel-type field existed match "
        "a fuel-type filter through a triplet mapping.",
    )
    fuel_type_schema_year: int = Field(
        default=FUEL_TYPE_SCHEMA_YEAR,
        description="First data year that carries a fuel type.",
    )
    priority_vehicle_types: list[str] = Field(
        default_factory=lambda: ["AU", "MC"],
        description="Ordered vehicle type codes the auto-assignment heuristic prefers "
        "when a canonical model shows several types. Empty disables the preference.",
    )


class QueryConfig(BaseModel):
    """Query execution configuration.

    Env vars:
        SAAQ__QUERY__SLOW_QUERY_POLICY: ignore | warn | reject
        SAAQ__QUERY__EXPLAIN: Classify every plan before execution
    """

    slow_query_policy: SlowQueryPolicy = Field(
        default="warn",
        description="What to do with a plan predicted to scan a fact table: "
        "ignore it, attach a warning to the result, or refuse to run.",
    )
    explain: bool = Field(
        default=True,
        description="Run EXPLAIN QUERY PLAN before each query.",
    )


class IngestConfig(BaseModel):
    """Ingestion configuration.

    Env vars:
        SAAQ__INGEST__BATCH_SIZE: Rows per insert chunk
        SAAQ__INGEST__QUEUE_MAX_SIZE: Max queued batches
    """

    batch_size: int = Field(
        default=50000,
        description="Rows per insert chunk. Cancellation is checked between chunks.",
    )
    queue_max_size: int = Field(
        default=64,
        description="Max queued batches for the background importer.",
    )
    max_row_errors: int = Field(
        default=1000,
        description="Row errors kept in an import result (all are counted).",
    )

    @field_validator("batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"batch_size must be positive, got {v}")
        return v


class RWIStorageConfig(BaseModel):
    """Road Wear Index configuration storage.

    Env vars:
        SAAQ__RWI__CONFIG_PATH: JSON file with axle distributions
    """

    config_path: str | None = Field(
        default=None,
        description="RWI configuration file. Default: .saaq/rwi.json. "
        "Built-in distributions are used when the file does not exist.",
    )


class EngineConfig(BaseModel):
    """Root configuration for the engine.

    All settings can be configured via:
    1. Environment variables: SAAQ__SECTION__KEY
    2. YAML config files (project or global)
    3. Direct kwargs to load_config()
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    years: YearsConfig = Field(default_factory=YearsConfig)
    regularization: RegularizationConfig = Field(default_factory=RegularizationConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    ingest: IngestConfig = Field(default_factory=IngestConfig)
    rwi: RWIStorageConfig = Field(default_factory=RWIStorageConfig)
