"""Engine: one SQLite file plus the services that read and write it.

The facade owns every service instance (no module-level singletons) and
wires them the same way for the CLI and for embedding callers:

    db -> DimensionSchema, GenerationManager
       -> RegularizationEngine (years, mappings, hierarchy)
       -> FilterCache (years from the regularization engine)
       -> QueryTranslator -> QueryBuilder -> QueryExecutor
       -> Importer (+ BackgroundImporter on demand)
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future
from pathlib import Path
from typing import Any

import structlog

from saaqengine.cache.filter_cache import FilterCache
from saaqengine.config.models import EngineConfig
from saaqengine.core.errors import QueryValidationError
from saaqengine.core.logging import operation, request_scope
from saaqengine.dimensions.schema import DimensionSchema
from saaqengine.ingest.importer import Importer, ImportResult
from saaqengine.ingest.records import RawRow
from saaqengine.ingest.worker import BackgroundImporter
from saaqengine.models import EntityScope
from saaqengine.query.builder import PercentageQuery, Query, QueryBuilder
from saaqengine.query.executor import QueryExecutor
from saaqengine.query.filters import FilterIds, FilterSpec, QueryOptions
from saaqengine.query.metrics import MetricSpec, MetricType
from saaqengine.query.plan import PlanClassification
from saaqengine.query.rwi import (
    RWIConfiguration,
    import_rwi_configuration,
    load_rwi_configuration,
    reset_rwi_configuration,
    save_rwi_configuration,
)
from saaqengine.query.series import QueryResult
from saaqengine.query.translator import QueryTranslator
from saaqengine.regularization.engine import RegularizationEngine
from saaqengine.regularization.models import CanonicalHierarchy, MappingRecord, MappingRequest
from saaqengine.regularization.years import YearConfiguration
from saaqengine.store.database import Database
from saaqengine.store.generation import GenerationManager, GenerationStamp

logger = structlog.get_logger()


class Engine:
    """Query and regularization engine over one database file."""

    def __init__(self, db: Database, config: EngineConfig, rwi_path: Path) -> None:
        self.db = db
        self.config = config
        self.rwi_path = rwi_path

        self.schema = DimensionSchema(db)
        self.generations = GenerationManager(db)
        self.regularization = RegularizationEngine(
            db,
            self.generations,
            YearConfiguration.from_config(config.years),
            config.regularization,
        )
        self.cache = FilterCache(db, self.generations, lambda: self.regularization.year_configuration)
        self.translator = QueryTranslator(self.cache, self.regularization)

        self._rwi_lock = threading.Lock()
        self._rwi = load_rwi_configuration(rwi_path)
        self.builder = QueryBuilder(
            lambda: self.regularization.year_configuration,
            lambda: self.rwi_configuration,
            config.regularization,
        )
        self.executor = QueryExecutor(db, config.query)
        self.importer = Importer(db, self.schema, config.ingest, on_published=self._on_import)
        self._background: BackgroundImporter | None = None

    @classmethod
    def open(
        cls,
        db_path: Path,
        config: EngineConfig | None = None,
        *,
        rwi_path: Path | None = None,
    ) -> Engine:
        """Open (creating if needed) a database and wire every service.

        Raises:
            SchemaError: table setup failed or an index is missing.
            ConfigError: the RWI configuration file is invalid.
        """
        config = config or EngineConfig()
        db = Database(
            db_path,
            max_retries=config.database.max_retries,
            retry_base_delay=config.database.retry_base_delay_sec,
            busy_timeout_ms=config.database.busy_timeout_ms,
            cache_size_kb=config.database.cache_size_kb,
        )
        DimensionSchema(db).create()
        if rwi_path is None and config.rwi.config_path:
            rwi_path = Path(config.rwi.config_path).expanduser()
        engine = cls(db, config, rwi_path or db_path.with_name("rwi.json"))
        logger.info("engine_opened", db_path=str(db_path), **engine.regularization.year_configuration.to_dict())
        return engine

    def close(self) -> None:
        if self._background is not None:
            self._background.stop()
            self._background = None
        self.cache.shutdown()
        self.regularization.hierarchy.shutdown()
        self.db.dispose()
        logger.info("engine_closed")

    def __enter__(self) -> Engine:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Cache lifecycle
    # ------------------------------------------------------------------

    def initialize(self, scope: EntityScope = EntityScope.VEHICLE, *, force: bool = False) -> None:
        """Load the filter cache for a scope (no-op when already current)."""
        self.cache.initialize(scope, force=force)

    def initialize_async(self, scope: EntityScope = EntityScope.VEHICLE) -> Future[Any]:
        return self.cache.initialize_async(scope)

    def invalidate(self) -> None:
        """Drop the filter cache and memoized hierarchies."""
        self.cache.invalidate()
        self.regularization.hierarchy.invalidate()

    def is_ready(self) -> bool:
        return self.cache.is_ready()

    @property
    def year_configuration(self) -> YearConfiguration:
        return self.regularization.year_configuration

    def set_year_configuration(self, years: YearConfiguration) -> None:
        """Change the curated/uncurated split; the cache reloads on next initialize()."""
        self.regularization.set_year_configuration(years)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def default_options(self) -> QueryOptions:
        reg = self.config.regularization
        return QueryOptions(
            regularization_enabled=reg.enabled,
            coupling=reg.coupling,
            include_pre_schema_fuel_type=reg.include_pre_schema_fuel_type,
        )

    def resolve(self, filter_spec: FilterSpec, options: QueryOptions | None = None) -> FilterIds:
        return self.translator.resolve(filter_spec, options or self.default_options())

    def build(
        self,
        filter_spec: FilterSpec,
        metric_spec: MetricSpec,
        options: QueryOptions | None = None,
    ) -> tuple[FilterIds, Query | PercentageQuery]:
        """Resolve filters (and the percentage baseline) and build the statement(s).

        Raises:
            QueryValidationError: invalid metric for the entity, or malformed filters.
            CacheNotReady: cache not loaded for the filter's scope.
            UnresolvedFilterValue: labels that match nothing (policy "raise").
        """
        options = options or self.default_options()
        metric_spec.validate(filter_spec.scope)
        ids = self.translator.resolve(filter_spec, options)
        baseline = None
        if metric_spec.metric is MetricType.PERCENTAGE:
            if metric_spec.baseline is None:
                raise QueryValidationError.invalid("percentage needs a baseline filter")
            baseline = self.translator.resolve(metric_spec.baseline, options)
        return ids, self.builder.build(ids, metric_spec, baseline)

    def resolve_and_query(
        self,
        filter_spec: FilterSpec,
        metric_spec: MetricSpec,
        options: QueryOptions | None = None,
    ) -> QueryResult:
        """Resolve labels, build SQL, run it and post-process the series."""
        with (
            request_scope() as request_id,
            operation("query", scope=filter_spec.scope, metric=metric_spec.metric) as outcome,
        ):
            ids, query = self.build(filter_spec, metric_spec, options)
            filter_info = ids.to_dict()
            filter_info["request_id"] = request_id
            result = self.executor.execute(query, filter_info=filter_info)
            outcome["points"] = len(result.series.points)
            return result

    def explain(
        self,
        filter_spec: FilterSpec,
        metric_spec: MetricSpec,
        options: QueryOptions | None = None,
    ) -> tuple[Query | PercentageQuery, list[PlanClassification]]:
        _, query = self.build(filter_spec, metric_spec, options)
        return query, self.executor.explain(query)

    # ------------------------------------------------------------------
    # Regularization
    # ------------------------------------------------------------------

    def add_mapping(self, request: MappingRequest) -> MappingRecord:
        return self.regularization.add_mapping(request)

    def delete_mapping(self, mapping_id: int) -> bool:
        return self.regularization.delete_mapping(mapping_id)

    def delete_mappings_for_pair(self, make_id: int, model_id: int) -> int:
        return self.regularization.delete_mappings_for_pair(make_id, model_id)

    def get_all_mappings(self) -> list[MappingRecord]:
        return self.regularization.get_all_mappings()

    def canonical_hierarchy(
        self,
        curated_years: Iterable[int] | None = None,
        force_refresh: bool = False,
    ) -> CanonicalHierarchy:
        return self.regularization.generate_canonical_hierarchy(curated_years, force_refresh)

    def request_hierarchy_rebuild(
        self, curated_years: Iterable[int] | None = None
    ) -> Future[CanonicalHierarchy | None]:
        return self.regularization.request_hierarchy_rebuild(curated_years)

    def auto_regularize(self) -> list[MappingRecord]:
        return self.regularization.auto_regularize_exact_matches()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def import_batch(
        self,
        scope: EntityScope,
        year: int,
        rows: Iterable[RawRow],
        *,
        replace_year: bool = False,
        file_name: str | None = None,
        progress: Callable[[int], None] | None = None,
    ) -> ImportResult:
        """Import on the calling thread. Use background_importer() for queued imports."""
        return self.importer.import_batch(
            scope, year, rows, replace_year=replace_year, file_name=file_name, progress=progress
        )

    def background_importer(self) -> BackgroundImporter:
        """Started single-writer worker shared by every queued import."""
        if self._background is None:
            self._background = BackgroundImporter(self.importer, queue_max_size=self.config.ingest.queue_max_size)
            self._background.start()
        return self._background

    def _on_import(self, result: ImportResult) -> None:
        # Counts and hierarchies derive from fact rows; the cache notices the
        # new data generation on its next initialize().
        self.regularization.refresh_record_counts()
        self.regularization.hierarchy.invalidate()

    # ------------------------------------------------------------------
    # Road Wear Index
    # ------------------------------------------------------------------

    @property
    def rwi_configuration(self) -> RWIConfiguration:
        with self._rwi_lock:
            return self._rwi

    def set_rwi_configuration(self, config: RWIConfiguration) -> None:
        save_rwi_configuration(config, self.rwi_path)
        with self._rwi_lock:
            self._rwi = config

    def import_rwi_configuration(self, source: Path) -> RWIConfiguration:
        config = import_rwi_configuration(source, self.rwi_path)
        with self._rwi_lock:
            self._rwi = config
        return config

    def export_rwi_configuration(self, destination: Path) -> None:
        save_rwi_configuration(self.rwi_configuration, destination)

    def reset_rwi_configuration(self) -> RWIConfiguration:
        config = reset_rwi_configuration(self.rwi_path)
        with self._rwi_lock:
            self._rwi = config
        return config

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def generation(self) -> GenerationStamp:
        return self.generations.current()

    def status(self) -> dict[str, Any]:
        hierarchy = self.regularization.hierarchy.status()
        result: dict[str, Any] = {
            "db_path": str(self.db.db_path),
            "cache_state": self.cache.state.value,
            "generation": self.generation().to_dict(),
            "recent_generations": [
                {"kind": g.kind, "generation": g.generation, "detail": g.detail, "published_at": g.published_at}
                for g in self.generations.latest(limit=5)
            ],
            "years": self.year_configuration.to_dict(),
            "regularization_enabled": self.config.regularization.enabled,
            "hierarchy": {
                "generation": hierarchy.generation,
                "in_flight": hierarchy.in_flight,
                "published_key": hierarchy.published_key,
            },
            "rwi_fingerprint": self.rwi_configuration.fingerprint(),
        }
        if self._background is not None:
            bg = self._background.status
            result["importer"] = {
                "state": bg.state.value,
                "queue_size": bg.queue_size,
                "current": bg.current,
                "completed": bg.completed,
                "failed": bg.failed,
                "last_error": bg.last_error,
            }
        return result
