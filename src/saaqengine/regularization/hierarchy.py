"""Canonical hierarchy: curated-year aggregation of make/model/model year/fuel/type.

Results are memoized by a cache key derived from the curated years and the
mapping version, both in memory and in the canonical_hierarchy_cache table.

Concurrent rebuild requests are ordered by a monotonically increasing
generation counter. A build checks its generation between row batches and
stops as soon as a newer request exists; a superseded build never becomes
the published hierarchy.
"""

from __future__ import annotations

import hashlib
import json
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from saaqengine.core.errors import RegularizationError
from saaqengine.core.logging import operation
from saaqengine.models import CanonicalHierarchyCache
from saaqengine.regularization.models import (
    CanonicalHierarchy,
    CanonicalMake,
    CanonicalModel,
    FuelTypeInfo,
    VehicleTypeInfo,
)
from saaqengine.store.sql import bind_in

if TYPE_CHECKING:
    from saaqengine.regularization.years import YearConfiguration
    from saaqengine.store.database import Database, StoreHandle
    from saaqengine.store.generation import GenerationManager

logger = structlog.get_logger()

_FETCH_BATCH = 2000

# Columns: make_id, make, model_id, model, model_year_id, model_year,
#          fuel_type_id, fuel_code, fuel_description,
#          vehicle_type_id, type_code, type_description, record_count
_AGGREGATE_SQL = """
    SELECT v.make_id, mk.name, v.model_id, md.name,
           v.model_year_id, my.year,
           v.fuel_type_id, ft.code, ft.description,
           v.vehicle_type_id, vt.code, vt.description,
           COUNT(*)
    FROM vehicles v
    JOIN year_enum y ON v.year_id = y.id
    JOIN make_enum mk ON v.make_id = mk.id
    JOIN model_enum md ON v.model_id = md.id
    LEFT JOIN model_year_enum my ON v.model_year_id = my.id
    LEFT JOIN fuel_type_enum ft ON v.fuel_type_id = ft.id
    LEFT JOIN vehicle_type_enum vt ON v.vehicle_type_id = vt.id
    WHERE y.year IN ({years})
    GROUP BY v.make_id, v.model_id, v.model_year_id, v.fuel_type_id, v.vehicle_type_id
"""

_CACHED_SQL = """
    SELECT c.make_id, mk.name, c.model_id, md.name,
           c.model_year_id, my.year,
           c.fuel_type_id, ft.code, ft.description,
           c.vehicle_type_id, vt.code, vt.description,
           c.record_count
    FROM canonical_hierarchy_cache c
    JOIN make_enum mk ON c.make_id = mk.id
    JOIN model_enum md ON c.model_id = md.id
    LEFT JOIN model_year_enum my ON c.model_year_id = my.id
    LEFT JOIN fuel_type_enum ft ON c.fuel_type_id = ft.id
    LEFT JOIN vehicle_type_enum vt ON c.vehicle_type_id = vt.id
    WHERE c.cache_key = :key
"""


class HierarchySuperseded(Exception):
    """Raised inside a build when a newer generation was requested."""


def hierarchy_cache_key(curated_years: Iterable[int], mapping_version: int, data_generation: int = 0) -> str:
    payload = json.dumps(
        {"years": sorted(set(curated_years)), "mappings": mapping_version, "data": data_generation}
    )
    return hashlib.sha256(payload.encode()).hexdigest()[:16]


@dataclass
class HierarchyStatus:
    generation: int
    published_key: str | None
    in_flight: bool
    memoized: int


def assemble_hierarchy(
    rows: Iterable[tuple[Any, ...]],
    cache_key: str,
    curated_years: Iterable[int],
    mapping_version: int,
    check: Callable[[], None] | None = None,
) -> CanonicalHierarchy:
    """Fold aggregate rows into the nested structure.

    check() is called every _FETCH_BATCH rows so a caller can abort.
    """
    makes: dict[int, CanonicalMake] = {}
    models: dict[tuple[int, int], CanonicalModel] = {}
    fuels: dict[tuple[int, int, int | None], dict[int, FuelTypeInfo]] = {}
    types: dict[tuple[int, int], dict[int | None, VehicleTypeInfo]] = {}

    for i, row in enumerate(rows):
        if check is not None and i % _FETCH_BATCH == 0:
            check()
        (make_id, make_name, model_id, model_name, my_id, my_year,
         fuel_id, fuel_code, fuel_desc, vt_id, vt_code, vt_desc, count) = row
        count = int(count)

        make = makes.get(make_id)
        if make is None:
            make = makes[make_id] = CanonicalMake(make_id, make_name)
        model = models.get((make_id, model_id))
        if model is None:
            model = models[(make_id, model_id)] = CanonicalModel(model_id, model_name, make_id, make_name)
            make.models.append(model)
        model.record_count += count
        if my_id is not None and my_year is not None:
            model.model_year_values[my_id] = int(my_year)

        fuel_bucket = fuels.setdefault((make_id, model_id, my_id), {})
        existing = fuel_bucket.get(fuel_id if fuel_id is not None else -1)
        if fuel_id is None:
            merged = FuelTypeInfo.placeholder(count + (existing.record_count if existing else 0))
            fuel_bucket[merged.id] = merged
        else:
            fuel_bucket[fuel_id] = FuelTypeInfo(
                fuel_id, fuel_code, fuel_desc, count + (existing.record_count if existing else 0)
            )

        type_bucket = types.setdefault((make_id, model_id), {})
        prior = type_bucket.get(vt_id)
        type_bucket[vt_id] = VehicleTypeInfo(vt_id, vt_code, vt_desc, count + (prior.record_count if prior else 0))

    for (make_id, model_id, my_id), bucket in fuels.items():
        model = models[(make_id, model_id)]
        model.model_years[my_id] = sorted(bucket.values(), key=lambda f: (-f.record_count, f.id))
    for key, bucket in types.items():
        models[key].vehicle_types = sorted(bucket.values(), key=lambda t: (-t.record_count, t.code or ""))

    ordered = sorted(makes.values(), key=lambda m: m.make_name)
    for make in ordered:
        make.models.sort(key=lambda m: m.model_name)
    return CanonicalHierarchy(
        cache_key=cache_key,
        curated_years=tuple(sorted(set(curated_years))),
        mapping_version=mapping_version,
        makes=ordered,
    )


class HierarchyService:
    """Builds, memoizes and publishes canonical hierarchies."""

    def __init__(
        self,
        db: Database,
        generations: GenerationManager,
        years_provider: Callable[[], YearConfiguration],
    ) -> None:
        self.db = db
        self.generations = generations
        self._years_provider = years_provider
        self._lock = threading.Lock()
        self._generation = 0
        self._memo: dict[str, CanonicalHierarchy] = {}
        self._published: CanonicalHierarchy | None = None
        self._in_flight: Future[CanonicalHierarchy | None] | None = None
        self._executor: ThreadPoolExecutor | None = None

    # ------------------------------------------------------------------
    # Generation bookkeeping
    # ------------------------------------------------------------------

    def _next_generation(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def _check(self, generation: int) -> Callable[[], None]:
        def check() -> None:
            if not self.is_current(generation):
                raise HierarchySuperseded(generation)

        return check

    def _publish(self, generation: int, hierarchy: CanonicalHierarchy) -> bool:
        with self._lock:
            self._memo[hierarchy.cache_key] = hierarchy
            if generation != self._generation:
                return False
            self._published = hierarchy
            return True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def current(self) -> CanonicalHierarchy | None:
        """Latest published hierarchy, if any."""
        with self._lock:
            return self._published

    def _resolve_years(self, curated_years: Iterable[int] | None) -> list[int]:
        years = sorted(set(curated_years)) if curated_years is not None else self._years_provider().sorted_curated
        if not years:
            raise RegularizationError.no_curated_years()
        return years

    def generate(
        self,
        curated_years: Iterable[int] | None = None,
        force_refresh: bool = False,
    ) -> CanonicalHierarchy:
        """Return the hierarchy for the given (or configured) curated years.

        Served from memory or the persisted cache when the key matches,
        unless force_refresh. A synchronous build always returns its result
        to its own caller; it is only published if no newer request arrived
        meanwhile.

        Raises:
            RegularizationError: no curated years.
        """
        years = self._resolve_years(curated_years)
        stamp = self.generations.current()
        version = stamp.mapping_version
        key = hierarchy_cache_key(years, version, stamp.data_generation)
        generation = self._next_generation()

        if not force_refresh:
            with self._lock:
                memo = self._memo.get(key)
            if memo is not None:
                self._publish(generation, memo)
                return memo

        hierarchy = self._build(key, years, version, check=None, use_persisted=not force_refresh)
        published = self._publish(generation, hierarchy)
        logger.info(
            "canonical_hierarchy_ready",
            cache_key=key,
            makes=len(hierarchy.makes),
            models=hierarchy.model_count,
            published=published,
        )
        return hierarchy

    def request_rebuild(
        self,
        curated_years: Iterable[int] | None = None,
    ) -> Future[CanonicalHierarchy | None]:
        """Rebuild in the background, superseding any in-flight build.

        The returned future resolves to the hierarchy, or None if a newer
        request superseded this one.
        """
        years = self._resolve_years(curated_years)
        generation = self._next_generation()
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="saaq-hierarchy")
            executor = self._executor
        future = executor.submit(self._background_build, generation, years)
        with self._lock:
            self._in_flight = future
        logger.debug("hierarchy_rebuild_requested", generation=generation, years=years)
        return future

    def _background_build(self, generation: int, years: list[int]) -> CanonicalHierarchy | None:
        check = self._check(generation)
        try:
            check()
            stamp = self.generations.current()
            version = stamp.mapping_version
            key = hierarchy_cache_key(years, version, stamp.data_generation)
            hierarchy = self._build(key, years, version, check=check, use_persisted=False)
        except HierarchySuperseded:
            logger.info("hierarchy_build_superseded", generation=generation)
            return None
        if not self._publish(generation, hierarchy):
            logger.info("hierarchy_build_discarded", generation=generation)
            return None
        logger.info("canonical_hierarchy_ready", cache_key=hierarchy.cache_key, generation=generation)
        return hierarchy

    def invalidate(self) -> None:
        """Forget memoized and published hierarchies; supersede in-flight builds."""
        with self._lock:
            self._generation += 1
            self._memo.clear()
            self._published = None

    def status(self) -> HierarchyStatus:
        with self._lock:
            return HierarchyStatus(
                generation=self._generation,
                published_key=self._published.cache_key if self._published else None,
                in_flight=self._in_flight is not None and not self._in_flight.done(),
                memoized=len(self._memo),
            )

    def shutdown(self) -> None:
        with self._lock:
            self._generation += 1
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def _build(
        self,
        key: str,
        years: list[int],
        version: int,
        check: Callable[[], None] | None,
        use_persisted: bool,
    ) -> CanonicalHierarchy:
        with operation(
            "hierarchy_build",
            stopped_by=(HierarchySuperseded,),
            cache_key=key,
            curated_years=years,
            mapping_version=version,
        ) as outcome:
            with self.db.read_handle("hierarchy") as handle:
                cached = handle.all(_CACHED_SQL, {"key": key}) if use_persisted else []
                rows = cached or self._aggregate(handle, years, check)
            outcome["source"] = "persisted" if cached else "aggregated"
            outcome["rows"] = len(rows)
            if cached:
                return assemble_hierarchy(cached, key, years, version)

            hierarchy = assemble_hierarchy(rows, key, years, version, check=check)
            if check is not None:
                check()
            self._persist(key, rows)
            return hierarchy

    @staticmethod
    def _aggregate(
        handle: StoreHandle,
        years: list[int],
        check: Callable[[], None] | None,
    ) -> list[tuple[Any, ...]]:
        params: dict[str, Any] = {}
        sql = _AGGREGATE_SQL.format(years=bind_in("cy", years, params))
        result = handle.execute(sql, params)
        rows: list[tuple[Any, ...]] = []
        while True:
            if check is not None:
                check()
            batch = result.fetchmany(_FETCH_BATCH)
            if not batch:
                break
            rows.extend(tuple(r) for r in batch)
        return rows

    def _persist(self, key: str, rows: list[tuple[Any, ...]]) -> None:
        """Replace the persisted cache with rows for this key."""
        records = [
            {
                "cache_key": key,
                "make_id": r[0],
                "model_id": r[2],
                "model_year_id": r[4],
                "fuel_type_id": r[6],
                "vehicle_type_id": r[9],
                "record_count": int(r[12]),
            }
            for r in rows
        ]
        with self.db.bulk_writer() as writer:
            writer.delete_where(CanonicalHierarchyCache, "1 = 1", {})
            writer.insert_many(CanonicalHierarchyCache, records)
        logger.debug("hierarchy_cache_persisted", cache_key=key, rows=len(records))
