"""FilterCache: owned, read-mostly service over dimension snapshots.

Lifecycle: UNINITIALIZED -> INITIALIZING -> READY, and back to
UNINITIALIZED only through invalidate(). A build runs on its own
connection; readers keep the previous snapshot until the new one is
swapped in under the lock. Concurrent initialize() calls join the build in
flight instead of starting their own, even across invalidate(): the
overtaken build finishes unpublished before the next one starts.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from saaqengine.cache.snapshot import CacheSnapshot, DimensionItem, load_snapshot
from saaqengine.core.errors import CacheNotReady
from saaqengine.core.logging import operation
from saaqengine.dimensions.registry import Dimension
from saaqengine.models import EntityScope

if TYPE_CHECKING:
    from saaqengine.regularization.models import MakeRegularizationDisplay, RegularizationDisplay
    from saaqengine.regularization.years import YearConfiguration
    from saaqengine.store.database import Database
    from saaqengine.store.generation import GenerationManager, GenerationStamp

logger = structlog.get_logger()


class CacheState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


@dataclass
class _Flight:
    """One snapshot build that other callers may wait on."""

    scope: EntityScope
    epoch: int
    done: threading.Event = field(default_factory=threading.Event)
    result: CacheSnapshot | None = None
    error: BaseException | None = None
    published: bool = False


class FilterCache:
    """Dimension values and regularization badges for filter resolution."""

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
        self._state = CacheState.UNINITIALIZED
        self._snapshot: CacheSnapshot | None = None
        self._flight: _Flight | None = None
        self._epoch = 0
        self._executor: ThreadPoolExecutor | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> CacheState:
        with self._lock:
            return self._state

    def is_ready(self) -> bool:
        return self.state is CacheState.READY

    def initialize(self, scope: EntityScope = EntityScope.VEHICLE, *, force: bool = False) -> CacheSnapshot:
        """Make a snapshot of scope current and return it.

        No-op when a READY snapshot of the same scope was built from the
        current generation stamp and year configuration. Otherwise builds,
        or waits for the build already in flight. At most one build runs at
        a time; a build overtaken by invalidate() is discarded and the
        caller rebuilds once it has finished.
        """
        while True:
            stamp = self.generations.current()
            years = self._years_provider()
            with self._lock:
                snapshot = self._snapshot
                if (
                    not force
                    and self._state is CacheState.READY
                    and snapshot is not None
                    and snapshot.scope is scope
                    and snapshot.stamp == stamp
                    and snapshot.years == years
                ):
                    return snapshot

                flight = self._flight
                if flight is None:
                    flight = _Flight(scope=scope, epoch=self._epoch)
                    self._flight = flight
                    self._state = CacheState.INITIALIZING
                    leader = True
                else:
                    leader = False

            if leader:
                snapshot = self._run_flight(flight, stamp, years)
                if flight.published:
                    return snapshot
                logger.debug("cache_build_discarded", scope=scope.value)
                force = False
                continue

            logger.debug("cache_build_joined", scope=flight.scope.value)
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            result = flight.result
            if flight.published and flight.scope is scope and result is not None and result.stamp == stamp:
                return result
            force = False

    def _run_flight(self, flight: _Flight, stamp: GenerationStamp, years: YearConfiguration) -> CacheSnapshot:
        try:
            with (
                operation("cache_build", scope=flight.scope, data_generation=stamp.data_generation) as outcome,
                self.db.read_handle("filter_cache") as handle,
            ):
                snapshot = load_snapshot(handle, flight.scope, stamp, years)
                outcome["items"] = snapshot.item_count
        except BaseException as e:
            with self._lock:
                self._flight = None
                if flight.epoch == self._epoch:
                    self._state = CacheState.READY if self._snapshot is not None else CacheState.UNINITIALIZED
            flight.error = e
            flight.done.set()
            raise

        with self._lock:
            self._flight = None
            flight.published = flight.epoch == self._epoch
            if flight.published:
                self._snapshot = snapshot
                self._state = CacheState.READY
        flight.result = snapshot
        flight.done.set()
        if flight.published:
            logger.info("cache_ready", scope=flight.scope.value, mapping_version=snapshot.stamp.mapping_version)
        return snapshot

    def initialize_async(self, scope: EntityScope = EntityScope.VEHICLE) -> Future[CacheSnapshot]:
        """initialize() on a background thread."""
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="saaq-cache")
            executor = self._executor
        return executor.submit(self.initialize, scope)

    def invalidate(self) -> None:
        """Drop the snapshot. A build in flight finishes but is not published."""
        with self._lock:
            self._epoch += 1
            self._snapshot = None
            self._state = CacheState.UNINITIALIZED
        logger.info("cache_invalidated")

    def shutdown(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> CacheSnapshot:
        """The READY snapshot.

        Raises:
            CacheNotReady: not initialized, or being built from nothing.
        """
        with self._lock:
            if self._snapshot is None:
                raise CacheNotReady.in_state(self._state.value)
            return self._snapshot

    def years(self) -> list[int]:
        return sorted(int(item.value) for item in self.snapshot.dimension_items(Dimension.YEAR))

    def items(self, dimension: Dimension | str) -> tuple[DimensionItem, ...]:
        return self.snapshot.dimension_items(Dimension(dimension))

    def makes(self, limit_to_curated_years: bool = False) -> list[DimensionItem]:
        snapshot = self.snapshot
        items = snapshot.dimension_items(Dimension.MAKE)
        if limit_to_curated_years:
            return [item for item in items if item.id in snapshot.curated_makes]
        return list(items)

    def models(
        self,
        limit_to_curated_years: bool = False,
        for_make_ids: Iterable[int] | None = None,
    ) -> list[DimensionItem]:
        snapshot = self.snapshot
        make_ids = set(for_make_ids) if for_make_ids is not None else None
        result = []
        for item in snapshot.dimension_items(Dimension.MODEL):
            if make_ids is not None and item.parent_id not in make_ids:
                continue
            if limit_to_curated_years and (item.parent_id, item.id) not in snapshot.curated_pairs:
                continue
            result.append(item)
        return result

    def regularization_info(self, make_id: int, model_id: int) -> RegularizationDisplay | None:
        return self.snapshot.regularization.get((make_id, model_id))

    def make_regularization(self, make_id: int) -> MakeRegularizationDisplay | None:
        return self.snapshot.make_regularization.get(make_id)

    def model_to_make(self) -> dict[int, int]:
        return dict(self.snapshot.model_to_make)
