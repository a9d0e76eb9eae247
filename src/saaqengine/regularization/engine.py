"""RegularizationEngine: curated mappings between spelling eras.

Uncurated years spell some makes and models differently from curated years
("CRV" vs "CR-V"). A mapping ties an uncurated (make, model[, model year])
to its canonical (make, model), optionally pinning fuel type and vehicle
type. Filters are then expanded in both directions so a query for either
spelling finds both.

Invariant: every mapping of one uncurated make resolves to the same
canonical make. add_mapping() checks it inside the write transaction and
raises ConflictingMapping before anything is written.
"""

from __future__ import annotations

import dataclasses
import threading
import time
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import text

from saaqengine.config.models import RegularizationConfig
from saaqengine.core.errors import ConflictingMapping, RegularizationError
from saaqengine.models import GenerationKind, MakeEnum, MakeModelRegularization, ModelEnum
from saaqengine.regularization import store
from saaqengine.regularization.autoassign import Candidate, plan_auto_regularization, rank_candidates
from saaqengine.regularization.hierarchy import HierarchyService
from saaqengine.regularization.models import (
    CanonicalHierarchy,
    DetailedStatistics,
    Expansion,
    FieldCoverage,
    MakeRegularizationDisplay,
    MappingRecord,
    MappingRequest,
    RegularizationDisplay,
    RegularizationStatistics,
    UncuratedPair,
)
from saaqengine.regularization.years import YearConfiguration
from saaqengine.store.generation import GenerationManager
from saaqengine.store.sql import bind_in

if TYPE_CHECKING:
    from concurrent.futures import Future

    from sqlmodel import Session

    from saaqengine.query.filters import FilterIds
    from saaqengine.store.database import Database, StoreHandle

logger = structlog.get_logger()


class RegularizationEngine:
    """Mapping table owner, filter expander and hierarchy front end."""

    def __init__(
        self,
        db: Database,
        generations: GenerationManager,
        years: YearConfiguration,
        config: RegularizationConfig | None = None,
    ) -> None:
        self.db = db
        self.generations = generations
        self.config = config or RegularizationConfig()
        self._years = years
        self._years_lock = threading.Lock()
        self.hierarchy = HierarchyService(db, generations, lambda: self.year_configuration)

    # ------------------------------------------------------------------
    # Year configuration
    # ------------------------------------------------------------------

    @property
    def year_configuration(self) -> YearConfiguration:
        with self._years_lock:
            return self._years

    def set_year_configuration(self, years: YearConfiguration) -> None:
        """Swap the curated/uncurated split. Drops memoized hierarchies."""
        with self._years_lock:
            self._years = years
        self.hierarchy.invalidate()
        logger.info("year_configuration_changed", **years.to_dict())

    # ------------------------------------------------------------------
    # Mapping mutation
    # ------------------------------------------------------------------

    def add_mapping(self, request: MappingRequest) -> MappingRecord:
        """Store a mapping, replacing any existing one for the same triplet.

        Raises:
            ConflictingMapping: the uncurated make already maps to a
                different canonical make. Nothing is written.
            RegularizationError: unknown make/model ids, or a model that
                does not belong to the given make.
        """
        years = self.year_configuration
        with self.db.immediate_transaction() as session:
            self._validate_ids(session, request)
            self._validate_make_consistency(session, request)

            mapping_id = self._write_mapping(session, request, years)
            GenerationManager.bump(
                session,
                GenerationKind.MAPPINGS,
                f"add {request.uncurated_make_id}/{request.uncurated_model_id}",
            )

        logger.info(
            "mapping_saved",
            mapping_id=mapping_id,
            uncurated=(request.uncurated_make_id, request.uncurated_model_id),
            canonical=(request.canonical_make_id, request.canonical_model_id),
            model_year_id=request.model_year_id,
        )
        record = self.get_mapping(mapping_id)
        if record is None:
            raise RegularizationError.unknown_id("mapping", mapping_id)
        return record

    save_mapping = add_mapping

    def _validate_ids(self, session: Session, request: MappingRequest) -> None:
        for kind, make_id, model_id in (
            ("uncurated", request.uncurated_make_id, request.uncurated_model_id),
            ("canonical", request.canonical_make_id, request.canonical_model_id),
        ):
            if session.get(MakeEnum, make_id) is None:
                raise RegularizationError.unknown_id(f"{kind} make", make_id)
            model = session.get(ModelEnum, model_id)
            if model is None or model.make_id != make_id:
                raise RegularizationError.unknown_id(f"{kind} model", model_id)

    def _validate_make_consistency(self, session: Session, request: MappingRequest) -> None:
        rows = session.execute(
            text(
                """
                SELECT DISTINCT canonical_make_id FROM make_model_regularization
                WHERE uncurated_make_id = :make_id AND canonical_make_id != :canonical
                """
            ),
            {"make_id": request.uncurated_make_id, "canonical": request.canonical_make_id},
        ).fetchall()
        if not rows:
            return
        existing = session.get(MakeEnum, rows[0][0])
        uncurated = session.get(MakeEnum, request.uncurated_make_id)
        requested = session.get(MakeEnum, request.canonical_make_id)
        logger.warning(
            "mapping_conflict",
            uncurated_make_id=request.uncurated_make_id,
            existing_canonical_make_id=rows[0][0],
            requested_canonical_make_id=request.canonical_make_id,
        )
        raise ConflictingMapping.make_already_mapped(
            uncurated.name if uncurated else str(request.uncurated_make_id),
            existing.name if existing else str(rows[0][0]),
            requested.name if requested else str(request.canonical_make_id),
        )

    def _write_mapping(self, session: Session, request: MappingRequest, years: YearConfiguration) -> int:
        params: dict[str, Any] = {
            "make_id": request.uncurated_make_id,
            "model_id": request.uncurated_model_id,
        }
        count, start, end = 0, None, None
        if years.uncurated:
            in_years = bind_in("uy", years.uncurated, params)
            sql = f"""
                SELECT COUNT(*), MIN(y.year), MAX(y.year) FROM vehicles v
                JOIN year_enum y ON v.year_id = y.id
                WHERE v.make_id = :make_id AND v.model_id = :model_id
                  AND y.year IN ({in_years})
            """
            if request.model_year_id is not None:
                sql += " AND v.model_year_id = :model_year_id"
                params["model_year_id"] = request.model_year_id
            row = session.execute(text(sql), params).fetchone()
            if row is not None:
                count, start, end = int(row[0] or 0), row[1], row[2]

        session.execute(
            text(
                """
                INSERT OR REPLACE INTO make_model_regularization
                    (uncurated_make_id, uncurated_model_id, model_year_id,
                     canonical_make_id, canonical_model_id, fuel_type_id, vehicle_type_id,
                     record_count, year_range_start, year_range_end, created_date)
                VALUES (:um, :ud, :my, :cm, :cd, :ft, :vt, :count, :start, :end, :created)
                """
            ),
            {
                "um": request.uncurated_make_id,
                "ud": request.uncurated_model_id,
                "my": request.model_year_id,
                "cm": request.canonical_make_id,
                "cd": request.canonical_model_id,
                "ft": request.fuel_type_id if request.model_year_id is not None else None,
                "vt": request.vehicle_type_id,
                "count": count,
                "start": start,
                "end": end,
                "created": time.time(),
            },
        )
        mapping_id = session.execute(text("SELECT last_insert_rowid()")).scalar()
        return int(mapping_id)

    def delete_mapping(self, mapping_id: int) -> bool:
        """Delete one mapping. Returns False if it did not exist."""
        with self.db.immediate_transaction() as session:
            mapping = session.get(MakeModelRegularization, mapping_id)
            if mapping is None:
                return False
            session.delete(mapping)
            GenerationManager.bump(session, GenerationKind.MAPPINGS, f"delete {mapping_id}")
        logger.info("mapping_deleted", mapping_id=mapping_id)
        return True

    def delete_mappings_for_pair(self, make_id: int, model_id: int) -> int:
        """Delete every mapping (wildcard and triplets) of an uncurated pair."""
        with self.db.immediate_transaction() as session:
            result = session.execute(
                text(
                    """
                    DELETE FROM make_model_regularization
                    WHERE uncurated_make_id = :make_id AND uncurated_model_id = :model_id
                    """
                ),
                {"make_id": make_id, "model_id": model_id},
            )
            deleted = int(result.rowcount or 0)  # type: ignore[attr-defined]
            if deleted:
                GenerationManager.bump(session, GenerationKind.MAPPINGS, f"delete pair {make_id}/{model_id}")
        logger.info("pair_mappings_deleted", make_id=make_id, model_id=model_id, deleted=deleted)
        return deleted

    def refresh_record_counts(self) -> int:
        """Recompute record_count and year ranges of every mapping (after imports)."""
        years = self.year_configuration
        with self.db.read_handle("mapping_counts") as handle:
            mappings = store.load_mappings(handle, 0)
            updates = []
            for m in mappings:
                count = store.record_count(handle, years, m.uncurated_make_id, m.uncurated_model_id, m.model_year_id)
                start, end = store.uncurated_year_range(handle, years, m.uncurated_make_id, m.uncurated_model_id)
                updates.append({"id": m.id, "count": count, "start": start, "end": end})
        if not updates:
            return 0
        with self.db.immediate_transaction() as session:
            for u in updates:
                session.execute(
                    text(
                        """
                        UPDATE make_model_regularization
                        SET record_count = :count, year_range_start = :start, year_range_end = :end
                        WHERE id = :id
                        """
                    ),
                    u,
                )
        logger.info("mapping_counts_refreshed", mappings=len(updates))
        return len(updates)

    # ------------------------------------------------------------------
    # Mapping reads
    # ------------------------------------------------------------------

    def _total_uncurated(self, handle: StoreHandle) -> int:
        return store.total_uncurated_records(handle, self.year_configuration)

    def get_all_mappings(self) -> list[MappingRecord]:
        with self.db.read_handle("mappings") as handle:
            return store.load_mappings(handle, self._total_uncurated(handle))

    def get_mapping(self, mapping_id: int) -> MappingRecord | None:
        with self.db.read_handle("mappings") as handle:
            found = store.load_mappings(handle, self._total_uncurated(handle), "WHERE r.id = :id", {"id": mapping_id})
        return found[0] if found else None

    def get_mappings_for_pair(self, make_id: int, model_id: int) -> list[MappingRecord]:
        with self.db.read_handle("mappings") as handle:
            return store.load_mappings(
                handle,
                self._total_uncurated(handle),
                "WHERE r.uncurated_make_id = :make_id AND r.uncurated_model_id = :model_id",
                {"make_id": make_id, "model_id": model_id},
            )

    def display_info(self) -> dict[tuple[int, int], RegularizationDisplay]:
        with self.db.read_handle("mappings") as handle:
            return store.pair_display_info(handle)

    def make_display_info(self) -> dict[int, MakeRegularizationDisplay]:
        with self.db.read_handle("mappings") as handle:
            return store.make_display_info(handle)

    def find_uncurated_pairs(self, include_exact_matches: bool = False) -> list[UncuratedPair]:
        with self.db.read_handle("uncurated_pairs") as handle:
            return store.uncurated_pairs(handle, self.year_configuration, include_exact_matches)

    def uncurated_pairs_for_vehicle_type(self, vehicle_type_id: int) -> set[tuple[int, int]]:
        with self.db.read_handle("mappings") as handle:
            return store.pairs_for_vehicle_type(handle, vehicle_type_id)

    def mapped_vehicle_types(self) -> list[tuple[int, str, str | None]]:
        with self.db.read_handle("mappings") as handle:
            return store.mapped_vehicle_types(handle)

    def statistics(self) -> RegularizationStatistics:
        with self.db.read_handle("mapping_stats") as handle:
            return self._statistics(handle)

    def _statistics(self, handle: StoreHandle) -> RegularizationStatistics:
        mapping_count = int(handle.scalar("SELECT COUNT(*) FROM make_model_regularization") or 0)
        covered = sum(info.record_count for info in store.pair_display_info(handle).values())
        return RegularizationStatistics(mapping_count, covered, self._total_uncurated(handle))

    def detailed_statistics(self) -> DetailedStatistics:
        """Coverage of make/model, fuel type and vehicle type among uncurated records.

        A record counts for fuel type when a triplet mapping of its model
        year pins one; for vehicle type when any mapping of its pair does.
        """
        years = self.year_configuration
        with self.db.read_handle("mapping_stats") as handle:
            summary = self._statistics(handle)
            wildcard = int(
                handle.scalar("SELECT COUNT(*) FROM make_model_regularization WHERE model_year_id IS NULL") or 0
            )
            fuel_assigned = 0
            type_assigned = 0
            if years.uncurated:
                params: dict[str, Any] = {}
                in_years = bind_in("uy", years.uncurated, params)
                fuel_assigned = int(
                    handle.scalar(
                        f"""
                        SELECT COUNT(*) FROM vehicles v JOIN year_enum y ON v.year_id = y.id
                        WHERE y.year IN ({in_years}) AND EXISTS (
                            SELECT 1 FROM make_model_regularization r
                            WHERE r.uncurated_make_id = v.make_id AND r.uncurated_model_id = v.model_id
                              AND r.model_year_id = v.model_year_id AND r.fuel_type_id IS NOT NULL)
                        """,
                        params,
                    )
                    or 0
                )
                type_assigned = int(
                    handle.scalar(
                        f"""
                        SELECT COUNT(*) FROM vehicles v JOIN year_enum y ON v.year_id = y.id
                        WHERE y.year IN ({in_years}) AND EXISTS (
                            SELECT 1 FROM make_model_regularization r
                            WHERE r.uncurated_make_id = v.make_id AND r.uncurated_model_id = v.model_id
                              AND r.vehicle_type_id IS NOT NULL)
                        """,
                        params,
                    )
                    or 0
                )
        covered = summary.covered_records
        return DetailedStatistics(
            summary=summary,
            make_model=FieldCoverage(covered, summary.total_uncurated_records),
            fuel_type=FieldCoverage(fuel_assigned, covered),
            vehicle_type=FieldCoverage(type_assigned, covered),
            wildcard_mappings=wildcard,
            triplet_mappings=summary.mapping_count - wildcard,
        )

    # ------------------------------------------------------------------
    # Filter expansion
    # ------------------------------------------------------------------

    def expand_make_ids(self, make_ids: Iterable[int]) -> list[int]:
        """Makes plus every make tied to them by a mapping, in both directions."""
        with self.db.read_handle("expand") as handle:
            return sorted(self._expand_makes(handle, set(make_ids)))

    @staticmethod
    def _expand_makes(handle: StoreHandle, make_ids: set[int]) -> set[int]:
        if not make_ids:
            return set()
        expanded = set(make_ids)
        for um, _ud, cm, _cd in store.mapping_rows_touching(handle, uncurated_makes=make_ids):
            if um in make_ids:
                expanded.add(cm)
        for um, _ud, _cm, _cd in store.mapping_rows_touching(handle, canonical_makes=expanded):
            expanded.add(um)
        return expanded

    def expand_make_model_ids(
        self,
        make_ids: Iterable[int],
        model_ids: Iterable[int],
        coupling: bool = True,
    ) -> tuple[list[int], list[int]]:
        """Expand a make/model filter through model-level mappings.

        Step 1 adds the canonical model of every selected uncurated model.
        Step 2 adds every uncurated model mapped onto a (now) selected
        canonical model. Makes of the mappings involved are added when
        coupling is on, or when the filter already constrained makes.
        """
        makes, models = set(make_ids), set(model_ids)
        if not makes and not models:
            return sorted(makes), sorted(models)
        with self.db.read_handle("expand") as handle:
            new_makes, new_models = self._expand_models(handle, makes, models, coupling)
        return sorted(new_makes), sorted(new_models)

    @staticmethod
    def _expand_models(
        handle: StoreHandle,
        makes: set[int],
        models: set[int],
        coupling: bool,
    ) -> tuple[set[int], set[int]]:
        expanded_makes, expanded_models = set(makes), set(models)
        if not models:
            return expanded_makes, expanded_models
        touch_makes = coupling or bool(makes)

        for um, ud, cm, cd in store.mapping_rows_touching(handle, uncurated_models=models):
            if ud in models:
                expanded_models.add(cd)
                if touch_makes:
                    expanded_makes.update((um, cm))
        for um, ud, cm, _cd in store.mapping_rows_touching(handle, canonical_models=expanded_models):
            expanded_models.add(ud)
            if touch_makes:
                expanded_makes.update((um, cm))
        return expanded_makes, expanded_models

    def translate_filter(self, ids: FilterIds, coupling: bool | None = None) -> FilterIds:
        """Apply bidirectional expansion to a resolved filter.

        With coupling and no explicit make filter, the makes of every
        resulting model are injected so the make constraint follows the
        mapping. Without coupling, make and model constraints stay
        independent.
        """
        coupling = self.config.coupling if coupling is None else coupling
        if not ids.makes and not ids.models:
            return dataclasses.replace(ids, regularized=True, expansion=Expansion())

        with self.db.read_handle("expand") as handle:
            makes = self._expand_makes(handle, set(ids.makes)) if ids.makes else set()
            models = set(ids.models)
            injected: set[int] = set()
            if ids.models:
                model_makes, models = self._expand_models(handle, set(ids.makes), models, coupling)
                if ids.makes:
                    makes |= model_makes
                elif coupling:
                    injected = model_makes | store.makes_of_models(handle, models)

        expansion = Expansion(
            added_make_ids=frozenset(makes - ids.makes),
            added_model_ids=frozenset(models - ids.models),
            injected_make_ids=frozenset(injected - makes - ids.makes),
        )
        logger.debug(
            "filter_expanded",
            added_makes=sorted(expansion.added_make_ids),
            added_models=sorted(expansion.added_model_ids),
            injected_makes=sorted(expansion.injected_make_ids),
            coupling=coupling,
        )
        return dataclasses.replace(
            ids,
            makes=frozenset(makes | injected | ids.makes),
            models=frozenset(models),
            regularized=True,
            expansion=expansion,
        )

    # ------------------------------------------------------------------
    # Canonical hierarchy
    # ------------------------------------------------------------------

    def generate_canonical_hierarchy(
        self,
        curated_years: Iterable[int] | None = None,
        force_refresh: bool = False,
    ) -> CanonicalHierarchy:
        return self.hierarchy.generate(curated_years, force_refresh)

    def request_hierarchy_rebuild(
        self, curated_years: Iterable[int] | None = None
    ) -> Future[CanonicalHierarchy | None]:
        return self.hierarchy.request_rebuild(curated_years)

    # ------------------------------------------------------------------
    # Auto-regularization
    # ------------------------------------------------------------------

    def auto_regularize_exact_matches(self) -> list[MappingRecord]:
        """Create mappings for uncurated pairs whose spelling exists in curated years.

        Pairs that already carry a mapping are skipped. Fuel types are pinned
        per model year only when the curated data is unambiguous; the vehicle
        type follows the configured priority list.
        """
        hierarchy = self.generate_canonical_hierarchy()
        years = self.year_configuration
        candidates = [p for p in self.find_uncurated_pairs(include_exact_matches=True) if p.exists_in_curated]

        created: list[MappingRecord] = []
        for pair in candidates:
            if pair.has_mapping:
                continue
            canonical = hierarchy.find_model(pair.make_id, pair.model_id)
            if canonical is None:
                continue
            with self.db.read_handle("auto_regularize") as handle:
                model_year_ids = store.uncurated_model_years(handle, years, pair.make_id, pair.model_id)
            for request in plan_auto_regularization(
                pair, canonical, model_year_ids, self.config.priority_vehicle_types
            ):
                created.append(self.add_mapping(request))
        logger.info("auto_regularization_complete", pairs=len(candidates), mappings=len(created))
        return created

    def suggest_canonical(self, make_id: int, model_id: int, limit: int = 10) -> list[Candidate]:
        """Curated models whose spelling is closest to an uncurated pair.

        Raises:
            RegularizationError: unknown make or model id.
        """
        with self.db.read_handle("suggest") as handle:
            rows = handle.all(
                """
                SELECT mk.name, md.name FROM model_enum md
                JOIN make_enum mk ON md.make_id = mk.id
                WHERE md.id = :model_id AND mk.id = :make_id
                """,
                {"make_id": make_id, "model_id": model_id},
            )
        if not rows:
            raise RegularizationError.unknown_id("model", model_id)
        make_name, model_name = rows[0]
        hierarchy = self.generate_canonical_hierarchy()
        models = [m for make in hierarchy.makes for m in make.models if (m.make_id, m.model_id) != (make_id, model_id)]
        return rank_candidates(make_name, model_name, models, limit=limit)
