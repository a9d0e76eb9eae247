"""QueryTranslator: FilterSpec labels -> FilterIds.

Resolution reads only the READY cache snapshot; regularization expansion
is delegated to the RegularizationEngine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from saaqengine.core.errors import CacheNotReady, QueryValidationError, UnresolvedFilterValue
from saaqengine.dimensions.registry import Dimension
from saaqengine.models import EntityScope
from saaqengine.query.filters import DIMENSION_ATTRS, FilterIds, FilterSpec, QueryOptions

if TYPE_CHECKING:
    from saaqengine.cache.filter_cache import FilterCache
    from saaqengine.cache.snapshot import CacheSnapshot
    from saaqengine.query.tokens import FilterToken
    from saaqengine.regularization.engine import RegularizationEngine

logger = structlog.get_logger()


def resolve_token(snapshot: CacheSnapshot, dimension: Dimension, token: FilterToken) -> tuple[int, ...]:
    """Ids a token stands for; empty when nothing matches.

    Models are matched on their "Model (Make)" label, then by name within
    the make in parentheses. Other dimensions try the code, the label,
    the bare name and the raw string in that order.
    """
    if dimension is Dimension.MODEL:
        found = snapshot.lookup(Dimension.MODEL, token.display_name)
        if found:
            return found
        return snapshot.lookup_model(token.name, token.code)

    for candidate in token.candidates:
        found = snapshot.lookup(dimension, candidate)
        if found:
            return found
    return ()


class QueryTranslator:
    def __init__(self, cache: FilterCache, regularization: RegularizationEngine) -> None:
        self.cache = cache
        self.regularization = regularization

    def resolve(self, spec: FilterSpec, options: QueryOptions | None = None) -> FilterIds:
        """Resolve every label of a FilterSpec against the cache.

        Raises:
            QueryValidationError: malformed spec.
            CacheNotReady: cache not READY, or loaded for another scope.
            UnresolvedFilterValue: labels that match nothing, unless
                options.on_unresolved is "collect".
        """
        options = options or QueryOptions()
        spec.validate()
        snapshot = self.cache.snapshot
        if snapshot.scope is not spec.scope:
            raise CacheNotReady.in_state(f"ready for {snapshot.scope.value} queries")

        unresolved: dict[str, list[str]] = {}
        resolved: dict[str, Any] = {
            "years": self._resolve_years(snapshot, spec, unresolved),
            "model_years": self._resolve_numbers(snapshot, Dimension.MODEL_YEAR, spec.model_years, unresolved),
        }

        for dimension, tokens in spec.tokens().items():
            ids: set[int] = set()
            for token in tokens:
                found = resolve_token(snapshot, dimension, token)
                if found:
                    ids.update(found)
                else:
                    unresolved.setdefault(dimension.value, []).append(token.raw)
            resolved[DIMENSION_ATTRS[dimension]] = frozenset(ids)

        if unresolved and options.on_unresolved == "raise":
            logger.info("filter_unresolved", unresolved=unresolved)
            raise UnresolvedFilterValue.for_tokens(unresolved)

        ids = FilterIds(
            scope=spec.scope,
            axle_counts=frozenset(spec.axle_counts),
            age_ranges=tuple(spec.age_ranges),
            license_classes=frozenset(spec.license_classes),
            include_pre_schema_fuel_type=options.include_pre_schema_fuel_type,
            unresolved={k: tuple(v) for k, v in unresolved.items()},
            **resolved,
        )

        if (
            options.regularization_enabled
            and spec.scope is EntityScope.VEHICLE
            and not spec.limit_to_curated_years
        ):
            ids = self.regularization.translate_filter(ids, options.coupling)

        logger.debug("filter_resolved", filter=ids.to_dict())
        return ids

    @staticmethod
    def _resolve_years(snapshot: CacheSnapshot, spec: FilterSpec, unresolved: dict[str, list[str]]) -> frozenset[int]:
        if not spec.limit_to_curated_years:
            return QueryTranslator._resolve_numbers(snapshot, Dimension.YEAR, spec.years, unresolved)

        curated = snapshot.years.curated
        if not curated:
            raise QueryValidationError.invalid("no curated years are configured")
        if spec.years:
            selected = spec.years & curated
            if not selected:
                raise QueryValidationError.invalid(
                    "none of the selected years is curated",
                    years=sorted(spec.years),
                )
            return QueryTranslator._resolve_numbers(snapshot, Dimension.YEAR, selected, unresolved)

        # Every curated year that has been loaded.
        ids = {i for year in curated for i in snapshot.lookup(Dimension.YEAR, str(year))}
        if not ids:
            raise QueryValidationError.invalid("no curated year has been imported")
        return frozenset(ids)

    @staticmethod
    def _resolve_numbers(
        snapshot: CacheSnapshot,
        dimension: Dimension,
        values: set[int],
        unresolved: dict[str, list[str]],
    ) -> frozenset[int]:
        ids: set[int] = set()
        for value in sorted(values):
            found = snapshot.lookup(dimension, str(value))
            if found:
                ids.update(found)
            else:
                unresolved.setdefault(dimension.value, []).append(str(value))
        return frozenset(ids)

