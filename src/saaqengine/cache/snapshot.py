"""Immutable filter-cache snapshot and the loader that builds one.

A snapshot holds every dimension value of one entity scope with its display
label, lookup indexes for token resolution, and (vehicle scope) the
regularization badges. It is never mutated after load_snapshot() returns;
the FilterCache swaps whole snapshots.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import structlog

from saaqengine.dimensions.labels import (
    coded_label,
    geographic_label,
    model_label,
    regularized_make_suffix,
    regularized_model_suffix,
    uncurated_suffix,
)
from saaqengine.dimensions.registry import Dimension, DimensionSpec, dimensions_for
from saaqengine.models import EntityScope
from saaqengine.regularization import store as reg_store

if TYPE_CHECKING:
    from saaqengine.regularization.models import MakeRegularizationDisplay, RegularizationDisplay
    from saaqengine.regularization.years import YearConfiguration
    from saaqengine.store.database import StoreHandle
    from saaqengine.store.generation import GenerationStamp

logger = structlog.get_logger()

Pair = tuple[int, int]

_CODED = {
    Dimension.VEHICLE_CLASS,
    Dimension.VEHICLE_TYPE,
    Dimension.FUEL_TYPE,
    Dimension.GENDER,
    Dimension.LICENSE_TYPE,
}


@dataclass(frozen=True)
class DimensionItem:
    """One dimension value as shown to a caller.

    display_name is the undecorated label ("CR-V (HONDA)", "Laval (13)");
    badge is the regularization or uncurated suffix, empty when none.
    """

    id: int
    value: str | int
    display_name: str
    description: str | None = None
    parent_id: int | None = None
    badge: str = ""

    @property
    def label(self) -> str:
        return self.display_name + self.badge


def _fold(key: str) -> str:
    return key.strip().casefold()


@dataclass(frozen=True)
class _LookupIndex:
    exact: Mapping[str, tuple[int, ...]]
    folded: Mapping[str, tuple[int, ...]]

    @classmethod
    def build(cls, items: Iterable[DimensionItem]) -> _LookupIndex:
        exact: dict[str, list[int]] = {}
        folded: dict[str, list[int]] = {}
        for item in items:
            keys = {str(item.value), item.display_name}
            if item.description:
                keys.add(item.description)
            for key in keys:
                exact.setdefault(key.strip(), []).append(item.id)
                folded.setdefault(_fold(key), []).append(item.id)
        return cls(
            MappingProxyType({k: tuple(dict.fromkeys(v)) for k, v in exact.items()}),
            MappingProxyType({k: tuple(dict.fromkeys(v)) for k, v in folded.items()}),
        )

    def find(self, key: str) -> tuple[int, ...]:
        """Exact match first, then case-insensitive."""
        found = self.exact.get(key.strip())
        if found:
            return found
        return self.folded.get(_fold(key), ())


@dataclass(frozen=True)
class CacheSnapshot:
    scope: EntityScope
    stamp: GenerationStamp
    years: YearConfiguration
    items: Mapping[Dimension, tuple[DimensionItem, ...]]
    regularization: Mapping[Pair, RegularizationDisplay] = field(default_factory=dict)
    make_regularization: Mapping[int, MakeRegularizationDisplay] = field(default_factory=dict)
    uncurated_pairs: Mapping[Pair, int] = field(default_factory=dict)
    uncurated_makes: Mapping[int, int] = field(default_factory=dict)
    model_to_make: Mapping[int, int] = field(default_factory=dict)
    curated_makes: frozenset[int] = frozenset()
    curated_pairs: frozenset[Pair] = frozenset()
    built_at: float = field(default_factory=time.time)
    _indexes: dict[Dimension, _LookupIndex] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        for dimension, items in self.items.items():
            self._indexes[dimension] = _LookupIndex.build(items)

    def dimension_items(self, dimension: Dimension) -> tuple[DimensionItem, ...]:
        return self.items.get(dimension, ())

    def lookup(self, dimension: Dimension, key: str) -> tuple[int, ...]:
        """Ids whose value, description or display name equals key."""
        index = self._indexes.get(dimension)
        if index is None:
            return ()
        return index.find(key)

    def lookup_model(self, name: str, make_name: str | None) -> tuple[int, ...]:
        """Models by name, narrowed to one make when make_name is given."""
        ids = self.lookup(Dimension.MODEL, name)
        if make_name is None or not ids:
            return ids
        make_ids = set(self.lookup(Dimension.MAKE, make_name))
        return tuple(i for i in ids if self.model_to_make.get(i) in make_ids)

    @property
    def item_count(self) -> int:
        return sum(len(v) for v in self.items.values())


# ============================================================================
# LOADING
# ============================================================================


def _display_name(spec: DimensionSpec, value: Any, description: str | None) -> str:
    if spec.dimension in (Dimension.ADMIN_REGION, Dimension.MRC):
        return geographic_label(description or str(value), str(value))
    if spec.dimension is Dimension.MUNICIPALITY:
        return geographic_label(description or str(value), str(value), unlisted_when_unnamed=True)
    if spec.dimension in _CODED:
        return coded_label(str(value), description)
    return str(value)


def _load_plain(handle: StoreHandle, spec: DimensionSpec) -> tuple[DimensionItem, ...]:
    label = f", {spec.label_column}" if spec.label_column else ", NULL"
    rows = handle.all(f"SELECT id, {spec.value_column}{label} FROM {spec.table} ORDER BY {spec.value_column}")
    return tuple(DimensionItem(r[0], r[1], _display_name(spec, r[1], r[2]), r[2]) for r in rows)


def _load_models(
    handle: StoreHandle,
    regularization: Mapping[Pair, RegularizationDisplay],
    uncurated_pairs: Mapping[Pair, int],
) -> tuple[DimensionItem, ...]:
    rows = handle.all(
        """
        SELECT md.id, md.name, md.make_id, mk.name FROM model_enum md
        JOIN make_enum mk ON md.make_id = mk.id
        ORDER BY md.name, mk.name
        """
    )
    items = []
    for model_id, name, make_id, make_name in rows:
        key = (make_id, model_id)
        badge = ""
        if key in regularization:
            info = regularization[key]
            badge = regularized_model_suffix(info.canonical_make, info.canonical_model, info.record_count)
        elif key in uncurated_pairs:
            badge = uncurated_suffix(uncurated_pairs[key])
        items.append(DimensionItem(model_id, name, model_label(name, make_name), None, make_id, badge))
    return tuple(items)


def _decorate_makes(
    items: tuple[DimensionItem, ...],
    make_regularization: Mapping[int, MakeRegularizationDisplay],
    uncurated_makes: Mapping[int, int],
) -> tuple[DimensionItem, ...]:
    decorated = []
    for item in items:
        badge = ""
        if item.id in make_regularization:
            info = make_regularization[item.id]
            badge = regularized_make_suffix(info.canonical_make, info.record_count)
        elif item.id in uncurated_makes:
            badge = uncurated_suffix(uncurated_makes[item.id])
        decorated.append(DimensionItem(item.id, item.value, item.display_name, item.description, None, badge))
    return tuple(decorated)


def load_snapshot(
    handle: StoreHandle,
    scope: EntityScope,
    stamp: GenerationStamp,
    years: YearConfiguration,
) -> CacheSnapshot:
    """Read every dimension of a scope (plus regularization badges) into a snapshot."""
    started = time.monotonic()
    items: dict[Dimension, tuple[DimensionItem, ...]] = {}
    extra: dict[str, Any] = {}

    if scope is EntityScope.VEHICLE:
        regularization = reg_store.pair_display_info(handle)
        make_regularization = reg_store.make_display_info(handle)
        uncurated = {p.key: p.record_count for p in reg_store.uncurated_pairs(handle, years)}
        uncurated_makes = reg_store.uncurated_makes(handle, years)
        extra = {
            "regularization": MappingProxyType(regularization),
            "make_regularization": MappingProxyType(make_regularization),
            "uncurated_pairs": MappingProxyType(uncurated),
            "uncurated_makes": MappingProxyType(uncurated_makes),
            "curated_makes": frozenset(reg_store.curated_makes(handle, years)),
            "curated_pairs": frozenset(reg_store.curated_pairs(handle, years)),
        }

    for spec in dimensions_for(scope):
        if spec.dimension is Dimension.MODEL:
            items[spec.dimension] = _load_models(handle, extra["regularization"], extra["uncurated_pairs"])
        elif spec.dimension is Dimension.MAKE:
            items[spec.dimension] = _decorate_makes(
                _load_plain(handle, spec), extra["make_regularization"], extra["uncurated_makes"]
            )
        else:
            items[spec.dimension] = _load_plain(handle, spec)

    if scope is EntityScope.VEHICLE:
        extra["model_to_make"] = MappingProxyType(
            {item.id: item.parent_id for item in items[Dimension.MODEL] if item.parent_id is not None}
        )

    snapshot = CacheSnapshot(
        scope=scope,
        stamp=stamp,
        years=years,
        items=MappingProxyType(items),
        **extra,
    )
    logger.debug(
        "snapshot_loaded",
        scope=scope.value,
        items=snapshot.item_count,
        elapsed_ms=round((time.monotonic() - started) * 1000, 1),
    )
    return snapshot
