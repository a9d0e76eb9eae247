"""Tests for label resolution against a loaded filter cache."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from saaqengine.core.errors import CacheNotReady, QueryValidationError, UnresolvedFilterValue
from saaqengine.dimensions.registry import Dimension
from saaqengine.engine import Engine
from saaqengine.models import EntityScope
from saaqengine.query.filters import FilterSpec, QueryOptions

PairIds = Callable[[str, str], tuple[int, int]]

CR_V = FilterSpec(values={Dimension.MODEL: ["CR-V (HONDA)"]})


class TestDirectResolution:
    def test_model_label(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        _, cr_v = pair_ids("HONDA", "CR-V")

        ids = seeded_engine.resolve(CR_V, QueryOptions())

        assert ids.models == {cr_v}
        assert ids.makes == frozenset()
        assert not ids.regularized

    def test_label_with_badge(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        _, crv = pair_ids("HONDA", "CRV")
        spec = FilterSpec(values={Dimension.MODEL: ["CRV (HONDA) → HONDA CR-V (14 records)"]})

        assert seeded_engine.resolve(spec, QueryOptions()).models == {crv}

    def test_case_insensitive_fallback(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        honda, crv = pair_ids("HONDA", "CRV")
        spec = FilterSpec(values={Dimension.MODEL: ["crv (honda)"], Dimension.MAKE: ["honda"]})

        ids = seeded_engine.resolve(spec, QueryOptions())

        assert ids.models == {crv}
        assert ids.makes == {honda}

    def test_coded_and_geographic_labels(self, seeded_engine: Engine) -> None:
        spec = FilterSpec(
            values={
                Dimension.FUEL_TYPE: ["Hybrid (H)"],
                Dimension.ADMIN_REGION: ["Montréal (06)"],
                Dimension.VEHICLE_TYPE: ["AU"],
            }
        )

        ids = seeded_engine.resolve(spec, QueryOptions())

        assert ids.fuel_types == {seeded_engine.schema.lookup_id(Dimension.FUEL_TYPE, "H")}
        assert ids.admin_regions == {seeded_engine.schema.lookup_id(Dimension.ADMIN_REGION, "06")}
        assert len(ids.vehicle_types) == 1


class TestUnresolved:
    def test_raise_policy(self, seeded_engine: Engine) -> None:
        spec = FilterSpec(values={Dimension.MAKE: ["HONDA", "NOPE"]})

        with pytest.raises(UnresolvedFilterValue) as exc_info:
            seeded_engine.resolve(spec, QueryOptions())

        assert exc_info.value.details["unresolved"] == {"make": ["NOPE"]}

    def test_collect_policy_keeps_the_rest(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        honda, _ = pair_ids("HONDA", "CR-V")
        spec = FilterSpec(values={Dimension.MAKE: ["HONDA", "NOPE"], Dimension.COLOR: ["MAUVE"]})

        ids = seeded_engine.resolve(spec, QueryOptions(on_unresolved="collect"))

        assert ids.makes == {honda}
        assert ids.colors == frozenset()
        assert ids.unresolved == {"make": ("NOPE",), "color": ("MAUVE",)}

    def test_year_not_loaded(self, seeded_engine: Engine) -> None:
        with pytest.raises(UnresolvedFilterValue):
            seeded_engine.resolve(FilterSpec(years={1999}), QueryOptions())


class TestRegularizationExpansion:
    def test_canonical_model_pulls_in_uncurated_spelling(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        honda, crv = pair_ids("HONDA", "CRV")
        _, cr_v = pair_ids("HONDA", "CR-V")

        ids = seeded_engine.resolve(CR_V, QueryOptions(regularization_enabled=True, coupling=True))

        assert ids.regularized
        assert ids.models == {cr_v, crv}
        assert ids.makes == {honda}
        assert ids.expansion is not None
        assert ids.expansion.added_model_ids == {crv}
        assert ids.expansion.injected_make_ids == {honda}
        assert ids.without_expansion().models == {cr_v}
        assert ids.without_expansion().makes == frozenset()

    def test_uncurated_model_pulls_in_canonical(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        _, crv = pair_ids("HONDA", "CRV")
        _, cr_v = pair_ids("HONDA", "CR-V")
        spec = FilterSpec(values={Dimension.MODEL: ["CRV (HONDA)"]})

        ids = seeded_engine.resolve(spec, QueryOptions(regularization_enabled=True))

        assert ids.models == {cr_v, crv}

    def test_without_coupling_makes_stay_unconstrained(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        _, crv = pair_ids("HONDA", "CRV")
        _, cr_v = pair_ids("HONDA", "CR-V")

        ids = seeded_engine.resolve(CR_V, QueryOptions(regularization_enabled=True, coupling=False))

        assert ids.models == {cr_v, crv}
        assert ids.makes == frozenset()

    def test_unrelated_model_is_not_expanded(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        _, corolla = pair_ids("TOYOTA", "COROLLA")
        spec = FilterSpec(values={Dimension.MODEL: ["COROLLA (TOYOTA)"]})

        ids = seeded_engine.resolve(spec, QueryOptions(regularization_enabled=True, coupling=False))

        assert ids.models == {corolla}
        assert ids.expansion is not None
        assert ids.expansion.is_empty


class TestCuratedYearsOnly:
    def test_all_curated_years(self, seeded_engine: Engine) -> None:
        ids = seeded_engine.resolve(FilterSpec(limit_to_curated_years=True), QueryOptions())
        assert ids.years == {seeded_engine.schema.lookup_id(Dimension.YEAR, 2020)}

    def test_disables_expansion(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        _, cr_v = pair_ids("HONDA", "CR-V")
        spec = FilterSpec(values=CR_V.values, limit_to_curated_years=True)

        ids = seeded_engine.resolve(spec, QueryOptions(regularization_enabled=True))

        assert ids.models == {cr_v}
        assert not ids.regularized

    def test_no_selected_year_is_curated(self, seeded_engine: Engine) -> None:
        with pytest.raises(QueryValidationError, match="none of the selected years"):
            seeded_engine.resolve(FilterSpec(years={2023}, limit_to_curated_years=True), QueryOptions())


class TestCacheState:
    def test_not_initialized(self, engine: Engine) -> None:
        with pytest.raises(CacheNotReady):
            engine.resolve(FilterSpec(), QueryOptions())

    def test_loaded_for_another_scope(self, seeded_engine: Engine) -> None:
        with pytest.raises(CacheNotReady):
            seeded_engine.resolve(FilterSpec(scope=EntityScope.LICENSE), QueryOptions())
