"""Tests for mapping storage, filter expansion and auto-regularization."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from saaqengine.core.errors import ConflictingMapping, RegularizationError
from saaqengine.dimensions.registry import Dimension
from saaqengine.engine import Engine
from saaqengine.models import EntityScope
from saaqengine.regularization.models import MappingRequest

PairIds = Callable[[str, str], tuple[int, int]]
RowsFactory = Callable[..., list[dict[str, Any]]]


@pytest.fixture
def cross_make_engine(seeded_engine: Engine, make_vehicle_rows: RowsFactory, pair_ids: PairIds) -> Engine:
    """seeded_engine plus HOND CIVIC (2023) mapped onto HONDA CIVIC (2020)."""
    seeded_engine.import_batch(EntityScope.VEHICLE, 2020, make_vehicle_rows("F", 2, model="CIVIC"))
    seeded_engine.import_batch(EntityScope.VEHICLE, 2023, make_vehicle_rows("E", 3, make="HOND", model="CIVIC"))
    hond, hond_civic = pair_ids("HOND", "CIVIC")
    honda, civic = pair_ids("HONDA", "CIVIC")
    seeded_engine.add_mapping(MappingRequest(hond, hond_civic, honda, civic))
    return seeded_engine


class TestAddMapping:
    def test_record_reflects_uncurated_data(self, seeded_engine: Engine) -> None:
        [record] = seeded_engine.get_all_mappings()

        assert (record.uncurated_make, record.uncurated_model) == ("HONDA", "CRV")
        assert (record.canonical_make, record.canonical_model) == ("HONDA", "CR-V")
        assert record.model_year_id is None
        assert record.record_count == 14
        assert (record.year_range_start, record.year_range_end) == (2023, 2023)
        assert record.percentage_of_uncurated == pytest.approx(14 * 100 / 24)

    def test_wildcard_is_replaced_not_duplicated(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        honda, crv = pair_ids("HONDA", "CRV")
        _, cr_v = pair_ids("HONDA", "CR-V")
        au = seeded_engine.schema.lookup_id(Dimension.VEHICLE_TYPE, "AU")

        record = seeded_engine.add_mapping(MappingRequest(honda, crv, honda, cr_v, vehicle_type_id=au))

        assert [m.id for m in seeded_engine.get_all_mappings()] == [record.id]
        assert record.vehicle_type is not None

    def test_bumps_mapping_generation(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        before = seeded_engine.generation()
        honda, crv = pair_ids("HONDA", "CRV")
        _, cr_v = pair_ids("HONDA", "CR-V")

        seeded_engine.add_mapping(MappingRequest(honda, crv, honda, cr_v))

        after = seeded_engine.generation()
        assert after.mapping_version == before.mapping_version + 1
        assert after.data_generation == before.data_generation

    def test_conflicting_canonical_make(self, cross_make_engine: Engine, pair_ids: PairIds) -> None:
        hond, hond_civic = pair_ids("HOND", "CIVIC")
        toyota, corolla = pair_ids("TOYOTA", "COROLLA")
        before = cross_make_engine.get_all_mappings()

        with pytest.raises(ConflictingMapping) as exc_info:
            cross_make_engine.add_mapping(MappingRequest(hond, hond_civic, toyota, corolla))

        assert exc_info.value.details["existing_canonical_make"] == "HONDA"
        assert exc_info.value.details["requested_canonical_make"] == "TOYOTA"
        assert cross_make_engine.get_all_mappings() == before

    def test_model_must_belong_to_make(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        honda, cr_v = pair_ids("HONDA", "CR-V")
        _, corolla = pair_ids("TOYOTA", "COROLLA")

        with pytest.raises(RegularizationError, match="uncurated model"):
            seeded_engine.add_mapping(MappingRequest(honda, corolla, honda, cr_v))

    def test_unknown_make(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        honda, cr_v = pair_ids("HONDA", "CR-V")
        with pytest.raises(RegularizationError):
            seeded_engine.add_mapping(MappingRequest(99999, cr_v, honda, cr_v))


class TestDeleteMapping:
    def test_delete_by_id(self, seeded_engine: Engine) -> None:
        [record] = seeded_engine.get_all_mappings()

        assert seeded_engine.delete_mapping(record.id)
        assert not seeded_engine.delete_mapping(record.id)
        assert seeded_engine.get_all_mappings() == []

    def test_delete_pair_removes_wildcard_and_triplets(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        honda, crv = pair_ids("HONDA", "CRV")
        _, cr_v = pair_ids("HONDA", "CR-V")
        my_2018 = seeded_engine.schema.lookup_id(Dimension.MODEL_YEAR, 2018)
        seeded_engine.add_mapping(MappingRequest(honda, crv, honda, cr_v, model_year_id=my_2018))
        assert [r.model_year for r in seeded_engine.regularization.get_mappings_for_pair(honda, crv)] == [None, 2018]

        assert seeded_engine.delete_mappings_for_pair(honda, crv) == 2
        assert seeded_engine.delete_mappings_for_pair(honda, crv) == 0


class TestRecordCounts:
    def test_import_refreshes_counts(self, seeded_engine: Engine, make_vehicle_rows: RowsFactory) -> None:
        seeded_engine.import_batch(EntityScope.VEHICLE, 2023, make_vehicle_rows("G", 5, model="CRV"))

        [record] = seeded_engine.get_all_mappings()
        assert record.record_count == 19

    def test_statistics(self, seeded_engine: Engine) -> None:
        stats = seeded_engine.regularization.statistics()

        assert stats.mapping_count == 1
        assert stats.covered_records == 14
        assert stats.total_uncurated_records == 24
        assert stats.coverage_percent == pytest.approx(14 * 100 / 24)

    def test_detailed_statistics(self, seeded_engine: Engine) -> None:
        detailed = seeded_engine.regularization.detailed_statistics()

        assert detailed.wildcard_mappings == 1
        assert detailed.triplet_mappings == 0
        assert detailed.make_model.assigned == 14
        assert detailed.fuel_type.assigned == 0
        assert detailed.vehicle_type.percent == 0.0


class TestUncuratedPairs:
    def test_exact_matches_excluded_by_default(self, seeded_engine: Engine) -> None:
        [pair] = seeded_engine.regularization.find_uncurated_pairs()

        assert (pair.make_name, pair.model_name) == ("HONDA", "CRV")
        assert pair.has_mapping
        assert not pair.exists_in_curated
        assert pair.record_count == 14

    def test_include_exact_matches(self, seeded_engine: Engine) -> None:
        pairs = seeded_engine.regularization.find_uncurated_pairs(include_exact_matches=True)

        assert [(p.model_name, p.exists_in_curated) for p in pairs] == [("CRV", False), ("COROLLA", True)]

    def test_display_info(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        honda, crv = pair_ids("HONDA", "CRV")

        info = seeded_engine.regularization.display_info()[(honda, crv)]

        assert (info.canonical_make, info.canonical_model, info.record_count) == ("HONDA", "CR-V", 14)


class TestExpansion:
    def test_make_expansion_is_bidirectional(self, cross_make_engine: Engine, pair_ids: PairIds) -> None:
        hond, _ = pair_ids("HOND", "CIVIC")
        honda, _ = pair_ids("HONDA", "CIVIC")
        regularization = cross_make_engine.regularization

        assert regularization.expand_make_ids([honda]) == sorted({honda, hond})
        assert regularization.expand_make_ids([hond]) == sorted({honda, hond})

    def test_model_expansion_with_coupling(self, cross_make_engine: Engine, pair_ids: PairIds) -> None:
        hond, hond_civic = pair_ids("HOND", "CIVIC")
        honda, civic = pair_ids("HONDA", "CIVIC")

        makes, models = cross_make_engine.regularization.expand_make_model_ids([], [civic], coupling=True)

        assert models == sorted({civic, hond_civic})
        assert makes == sorted({honda, hond})

    def test_model_expansion_without_coupling(self, cross_make_engine: Engine, pair_ids: PairIds) -> None:
        _, hond_civic = pair_ids("HOND", "CIVIC")
        _, civic = pair_ids("HONDA", "CIVIC")

        makes, models = cross_make_engine.regularization.expand_make_model_ids([], [hond_civic], coupling=False)

        assert models == sorted({civic, hond_civic})
        assert makes == []

    def test_explicit_make_filter_follows_mapping(self, cross_make_engine: Engine, pair_ids: PairIds) -> None:
        hond, hond_civic = pair_ids("HOND", "CIVIC")
        honda, civic = pair_ids("HONDA", "CIVIC")

        makes, _ = cross_make_engine.regularization.expand_make_model_ids([honda], [civic], coupling=False)

        assert makes == sorted({honda, hond})


class TestAutoRegularize:
    def test_maps_exact_spellings(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        toyota, corolla = pair_ids("TOYOTA", "COROLLA")

        created = seeded_engine.auto_regularize()

        assert len(created) == 2
        triplet, wildcard = created
        assert (triplet.uncurated_make_id, triplet.uncurated_model_id) == (toyota, corolla)
        assert triplet.model_year == 2018
        assert triplet.fuel_type is not None
        assert wildcard.model_year_id is None
        assert triplet.vehicle_type == wildcard.vehicle_type

    def test_second_run_creates_nothing(self, seeded_engine: Engine) -> None:
        seeded_engine.auto_regularize()
        assert seeded_engine.auto_regularize() == []

    def test_mapped_vehicle_types(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        seeded_engine.auto_regularize()
        au = seeded_engine.schema.lookup_id(Dimension.VEHICLE_TYPE, "AU")

        assert [(t[0], t[1]) for t in seeded_engine.regularization.mapped_vehicle_types()] == [(au, "AU")]
        assert seeded_engine.regularization.uncurated_pairs_for_vehicle_type(au) == {pair_ids("TOYOTA", "COROLLA")}


class TestSuggestCanonical:
    def test_hyphenation_variant_ranks_first(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        honda, crv = pair_ids("HONDA", "CRV")

        candidates = seeded_engine.regularization.suggest_canonical(honda, crv)

        assert candidates[0].model.model_name == "CR-V"
        assert candidates[0].model.record_count == 197

    def test_unknown_pair(self, seeded_engine: Engine, pair_ids: PairIds) -> None:
        _, crv = pair_ids("HONDA", "CRV")
        toyota, _ = pair_ids("TOYOTA", "COROLLA")
        with pytest.raises(RegularizationError):
            seeded_engine.regularization.suggest_canonical(toyota, crv)
