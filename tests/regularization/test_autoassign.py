"""Tests for auto-assignment heuristics and candidate ranking."""

from __future__ import annotations

import pytest

from saaqengine.regularization.autoassign import (
    choose_fuel_type,
    choose_vehicle_type,
    hyphenation_match,
    is_unspecified,
    plan_auto_regularization,
    rank_candidates,
    string_similarity,
)
from saaqengine.regularization.models import CanonicalModel, FuelTypeInfo, UncuratedPair, VehicleTypeInfo

GAS = FuelTypeInfo(1, "E", "Gasoline", 120)
HYBRID = FuelTypeInfo(2, "H", "Hybrid", 30)
UNSPECIFIED_FUEL = FuelTypeInfo(9, "N", "Non spécifié", 5)
CAR = VehicleTypeInfo(1, "AU", "Automobile", 100)
MOTORCYCLE = VehicleTypeInfo(2, "MC", "Motorcycle", 10)
TRUCK = VehicleTypeInfo(3, "CA", "Truck", 40)


def canonical(**kwargs: object) -> CanonicalModel:
    model = CanonicalModel(model_id=20, model_name="CR-V", make_id=10, make_name="HONDA")
    for key, value in kwargs.items():
        setattr(model, key, value)
    return model


PAIR = UncuratedPair(
    make_id=10,
    make_name="HONDA",
    model_id=21,
    model_name="CRV",
    record_count=14,
    percentage_of_uncurated=50.0,
    earliest_year=2023,
    latest_year=2023,
)


class TestValidity:
    @pytest.mark.parametrize(
        ("description", "expected"),
        [("Not Specified", True), ("non spécifié", True), ("Gasoline", False), (None, False)],
    )
    def test_is_unspecified(self, description: str | None, expected: bool) -> None:
        assert is_unspecified(description) is expected


class TestChooseFuelType:
    def test_single_valid_value(self) -> None:
        assert choose_fuel_type([GAS, FuelTypeInfo.placeholder(3), UNSPECIFIED_FUEL]) == GAS

    def test_ambiguous(self) -> None:
        assert choose_fuel_type([GAS, HYBRID]) is None

    def test_only_placeholder(self) -> None:
        assert choose_fuel_type([FuelTypeInfo.placeholder(7)]) is None


class TestChooseVehicleType:
    def test_single(self) -> None:
        assert choose_vehicle_type([TRUCK, VehicleTypeInfo(None, None, None, 4)]) == TRUCK

    def test_priority_order(self) -> None:
        assert choose_vehicle_type([TRUCK, MOTORCYCLE, CAR], ["AU", "MC"]) == CAR
        assert choose_vehicle_type([TRUCK, MOTORCYCLE], ["AU", "MC"]) == MOTORCYCLE

    def test_no_priority_match(self) -> None:
        assert choose_vehicle_type([TRUCK, VehicleTypeInfo(4, "VO", "Tool vehicle", 1)], ["AU"]) is None


class TestPlanAutoRegularization:
    def test_triplets_for_unambiguous_years_plus_wildcard(self) -> None:
        model = canonical(model_years={100: [GAS], 101: [GAS, HYBRID]}, vehicle_types=[CAR])

        requests = plan_auto_regularization(PAIR, model, [101, 100, 102], ["AU"])

        assert [(r.model_year_id, r.fuel_type_id) for r in requests] == [(100, 1), (None, None)]
        assert all(r.vehicle_type_id == 1 for r in requests)
        assert requests[-1].is_wildcard
        assert requests[0].canonical_model_id == 20
        assert requests[0].uncurated_model_id == 21

    def test_wildcard_without_vehicle_type(self) -> None:
        requests = plan_auto_regularization(PAIR, canonical(vehicle_types=[CAR, TRUCK]), [])

        assert len(requests) == 1
        assert requests[0].vehicle_type_id is None


class TestSimilarity:
    def test_edit_distance_ratio_ignores_case(self) -> None:
        assert string_similarity("kitten", "SITTING") == pytest.approx(1 - 3 / 7)
        assert string_similarity("", "abc") == 0.0
        assert string_similarity("civic", "CIVIC") == 1.0

    def test_hyphenation(self) -> None:
        assert hyphenation_match("CRV", "cr-v")
        assert not hyphenation_match("CR-V", "CR-V")
        assert string_similarity("CRV", "CR-V") == 0.99

    def test_rank_candidates(self) -> None:
        cr_v = canonical()
        civic = CanonicalModel(model_id=22, model_name="CIVIC", make_id=10, make_name="HONDA")
        corolla = CanonicalModel(model_id=30, model_name="COROLLA", make_id=11, make_name="TOYOTA")

        ranked = rank_candidates("HONDA", "CRV", [corolla, civic, cr_v])

        assert ranked[0].model is cr_v
        assert ranked[0].score == pytest.approx((1.0 + 2 * 0.99) / 3)
        assert corolla not in [c.model for c in ranked]

    def test_rank_limit(self) -> None:
        models = [CanonicalModel(model_id=i, model_name="CRV", make_id=10, make_name="HONDA") for i in range(5)]
        assert len(rank_candidates("HONDA", "CRV", models, limit=2)) == 2
