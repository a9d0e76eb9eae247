"""Tests for filter specs and resolved filter ids."""

from __future__ import annotations

import pytest

from saaqengine.core.errors import QueryValidationError
from saaqengine.dimensions.registry import Dimension
from saaqengine.models import EntityScope
from saaqengine.query.filters import AgeRange, FilterIds, FilterSpec, LicenseClass
from saaqengine.regularization.models import Expansion


class TestAgeRange:
    def test_open_ended(self) -> None:
        assert AgeRange(10).max_age is None

    @pytest.mark.parametrize(("low", "high"), [(-1, None), (5, 2)])
    def test_invalid(self, low: int, high: int | None) -> None:
        with pytest.raises(QueryValidationError):
            AgeRange(low, high)


class TestFilterSpec:
    def test_with_values_copies(self) -> None:
        base = FilterSpec().with_values(Dimension.MAKE, "HONDA")

        extended = base.with_values("make", "TOYOTA")

        assert base.values == {Dimension.MAKE: ["HONDA"]}
        assert extended.values == {Dimension.MAKE: ["HONDA", "TOYOTA"]}

    def test_tokens_drop_blank_labels(self) -> None:
        spec = FilterSpec(values={Dimension.MAKE: ["  "], Dimension.FUEL_TYPE: ["Gasoline (E)"]})

        tokens = spec.tokens()

        assert Dimension.MAKE not in tokens
        assert tokens[Dimension.FUEL_TYPE][0].code == "E"

    def test_rejects_non_token_dimension(self) -> None:
        with pytest.raises(QueryValidationError, match="its own field"):
            FilterSpec(values={Dimension.MODEL_YEAR: ["2018"]}).validate()

    def test_rejects_dimension_outside_scope(self) -> None:
        spec = FilterSpec(scope=EntityScope.LICENSE, values={Dimension.MAKE: ["HONDA"]})
        with pytest.raises(QueryValidationError) as exc_info:
            spec.validate()
        assert exc_info.value.details == {"dimension": "make", "scope": "license"}

    def test_vehicle_fields_on_license_scope(self) -> None:
        with pytest.raises(QueryValidationError, match="vehicle queries only"):
            FilterSpec(scope=EntityScope.LICENSE, axle_counts={2}).validate()

    def test_license_classes_on_vehicle_scope(self) -> None:
        with pytest.raises(QueryValidationError, match="license queries only"):
            FilterSpec(license_classes={LicenseClass.DRIVER_5}).validate()

    def test_negative_axle_count(self) -> None:
        with pytest.raises(QueryValidationError):
            FilterSpec(axle_counts={-1}).validate()

    def test_to_dict(self) -> None:
        spec = FilterSpec(years={2021, 2020}, age_ranges=[AgeRange(0, 4)])
        data = spec.to_dict()
        assert data["years"] == [2020, 2021]
        assert data["age_ranges"] == [[0, 4]]


class TestFilterIds:
    def test_without_expansion_restores_resolved_ids(self) -> None:
        ids = FilterIds(
            makes=frozenset({1, 2, 3}),
            models=frozenset({10, 11}),
            regularized=True,
            expansion=Expansion(
                added_make_ids=frozenset({2}),
                added_model_ids=frozenset({11}),
                injected_make_ids=frozenset({3}),
            ),
        )

        direct = ids.without_expansion()

        assert direct.makes == {1}
        assert direct.models == {10}
        assert not direct.regularized
        assert direct.expansion is None

    def test_ids_for_and_to_dict(self) -> None:
        ids = FilterIds(makes=frozenset({4}), license_classes=frozenset({LicenseClass.PROBATIONARY}))

        assert ids.ids_for(Dimension.MAKE) == {4}
        assert ids.ids_for(Dimension.GENDER) == frozenset()
        data = ids.to_dict()
        assert data["make"] == [4]
        assert data["license_classes"] == ["probationary"]
        assert "model" not in data
