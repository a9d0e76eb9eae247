"""Tests for EXPLAIN QUERY PLAN classification."""

from __future__ import annotations

import pytest

from saaqengine.core.errors import ErrorCode
from saaqengine.query.plan import PlanKind, classify_plan


class TestClassifyPlan:
    @pytest.mark.parametrize(
        ("details", "kind"),
        [
            (["SEARCH v USING INDEX idx_vehicles_make_model_year (make_id=?)"], PlanKind.INDEXED),
            (["SCAN v USING COVERING INDEX idx_vehicles_year_class"], PlanKind.PARTIAL_SCAN),
            (["SCAN vehicles AS v USING INDEX ix_vehicles_year_id"], PlanKind.PARTIAL_SCAN),
            (["SCAN v", "SEARCH y USING INTEGER PRIMARY KEY (rowid=?)"], PlanKind.FULL_SCAN),
            (["SCAN TABLE vehicles"], PlanKind.FULL_SCAN),
            (["SCAN y", "SEARCH v USING INDEX ix_vehicles_year_id (year_id=?)"], PlanKind.INDEXED),
        ],
    )
    def test_vehicle_plans(self, details: list[str], kind: PlanKind) -> None:
        assert classify_plan(details, "vehicles").kind is kind

    def test_full_scan_carries_warning(self) -> None:
        plan = classify_plan(["SCAN l"], "licenses")

        assert plan.is_full_scan
        assert plan.warning is not None
        assert plan.warning.code is ErrorCode.QUERY_SLOW_PLAN
        assert plan.warning.details["table"] == "licenses"

    def test_other_table_scan_is_ignored(self) -> None:
        assert classify_plan(["SCAN l"], "vehicles").kind is PlanKind.INDEXED
