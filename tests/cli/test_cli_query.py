"""Tests for saaq query and saaq explain."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click
import pytest
from click.testing import Result

from saaqengine.cli.query import parse_age_range, parse_filter
from saaqengine.dimensions.registry import Dimension
from saaqengine.query.filters import AgeRange

YEARS = ("--year", "2020", "--year", "2023")


def points(result: Result) -> dict[int, Any]:
    assert result.exit_code == 0, result.output
    return {p["year"]: p["value"] for p in json.loads(result.stdout)["points"]}


class TestParsing:
    def test_parse_filter(self) -> None:
        assert parse_filter("Make = HONDA") == (Dimension.MAKE, "HONDA")
        assert parse_filter("model=CR-V (HONDA)") == (Dimension.MODEL, "CR-V (HONDA)")

    @pytest.mark.parametrize("text", ["make", "make=", "brand=HONDA"])
    def test_bad_filter(self, text: str) -> None:
        with pytest.raises(click.BadParameter):
            parse_filter(text)

    @pytest.mark.parametrize(
        ("text", "expected"),
        [("0-4", AgeRange(0, 4)), ("15+", AgeRange(15)), ("3", AgeRange(3, 3))],
    )
    def test_parse_age_range(self, text: str, expected: AgeRange) -> None:
        assert parse_age_range(text) == expected

    @pytest.mark.parametrize("text", ["old", "5-2"])
    def test_bad_age_range(self, text: str) -> None:
        with pytest.raises(click.BadParameter):
            parse_age_range(text)


class TestQueryCommand:
    def test_count_by_make(self, imported_project: Path, invoke: Callable[..., Result]) -> None:
        result = invoke("query", *YEARS, "--filter", "make=HONDA", "--json")

        assert points(result) == {2020: 20, 2023: 4}

    def test_regularized_model(self, imported_project: Path, invoke: Callable[..., Result]) -> None:
        invoke("mappings", "add", "--make", "HONDA", "--model", "CRV", "--to-make", "HONDA", "--to-model", "CR-V")
        args = ("query", *YEARS, "--filter", "model=CR-V (HONDA)", "--json")

        assert points(invoke(*args)) == {2020: 20}
        assert points(invoke(*args, "--regularize")) == {2020: 20, 2023: 4}

    def test_percentage(self, imported_project: Path, invoke: Callable[..., Result]) -> None:
        result = invoke("query", "--year", "2020", "--filter", "make=TOYOTA", "--metric", "percentage", "--json")

        assert points(result) == {2020: pytest.approx(20.0)}

    def test_measure_with_unit(self, imported_project: Path, invoke: Callable[..., Result]) -> None:
        result = invoke("query", "--year", "2020", "--metric", "average", "--field", "net_mass", "--json")

        payload = json.loads(result.stdout)
        assert payload["unit"] == "kg"
        assert points(result) == {2020: pytest.approx(1500.0)}

    def test_unresolved_label_fails(self, imported_project: Path, invoke: Callable[..., Result]) -> None:
        result = invoke("query", *YEARS, "--filter", "make=NOPE")

        assert result.exit_code == 1
        assert "NOPE" in result.stderr

    def test_collect_unresolved(self, imported_project: Path, invoke: Callable[..., Result]) -> None:
        result = invoke("query", *YEARS, "--filter", "make=NOPE", "--collect-unresolved", "--json")

        payload = json.loads(result.stdout)
        assert payload["points"] == []
        assert payload["filter"]["unresolved"] == {"make": ["NOPE"]}
        assert payload["filter"]["request_id"]

    def test_table_output(self, imported_project: Path, invoke: Callable[..., Result]) -> None:
        result = invoke("query", *YEARS, "--filter", "make=HONDA")

        assert result.exit_code == 0
        assert "2020" in result.stderr
        assert "CAGR" in result.stderr


class TestExplainCommand:
    def test_one_plan_per_statement(self, imported_project: Path, invoke: Callable[..., Result]) -> None:
        result = invoke("explain", *YEARS, "--filter", "make=HONDA", "--json")

        assert result.exit_code == 0, result.output
        [plan] = json.loads(result.stdout)
        assert plan["plan"] in {"indexed", "partial_scan", "full_scan"}
        assert "make_id IN" in plan["sql"]

    def test_percentage_has_two_statements(self, imported_project: Path, invoke: Callable[..., Result]) -> None:
        result = invoke("explain", *YEARS, "--filter", "make=HONDA", "--metric", "percentage", "--json")

        assert len(json.loads(result.stdout)) == 2
