"""Fixtures for CLI tests: an initialized project in the working directory."""

from __future__ import annotations

import csv
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner, Result

from saaqengine.cli.main import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def invoke(runner: CliRunner) -> Callable[..., Result]:
    """invoke("query", "--json", ...) against the project in the cwd."""

    def run(*args: str) -> Result:
        return runner.invoke(cli, list(args), catch_exceptions=False)

    return run


@pytest.fixture
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, invoke: Callable[..., Result]) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    result = invoke("init", str(root))
    assert result.exit_code == 0, result.output
    monkeypatch.chdir(root)
    return root


@pytest.fixture
def write_csv(tmp_path: Path) -> Callable[[str, list[dict[str, Any]]], Path]:
    """Write rows the way the open-data exports look (';' delimited, BOM)."""

    def write(name: str, rows: list[dict[str, Any]]) -> Path:
        path = tmp_path / name
        with path.open("w", newline="", encoding="utf-8-sig") as f:
            writer = csv.DictWriter(f, fieldnames=list(rows[0]), delimiter=";")
            writer.writeheader()
            writer.writerows(rows)
        return path

    return write


@pytest.fixture
def imported_project(
    project: Path,
    invoke: Callable[..., Result],
    write_csv: Callable[[str, list[dict[str, Any]]], Path],
    make_vehicle_rows: Callable[..., list[dict[str, Any]]],
) -> Path:
    """2020: 20 HONDA CR-V + 5 TOYOTA COROLLA; 2023: 4 HONDA CRV + 2 TOYOTA COROLLA."""
    curated = write_csv(
        "vehicles_2020.csv",
        make_vehicle_rows("A", 20) + make_vehicle_rows("B", 5, make="TOYOTA", model="COROLLA"),
    )
    uncurated = write_csv(
        "vehicles_2023.csv",
        make_vehicle_rows("C", 4, model="CRV") + make_vehicle_rows("D", 2, make="TOYOTA", model="COROLLA"),
    )
    for year, path in (("2020", curated), ("2023", uncurated)):
        result = invoke("import", "vehicle", year, str(path))
        assert result.exit_code == 0, result.output
    return project
