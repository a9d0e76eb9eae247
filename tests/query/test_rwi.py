"""Tests for Road Wear Index configuration."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from saaqengine.core.errors import ConfigError, ErrorCode
from saaqengine.query.rwi import (
    AxleDistribution,
    RWIConfiguration,
    VehicleTypeFallback,
    _case_sql,
    coefficient,
    import_rwi_configuration,
    load_rwi_configuration,
    parse_rwi_configuration,
    reset_rwi_configuration,
    save_rwi_configuration,
)


class TestCoefficient:
    @pytest.mark.parametrize("axles", [2, 3, 4, 5, 6])
    def test_even_split_is_inverse_cube(self, axles: int) -> None:
        assert coefficient([100.0 / axles] * axles) == pytest.approx(1.0 / axles**3)

    def test_uneven_split(self) -> None:
        assert coefficient([45.0, 55.0]) == pytest.approx(0.45**4 + 0.55**4)


class TestValidation:
    def test_weights_must_sum_to_100(self) -> None:
        with pytest.raises(ValidationError, match="sum to 100"):
            AxleDistribution(axle_count=2, weights=(40.0, 50.0))

    def test_weight_count_matches_axles(self) -> None:
        with pytest.raises(ValidationError):
            AxleDistribution(axle_count=3, weights=(50.0, 50.0))

    def test_axle_count_range(self) -> None:
        with pytest.raises(ValidationError):
            AxleDistribution(axle_count=7, weights=(100.0 / 7,) * 7)

    def test_six_axle_default_within_tolerance(self) -> None:
        dist = RWIConfiguration().axles[6]
        assert sum(dist.weights) == pytest.approx(100.0)

    def test_type_code_normalized(self) -> None:
        fallback = VehicleTypeFallback(type_code=" ca ", assumed_axles=2, weights=(50.0, 50.0))
        assert fallback.type_code == "CA"

    def test_type_code_format(self) -> None:
        with pytest.raises(ValidationError):
            VehicleTypeFallback(type_code="TRUCKS", assumed_axles=2, weights=(50.0, 50.0))

    def test_mismatched_axle_key(self) -> None:
        with pytest.raises(ValidationError):
            RWIConfiguration(axles={3: AxleDistribution(axle_count=2, weights=(50.0, 50.0))})


class TestCoefficientFor:
    def test_known_axles(self) -> None:
        config = RWIConfiguration()
        assert config.coefficient_for(2) == pytest.approx(0.45**4 + 0.55**4)

    def test_six_or_more_collapse(self) -> None:
        config = RWIConfiguration()
        assert config.coefficient_for(9) == config.coefficient_for(6)

    def test_type_fallback_then_wildcard(self) -> None:
        config = RWIConfiguration()
        assert config.coefficient_for(None, "CA") == pytest.approx(0.3**4 + 0.35**4 + 0.35**4)
        assert config.coefficient_for(None, "ZZ") == pytest.approx(0.125)
        assert config.default_coefficient == pytest.approx(0.125)


class TestCaseSql:
    def test_branches(self) -> None:
        sql = RWIConfiguration().case_sql()

        assert sql.startswith("CASE")
        assert "WHEN v.max_axles = 2 THEN" in sql
        assert "WHEN v.max_axles >= 6 THEN" in sql
        assert "code = 'CA'" in sql
        assert "code = '*'" not in sql
        assert "ELSE 0.125 *" in sql
        assert "POWER" not in sql

    def test_cached_per_fingerprint(self) -> None:
        a, b = RWIConfiguration(), RWIConfiguration()
        assert a.fingerprint() == b.fingerprint()
        assert a.case_sql() is b.case_sql()

    def test_fingerprint_changes_with_configuration(self) -> None:
        custom = RWIConfiguration(
            axles={2: AxleDistribution(axle_count=2, weights=(50.0, 50.0))},
        )
        assert custom.fingerprint() != RWIConfiguration().fingerprint()
        assert "v.max_axles = 3" not in custom.case_sql()

    def test_cache_is_bounded(self) -> None:
        for split in range(10, 50):
            RWIConfiguration(
                axles={2: AxleDistribution(axle_count=2, weights=(float(split), 100.0 - split))},
            ).case_sql()

        info = _case_sql.cache_info()
        assert info.maxsize is not None
        assert info.currsize <= info.maxsize


class TestPersistence:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        assert load_rwi_configuration(tmp_path / "rwi.json") == RWIConfiguration()

    def test_save_then_load(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "rwi.json"
        config = RWIConfiguration(axles={2: AxleDistribution(axle_count=2, weights=(40.0, 60.0))})

        save_rwi_configuration(config, path)

        assert load_rwi_configuration(path) == config
        assert json.loads(path.read_text())["schema_version"] == 1

    def test_malformed_json(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            parse_rwi_configuration("{not json")
        assert exc_info.value.code is ErrorCode.CONFIG_PARSE_ERROR

    def test_import_invalid_leaves_destination(self, tmp_path: Path) -> None:
        destination = tmp_path / "rwi.json"
        reset_rwi_configuration(destination)
        before = destination.read_text()
        source = tmp_path / "bad.json"
        source.write_text(json.dumps({"axles": {"2": {"axle_count": 2, "weights": [10, 10]}}}))

        with pytest.raises(ConfigError) as exc_info:
            import_rwi_configuration(source, destination)

        assert exc_info.value.code is ErrorCode.CONFIG_INVALID_VALUE
        assert destination.read_text() == before

    def test_import_missing_source(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError) as exc_info:
            import_rwi_configuration(tmp_path / "nope.json", tmp_path / "rwi.json")
        assert exc_info.value.code is ErrorCode.CONFIG_FILE_NOT_FOUND
