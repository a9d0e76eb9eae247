"""Road Wear Index configuration and SQL generation.

RWI follows the fourth-power law: each vehicle contributes
coefficient * mass^4, where the coefficient is the sum of each axle's load
fraction to the fourth power. The axle count comes from max_axles when
known (6 or more collapse to 6); otherwise the vehicle type's fallback
entry applies, then the wildcard entry.

Configuration is a JSON document (see RWIConfiguration), validated with
pydantic and persisted per project.
"""

from __future__ import annotations

import functools
import hashlib
import json
import re
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from saaqengine.config.constants import (
    RWI_DEFAULT_COEFFICIENT,
    RWI_DISTRIBUTION_TOLERANCE,
    RWI_MAX_AXLES,
    RWI_MIN_AXLES,
    RWI_WILDCARD_TYPE,
)
from saaqengine.core.errors import ConfigError

logger = structlog.get_logger()

_TYPE_CODE_RE = re.compile(r"^(\*|[A-Z0-9]{1,4})$")

MASS_POW4 = "(CAST(v.net_mass_int AS REAL) * v.net_mass_int * v.net_mass_int * v.net_mass_int)"


def coefficient(weights: list[float] | tuple[float, ...]) -> float:
    """Σ (weight/100)^4 over the axle load distribution."""
    return sum((w / 100.0) ** 4 for w in weights)


def _check_distribution(weights: tuple[float, ...], axles: int) -> None:
    if not RWI_MIN_AXLES <= axles <= RWI_MAX_AXLES:
        raise ValueError(f"axle count must be between {RWI_MIN_AXLES} and {RWI_MAX_AXLES}, got {axles}")
    if len(weights) != axles:
        raise ValueError(f"{axles} axles need {axles} weights, got {len(weights)}")
    for w in weights:
        if not 0 < w <= 100:
            raise ValueError(f"each weight must be in (0, 100], got {w}")
    total = sum(weights)
    if abs(total - 100.0) >= RWI_DISTRIBUTION_TOLERANCE:
        raise ValueError(f"weights must sum to 100 (within {RWI_DISTRIBUTION_TOLERANCE}), got {total:.4f}")


class AxleDistribution(BaseModel):
    """Load split for a known axle count (6 stands for 6 or more)."""

    model_config = ConfigDict(frozen=True)

    axle_count: int
    weights: tuple[float, ...]

    @model_validator(mode="after")
    def validate_weights(self) -> AxleDistribution:
        _check_distribution(self.weights, self.axle_count)
        return self

    @property
    def coefficient(self) -> float:
        return coefficient(self.weights)

    def describe(self) -> str:
        return "/".join(f"{w:g}%" for w in self.weights)


class VehicleTypeFallback(BaseModel):
    """Assumed axles and split for a vehicle type when max_axles is unknown."""

    model_config = ConfigDict(frozen=True)

    type_code: str
    description: str = ""
    assumed_axles: int
    weights: tuple[float, ...]

    @field_validator("type_code")
    @classmethod
    def validate_type_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not _TYPE_CODE_RE.match(v):
            raise ValueError(f"vehicle type code must be '*' or 1-4 letters/digits, got {v!r}")
        return v

    @model_validator(mode="after")
    def validate_weights(self) -> VehicleTypeFallback:
        _check_distribution(self.weights, self.assumed_axles)
        return self

    @property
    def coefficient(self) -> float:
        return coefficient(self.weights)


def _default_axles() -> dict[int, AxleDistribution]:
    return {
        2: AxleDistribution(axle_count=2, weights=(45.0, 55.0)),
        3: AxleDistribution(axle_count=3, weights=(30.0, 35.0, 35.0)),
        4: AxleDistribution(axle_count=4, weights=(25.0, 25.0, 25.0, 25.0)),
        5: AxleDistribution(axle_count=5, weights=(20.0, 20.0, 20.0, 20.0, 20.0)),
        6: AxleDistribution(axle_count=6, weights=(16.67, 16.67, 16.67, 16.67, 16.66, 16.66)),
    }


def _default_fallbacks() -> dict[str, VehicleTypeFallback]:
    entries = [
        VehicleTypeFallback(type_code="CA", description="Truck", assumed_axles=3, weights=(30.0, 35.0, 35.0)),
        VehicleTypeFallback(type_code="VO", description="Tool vehicle", assumed_axles=3, weights=(30.0, 35.0, 35.0)),
        VehicleTypeFallback(type_code="AB", description="Bus", assumed_axles=2, weights=(35.0, 65.0)),
        VehicleTypeFallback(type_code="AU", description="Car", assumed_axles=2, weights=(50.0, 50.0)),
        VehicleTypeFallback(type_code=RWI_WILDCARD_TYPE, description="Other", assumed_axles=2, weights=(50.0, 50.0)),
    ]
    return {e.type_code: e for e in entries}


class RWIConfiguration(BaseModel):
    """Axle distributions and vehicle-type fallbacks."""

    model_config = ConfigDict(frozen=True)

    schema_version: int = 1
    axles: dict[int, AxleDistribution] = Field(default_factory=_default_axles)
    fallbacks: dict[str, VehicleTypeFallback] = Field(default_factory=_default_fallbacks)

    @model_validator(mode="after")
    def validate_keys(self) -> RWIConfiguration:
        for key, dist in self.axles.items():
            if key != dist.axle_count:
                raise ValueError(f"axle entry {key} describes {dist.axle_count} axles")
        for code, fallback in self.fallbacks.items():
            if code.upper() != fallback.type_code:
                raise ValueError(f"fallback entry {code!r} is for {fallback.type_code!r}")
        return self

    @property
    def default_coefficient(self) -> float:
        wildcard = self.fallbacks.get(RWI_WILDCARD_TYPE)
        return wildcard.coefficient if wildcard else RWI_DEFAULT_COEFFICIENT

    def coefficient_for(self, axles: int | None, type_code: str | None = None) -> float:
        """Coefficient a single vehicle gets (mirrors the generated CASE)."""
        if axles is not None:
            key = min(axles, RWI_MAX_AXLES)
            if key in self.axles:
                return self.axles[key].coefficient
        if type_code is not None:
            fallback = self.fallbacks.get(type_code)
            if fallback is not None and type_code != RWI_WILDCARD_TYPE:
                return fallback.coefficient
        return self.default_coefficient

    def fingerprint(self) -> str:
        return hashlib.sha256(self.model_dump_json().encode()).hexdigest()[:16]

    def summary(self) -> list[tuple[str, str, float]]:
        """(entry, distribution, coefficient) rows for display."""
        rows = []
        for count in sorted(self.axles):
            dist = self.axles[count]
            label = f"{count}+ axles" if count == RWI_MAX_AXLES else f"{count} axles"
            rows.append((label, dist.describe(), dist.coefficient))
        for code in sorted(self.fallbacks):
            fb = self.fallbacks[code]
            weights = "/".join(f"{w:g}%" for w in fb.weights)
            rows.append((f"type {code} ({fb.description})", f"{fb.assumed_axles} axles, {weights}", fb.coefficient))
        return rows

    # ------------------------------------------------------------------
    # SQL
    # ------------------------------------------------------------------

    def case_sql(self) -> str:
        """CASE expression computing one vehicle's RWI (cached per configuration)."""
        return _case_sql(self.model_dump_json())

    def _generate_case_sql(self) -> str:
        cases = []
        for count in sorted(self.axles):
            condition = f"v.max_axles >= {count}" if count == RWI_MAX_AXLES else f"v.max_axles = {count}"
            cases.append(f"WHEN {condition} THEN {self.axles[count].coefficient!r} * {MASS_POW4}")
        for code in sorted(self.fallbacks):
            if code == RWI_WILDCARD_TYPE:
                continue
            cases.append(
                "WHEN v.max_axles IS NULL AND v.vehicle_type_id IN "
                f"(SELECT id FROM vehicle_type_enum WHERE code = '{code}') "
                f"THEN {self.fallbacks[code].coefficient!r} * {MASS_POW4}"
            )
        body = "\n    ".join(cases)
        return f"CASE\n    {body}\n    ELSE {self.default_coefficient!r} * {MASS_POW4}\nEND"


@functools.lru_cache(maxsize=32)
def _case_sql(document: str) -> str:
    config = RWIConfiguration.model_validate_json(document)
    logger.debug("rwi_sql_generated", fingerprint=config.fingerprint())
    return config._generate_case_sql()


# ============================================================================
# PERSISTENCE
# ============================================================================


def parse_rwi_configuration(text: str, source: str = "<string>") -> RWIConfiguration:
    """Parse and validate a JSON document.

    Raises:
        ConfigError: malformed JSON or an invalid distribution.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError.parse_error(source, str(e)) from e
    try:
        return RWIConfiguration.model_validate(data)
    except ValidationError as e:
        raise ConfigError.invalid_value("rwi", source, str(e)) from e


def load_rwi_configuration(path: Path) -> RWIConfiguration:
    """Configuration stored at path, or the built-in defaults when absent."""
    if not path.exists():
        return RWIConfiguration()
    return parse_rwi_configuration(path.read_text(encoding="utf-8"), str(path))


def save_rwi_configuration(config: RWIConfiguration, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload: dict[str, Any] = json.loads(config.model_dump_json())
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    logger.info("rwi_configuration_saved", path=str(path), fingerprint=config.fingerprint())


def import_rwi_configuration(source: Path, destination: Path) -> RWIConfiguration:
    """Validate a file and make it the active configuration.

    Raises:
        ConfigError: source missing or invalid; destination is untouched.
    """
    if not source.exists():
        raise ConfigError.file_not_found(str(source))
    config = parse_rwi_configuration(source.read_text(encoding="utf-8"), str(source))
    save_rwi_configuration(config, destination)
    return config


def reset_rwi_configuration(path: Path) -> RWIConfiguration:
    config = RWIConfiguration()
    save_rwi_configuration(config, path)
    return config
