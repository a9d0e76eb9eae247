"""Curated/uncurated year split."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from saaqengine.config.models import YearsConfig
from saaqengine.core.errors import RegularizationError


@dataclass(frozen=True)
class YearConfiguration:
    """Which data years are curated and which are raw exports.

    A year may be neither (not loaded yet), but never both.
    """

    curated: frozenset[int]
    uncurated: frozenset[int]

    def __post_init__(self) -> None:
        overlap = sorted(self.curated & self.uncurated)
        if overlap:
            raise RegularizationError.overlapping_years(overlap)

    @classmethod
    def of(cls, curated: Iterable[int], uncurated: Iterable[int]) -> YearConfiguration:
        return cls(frozenset(int(y) for y in curated), frozenset(int(y) for y in uncurated))

    @classmethod
    def from_config(cls, config: YearsConfig) -> YearConfiguration:
        return cls.of(config.curated, config.uncurated)

    def is_curated(self, year: int) -> bool:
        return year in self.curated

    def is_uncurated(self, year: int) -> bool:
        return year in self.uncurated

    @property
    def sorted_curated(self) -> list[int]:
        return sorted(self.curated)

    @property
    def sorted_uncurated(self) -> list[int]:
        return sorted(self.uncurated)

    def to_dict(self) -> dict[str, list[int]]:
        return {"curated": self.sorted_curated, "uncurated": self.sorted_uncurated}
