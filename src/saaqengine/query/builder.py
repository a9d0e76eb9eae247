"""QueryBuilder: FilterIds + MetricSpec -> parametrized SQL.

Every statement groups one fact table by data year:

    SELECT y.year AS year, <aggregate> AS value
    FROM vehicles v JOIN year_enum y ON v.year_id = y.id
    [joins] WHERE <clauses> GROUP BY y.year ORDER BY y.year

Medians (of a measure or of RWI) use a ROW_NUMBER() CTE instead. All
filter values are bound parameters; only column names and the RWI
coefficients are spliced into the text.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from saaqengine.config.models import RegularizationConfig
from saaqengine.core.errors import QueryValidationError
from saaqengine.dimensions.registry import Dimension
from saaqengine.models import EntityScope
from saaqengine.query.metrics import (
    MODEL_YEAR_JOIN,
    MetricSpec,
    MetricType,
    RWIMode,
    aggregate_function,
)
from saaqengine.store.sql import bind_in

if TYPE_CHECKING:
    from saaqengine.query.filters import FilterIds
    from saaqengine.query.rwi import RWIConfiguration
    from saaqengine.regularization.years import YearConfiguration

_VEHICLE_IN_COLUMNS: tuple[tuple[str, str, str], ...] = (
    ("years", "v.year_id", "yr"),
    ("admin_regions", "v.admin_region_id", "rg"),
    ("mrcs", "v.mrc_id", "mrc"),
    ("municipalities", "v.municipality_id", "mun"),
    ("vehicle_classes", "v.vehicle_class_id", "cls"),
    ("makes", "v.make_id", "mk"),
    ("models", "v.model_id", "md"),
    ("colors", "v.original_color_id", "col"),
    ("model_years", "v.model_year_id", "my"),
    ("axle_counts", "v.max_axles", "ax"),
)

_LICENSE_IN_COLUMNS: tuple[tuple[str, str, str], ...] = (
    ("years", "l.year_id", "yr"),
    ("admin_regions", "l.admin_region_id", "rg"),
    ("mrcs", "l.mrc_id", "mrc"),
    ("license_types", "l.license_type_id", "lt"),
    ("age_groups", "l.age_group_id", "ag"),
    ("genders", "l.gender_id", "gd"),
)

_EXPERIENCE_COLUMNS = (
    "l.experience_1234_id",
    "l.experience_5_id",
    "l.experience_6abce_id",
    "l.experience_global_id",
)

_FACT_FROM = {
    EntityScope.VEHICLE: ("vehicles", "FROM vehicles v JOIN year_enum y ON v.year_id = y.id"),
    EntityScope.LICENSE: ("licenses", "FROM licenses l JOIN year_enum y ON l.year_id = y.id"),
}


@dataclass(frozen=True)
class Query:
    """One executable statement returning (year, value) rows."""

    sql: str
    params: dict[str, Any]
    scope: EntityScope
    metric: MetricSpec
    label: str
    fact_table: str


@dataclass(frozen=True)
class PercentageQuery:
    """numerator * 100 / denominator, year by year."""

    numerator: Query
    denominator: Query
    label: str

    @property
    def scope(self) -> EntityScope:
        return self.numerator.scope


@dataclass
class _Statement:
    joins: list[str] = field(default_factory=list)
    clauses: list[str] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)

    def join(self, clause: str | None) -> None:
        if clause and clause not in self.joins:
            self.joins.append(clause)

    def where(self, clause: str) -> None:
        if clause not in self.clauses:
            self.clauses.append(clause)

    def where_in(self, column: str, prefix: str, values: Iterable[Any]) -> str:
        body = bind_in(prefix, values, self.params)
        self.where(f"{column} IN ({body})")
        return body

    def render(self, from_clause: str) -> str:
        parts = [from_clause, *self.joins]
        if self.clauses:
            parts.append("WHERE " + "\n  AND ".join(self.clauses))
        return "\n".join(parts)


class QueryBuilder:
    """Turns resolved filters into statements for one metric."""

    def __init__(
        self,
        years_provider: Callable[[], YearConfiguration],
        rwi_provider: Callable[[], RWIConfiguration],
        config: RegularizationConfig | None = None,
    ) -> None:
        self._years_provider = years_provider
        self._rwi_provider = rwi_provider
        self.config = config or RegularizationConfig()

    def build(
        self,
        ids: FilterIds,
        metric: MetricSpec,
        baseline: FilterIds | None = None,
    ) -> Query | PercentageQuery:
        """Build the statement(s) for a metric.

        Raises:
            QueryValidationError: metric not valid for the entity, or a
                percentage without its baseline filter.
        """
        metric.validate(ids.scope)
        label = metric.describe()
        if metric.metric is MetricType.PERCENTAGE:
            if baseline is None:
                raise QueryValidationError.invalid("percentage needs resolved baseline filter ids")
            if baseline.scope is not ids.scope:
                raise QueryValidationError.invalid("percentage baseline must query the same entity")
            return PercentageQuery(
                numerator=self._build_single(ids, metric, label),
                denominator=self._build_single(baseline, metric, f"{label} baseline"),
                label=label,
            )
        return self._build_single(ids, metric, label)

    # ------------------------------------------------------------------
    # Statement assembly
    # ------------------------------------------------------------------

    def _build_single(self, ids: FilterIds, metric: MetricSpec, label: str) -> Query:
        stmt = _Statement()
        if ids.scope is EntityScope.VEHICLE:
            self._vehicle_filters(stmt, ids)
        else:
            self._license_filters(stmt, ids)
        self._unresolved_filters(stmt, ids)

        fact_table, from_clause = _FACT_FROM[ids.scope]
        expr, median = self._metric(stmt, metric)
        if median:
            sql = self._median_sql(stmt, from_clause, expr)
        else:
            sql = (
                f"SELECT y.year AS year, {expr} AS value\n"
                f"{stmt.render(from_clause)}\n"
                "GROUP BY y.year\nORDER BY y.year"
            )
        return Query(sql=sql, params=stmt.params, scope=ids.scope, metric=metric, label=label, fact_table=fact_table)

    def _metric(self, stmt: _Statement, metric: MetricSpec) -> tuple[str, bool]:
        """(aggregate select expression, False) or (expression to take a median of, True)."""
        kind = metric.metric
        if kind in (MetricType.COUNT, MetricType.PERCENTAGE):
            return "COUNT(*)", False

        if kind is MetricType.COVERAGE:
            assert metric.coverage_field is not None
            column = metric.coverage_field.column
            if metric.coverage_as_percentage:
                return f"CAST(COUNT({column}) AS REAL) * 100.0 / COUNT(*)", False
            return f"COUNT(*) - COUNT({column})", False

        if kind is MetricType.ROAD_WEAR_INDEX:
            stmt.where("v.net_mass_int IS NOT NULL")
            case = self._rwi_provider().case_sql()
            if metric.rwi_mode is RWIMode.MEDIAN:
                return case, True
            agg = "SUM" if metric.rwi_mode is RWIMode.SUM else "AVG"
            return f"{agg}({case})", False

        assert metric.field is not None
        expr = metric.field.expression
        stmt.join(metric.field.join)
        stmt.where(f"{expr} IS NOT NULL")
        if kind is MetricType.MEDIAN:
            return expr, True
        return f"{aggregate_function(kind)}({expr})", False

    @staticmethod
    def _median_sql(stmt: _Statement, from_clause: str, expr: str) -> str:
        return (
            "WITH ranked AS (\n"
            f"SELECT y.year AS year, {expr} AS value,\n"
            f"       ROW_NUMBER() OVER (PARTITION BY y.year ORDER BY {expr}) AS row_num,\n"
            "       COUNT(*) OVER (PARTITION BY y.year) AS total_count\n"
            f"{stmt.render(from_clause)}\n"
            ")\n"
            "SELECT year, AVG(value) AS value FROM ranked\n"
            "WHERE row_num IN ((total_count + 1) / 2, (total_count + 2) / 2)\n"
            "GROUP BY year\nORDER BY year"
        )

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def _vehicle_filters(self, stmt: _Statement, ids: FilterIds) -> None:
        for attr, column, prefix in _VEHICLE_IN_COLUMNS:
            values = getattr(ids, attr)
            if values:
                stmt.where_in(column, prefix, values)

        years = self._years_provider()
        regularized = ids.regularized and bool(years.uncurated)

        if ids.vehicle_types:
            vt = bind_in("vt", ids.vehicle_types, stmt.params)
            if regularized:
                uy = bind_in("uy", years.uncurated, stmt.params)
                stmt.where(
                    f"(v.vehicle_type_id IN ({vt}) OR (v.vehicle_type_id IS NULL"
                    f" AND y.year IN ({uy}) AND EXISTS (SELECT 1 FROM make_model_regularization r"
                    " WHERE r.uncurated_make_id = v.make_id AND r.uncurated_model_id = v.model_id"
                    f" AND r.vehicle_type_id IN ({vt}))))"
                )
            else:
                stmt.where(f"v.vehicle_type_id IN ({vt})")

        if ids.fuel_types:
            ft = bind_in("ft", ids.fuel_types, stmt.params)
            if ids.regularized:
                year_gate = ""
                if not ids.include_pre_schema_fuel_type:
                    stmt.params["fuel_schema_year"] = self.config.fuel_type_schema_year
                    year_gate = " AND y.year >= :fuel_schema_year"
                stmt.where(
                    f"(v.fuel_type_id IN ({ft}) OR (v.fuel_type_id IS NULL AND EXISTS ("
                    "SELECT 1 FROM make_model_regularization r"
                    " WHERE r.uncurated_make_id = v.make_id AND r.uncurated_model_id = v.model_id"
                    f" AND r.model_year_id = v.model_year_id AND r.fuel_type_id IN ({ft})){year_gate}))"
                )
            else:
                stmt.where(f"v.fuel_type_id IN ({ft})")

        if ids.age_ranges:
            stmt.join(MODEL_YEAR_JOIN)
            stmt.where("v.model_year_id IS NOT NULL")
            ranges = []
            for i, age in enumerate(ids.age_ranges):
                stmt.params[f"age{i}_min"] = age.min_age
                if age.max_age is None:
                    ranges.append(f"(y.year - my.year >= :age{i}_min)")
                else:
                    stmt.params[f"age{i}_max"] = age.max_age
                    ranges.append(f"(y.year - my.year BETWEEN :age{i}_min AND :age{i}_max)")
            stmt.where("(" + " OR ".join(ranges) + ")")

    @staticmethod
    def _license_filters(stmt: _Statement, ids: FilterIds) -> None:
        for attr, column, prefix in _LICENSE_IN_COLUMNS:
            values = getattr(ids, attr)
            if values:
                stmt.where_in(column, prefix, values)

        if ids.experience_levels:
            xp = bind_in("xp", ids.experience_levels, stmt.params)
            stmt.where("(" + " OR ".join(f"{c} IN ({xp})" for c in _EXPERIENCE_COLUMNS) + ")")

        if ids.license_classes:
            columns = sorted(f"l.{c.column} = 1" for c in ids.license_classes)
            stmt.where("(" + " OR ".join(columns) + ")")

    @staticmethod
    def _unresolved_filters(stmt: _Statement, ids: FilterIds) -> None:
        # A category whose every label went unresolved matches nothing rather than everything.
        for name in ids.unresolved:
            if not ids.ids_for(Dimension(name)):
                stmt.where("0 = 1")
                return
