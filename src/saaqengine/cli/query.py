"""saaq query / explain commands."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import click
from rich.table import Table

from saaqengine.cli.utils import echo_json, format_value, open_engine
from saaqengine.core.errors import QueryValidationError
from saaqengine.core.progress import get_console, status
from saaqengine.dimensions.registry import Dimension
from saaqengine.models import EntityScope
from saaqengine.query.builder import PercentageQuery
from saaqengine.query.filters import AgeRange, FilterSpec, LicenseClass, QueryOptions
from saaqengine.query.metrics import CoverageField, MeasureField, MetricSpec, MetricType, RWIMode

QueryFn = Callable[..., Any]


def parse_filter(text: str) -> tuple[Dimension, str]:
    """'make=HONDA' -> (Dimension.MAKE, 'HONDA')."""
    name, sep, label = text.partition("=")
    if not sep or not label.strip():
        raise click.BadParameter(f"expected DIMENSION=LABEL, got {text!r}")
    try:
        return Dimension(name.strip().lower()), label.strip()
    except ValueError as e:
        raise click.BadParameter(f"unknown dimension {name!r}") from e


def parse_age_range(text: str) -> AgeRange:
    """'0-4' -> 0..4, '15+' -> 15 and older."""
    text = text.strip()
    try:
        if text.endswith("+"):
            return AgeRange(int(text[:-1]))
        low, _, high = text.partition("-")
        return AgeRange(int(low), int(high) if high else int(low))
    except ValueError as e:
        raise click.BadParameter(f"expected MIN-MAX or MIN+, got {text!r}") from e
    except QueryValidationError as e:
        raise click.BadParameter(e.message) from e


def _filter_spec(
    scope: EntityScope,
    years: tuple[int, ...],
    filters: tuple[str, ...],
    **extra: Any,
) -> FilterSpec:
    values: dict[Dimension, list[str]] = {}
    for text in filters:
        dim, label = parse_filter(text)
        values.setdefault(dim, []).append(label)
    return FilterSpec(scope=scope, years=set(years), values=values, **extra)


def query_options(fn: QueryFn) -> QueryFn:
    """Shared filter/metric options of query and explain."""
    options = [
        click.option("--entity", type=click.Choice([s.value for s in EntityScope]), default="vehicle",
                     show_default=True),
        click.option("--year", "years", type=int, multiple=True, help="Data year (repeatable)"),
        click.option("--filter", "filters", multiple=True, metavar="DIMENSION=LABEL",
                     help="Dimension label, e.g. make=HONDA or 'model=CR-V (HONDA)' (repeatable)"),
        click.option("--model-year", "model_years", type=int, multiple=True),
        click.option("--axles", "axle_counts", type=int, multiple=True),
        click.option("--age", "ages", multiple=True, metavar="MIN-MAX|MIN+", help="Vehicle age range"),
        click.option("--license-class", "license_classes", multiple=True,
                     type=click.Choice([c.value for c in LicenseClass])),
        click.option("--curated-only", is_flag=True, help="Limit to curated years (no regularization)"),
        click.option("--metric", type=click.Choice([m.value for m in MetricType]), default="count",
                     show_default=True),
        click.option("--field", "measure", type=click.Choice([f.value for f in MeasureField])),
        click.option("--coverage-field", type=click.Choice([f.value for f in CoverageField])),
        click.option("--missing-count", is_flag=True, help="Coverage as count of missing values"),
        click.option("--rwi-mode", type=click.Choice([m.value for m in RWIMode]), default="average",
                     show_default=True),
        click.option("--baseline", "baseline_filters", multiple=True, metavar="DIMENSION=LABEL",
                     help="Percentage denominator filter (same years and entity)"),
        click.option("--normalize", is_flag=True, help="Divide by the first year's value"),
        click.option("--cumulative", is_flag=True, help="Running total"),
        click.option("--regularize/--no-regularize", default=None, help="Override regularization.enabled"),
        click.option("--coupling/--no-coupling", default=None, help="Override regularization.coupling"),
        click.option("--pre-schema-fuel", is_flag=True, help="Let pre-fuel-schema years match fuel filters"),
        click.option("--collect-unresolved", is_flag=True, help="Ignore labels that match nothing"),
        click.option("--json", "as_json", is_flag=True, help="Output as JSON"),
    ]

    for option in reversed(options):
        fn = option(fn)
    return fn


def build_specs(kwargs: dict[str, Any]) -> tuple[FilterSpec, MetricSpec]:
    scope = EntityScope(kwargs["entity"])
    extra = {
        "model_years": set(kwargs["model_years"]),
        "axle_counts": set(kwargs["axle_counts"]),
        "age_ranges": [parse_age_range(a) for a in kwargs["ages"]],
        "license_classes": {LicenseClass(c) for c in kwargs["license_classes"]},
        "limit_to_curated_years": kwargs["curated_only"],
    }
    spec = _filter_spec(scope, kwargs["years"], kwargs["filters"], **extra)
    metric_type = MetricType(kwargs["metric"])
    baseline = None
    if metric_type is MetricType.PERCENTAGE:
        baseline = _filter_spec(scope, kwargs["years"], kwargs["baseline_filters"],
                                limit_to_curated_years=kwargs["curated_only"])
    metric = MetricSpec(
        metric=metric_type,
        field=MeasureField(kwargs["measure"]) if kwargs["measure"] else None,
        baseline=baseline,
        coverage_field=CoverageField(kwargs["coverage_field"]) if kwargs["coverage_field"] else None,
        coverage_as_percentage=not kwargs["missing_count"],
        rwi_mode=RWIMode(kwargs["rwi_mode"]),
        normalize=kwargs["normalize"],
        cumulative=kwargs["cumulative"],
    )
    return spec, metric


def build_options(defaults: QueryOptions, kwargs: dict[str, Any]) -> QueryOptions:
    return QueryOptions(
        regularization_enabled=defaults.regularization_enabled if kwargs["regularize"] is None
        else kwargs["regularize"],
        coupling=defaults.coupling if kwargs["coupling"] is None else kwargs["coupling"],
        include_pre_schema_fuel_type=kwargs["pre_schema_fuel"] or defaults.include_pre_schema_fuel_type,
        on_unresolved="collect" if kwargs["collect_unresolved"] else "raise",
    )


@click.command()
@query_options
def query_command(**kwargs: Any) -> None:
    """Run a yearly time-series query."""
    spec, metric = build_specs(kwargs)
    with open_engine() as engine:
        engine.initialize(spec.scope)
        result = engine.resolve_and_query(spec, metric, build_options(engine.default_options(), kwargs))

    if kwargs["as_json"]:
        echo_json(result.to_dict())
        return

    console = get_console()
    unit = f" ({result.series.unit})" if result.series.unit else ""
    table = Table(title=f"{result.series.label}{unit}")
    table.add_column("Year", justify="right")
    table.add_column("Value", justify="right")
    for point in result.series.points:
        table.add_row(str(point.year), format_value(point.value))
    console.print(table)

    summary = result.summary
    if summary.point_count:
        status(
            f"{summary.first_year}-{summary.last_year}: mean {format_value(summary.mean)}, "
            f"change {format_value(summary.percent_change)}%, "
            f"CAGR {format_value(summary.compound_annual_growth)}%",
            style="info",
        )
    unresolved = result.filter.get("unresolved")
    if unresolved:
        status(f"Unresolved labels ignored: {unresolved}", style="warning")
    if result.warning is not None:
        status(result.warning.message, style="warning")


@click.command()
@query_options
@click.option("--sql", "show_sql", is_flag=True, help="Print the generated SQL")
def explain_command(show_sql: bool, **kwargs: Any) -> None:
    """Show the query plan classification without running the query."""
    spec, metric = build_specs(kwargs)
    with open_engine() as engine:
        engine.initialize(spec.scope)
        query, plans = engine.explain(spec, metric, build_options(engine.default_options(), kwargs))

    statements = [query.numerator, query.denominator] if isinstance(query, PercentageQuery) else [query]
    if kwargs["as_json"]:
        echo_json(
            [
                {"sql": q.sql, "params": q.params, "plan": p.kind.value, "details": p.details}
                for q, p in zip(statements, plans, strict=True)
            ]
        )
        return

    console = get_console()
    for q, plan in zip(statements, plans, strict=True):
        style = "warning" if plan.is_full_scan else "success"
        status(f"{q.label}: {plan.kind.value}", style=style)
        for line in plan.details:
            status(line, indent=4)
        if show_sql:
            console.print(q.sql, highlight=False)
            console.print(q.params, highlight=False)
