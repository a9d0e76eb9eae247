"""saaq mappings commands - curate the make/model regularization table."""

from __future__ import annotations

import dataclasses

import click
from rich.table import Table

from saaqengine.cli.utils import echo_json, open_engine
from saaqengine.core.progress import get_console, pluralize, spinner, status
from saaqengine.dimensions.registry import Dimension
from saaqengine.engine import Engine
from saaqengine.regularization.models import MappingRecord, MappingRequest


def _require_id(engine: Engine, dimension: Dimension, value: str | int, *, parent_id: int | None = None) -> int:
    found = engine.schema.lookup_id(dimension, value, parent_id=parent_id)
    if found is None:
        raise click.ClickException(f"Unknown {dimension.value}: {value}")
    return found


def _mapping_table(records: list[MappingRecord]) -> Table:
    table = Table(title="Regularization mappings")
    table.add_column("ID", justify="right")
    table.add_column("Uncurated")
    table.add_column("Canonical")
    table.add_column("Model year", justify="right")
    table.add_column("Fuel")
    table.add_column("Type")
    table.add_column("Records", justify="right")
    table.add_column("Years")
    for r in records:
        years = f"{r.year_range_start}-{r.year_range_end}" if r.year_range_start else "-"
        table.add_row(
            str(r.id),
            f"{r.uncurated_make} {r.uncurated_model}",
            f"{r.canonical_make} {r.canonical_model}",
            str(r.model_year) if r.model_year is not None else "*",
            r.fuel_type or "-",
            r.vehicle_type or "-",
            f"{r.record_count:,}",
            years,
        )
    return table


@click.group()
def mappings_group() -> None:
    """List, add and remove make/model regularization mappings."""


@mappings_group.command("list")
@click.option("--vehicle-type", help="Only pairs with a mapping that assigns this vehicle type code")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def list_command(vehicle_type: str | None, as_json: bool) -> None:
    """List every mapping."""
    with open_engine() as engine:
        records = engine.get_all_mappings()
        if vehicle_type is not None:
            records = _with_vehicle_type(engine, records, vehicle_type)
    if as_json:
        echo_json([r.to_dict() for r in records])
        return
    get_console().print(_mapping_table(records))


def _with_vehicle_type(engine: Engine, records: list[MappingRecord], code: str) -> list[MappingRecord]:
    mapped = {c: type_id for type_id, c, _ in engine.regularization.mapped_vehicle_types()}
    if code not in mapped:
        known = ", ".join(mapped) or "none"
        raise click.ClickException(f"No mapping assigns vehicle type {code}; mapped types: {known}")
    pairs = engine.regularization.uncurated_pairs_for_vehicle_type(mapped[code])
    return [r for r in records if (r.uncurated_make_id, r.uncurated_model_id) in pairs]


@mappings_group.command("add")
@click.option("--make", required=True, help="Uncurated make name")
@click.option("--model", required=True, help="Uncurated model name")
@click.option("--to-make", required=True, help="Canonical make name")
@click.option("--to-model", required=True, help="Canonical model name")
@click.option("--model-year", type=int, help="Model year (omit for a wildcard mapping)")
@click.option("--fuel", help="Fuel type code (model-year mappings only)")
@click.option("--vehicle-type", help="Vehicle type code")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def add_command(
    make: str,
    model: str,
    to_make: str,
    to_model: str,
    model_year: int | None,
    fuel: str | None,
    vehicle_type: str | None,
    as_json: bool,
) -> None:
    """Map an uncurated make/model to its canonical spelling."""
    with open_engine() as engine:
        make_id = _require_id(engine, Dimension.MAKE, make)
        canonical_make_id = _require_id(engine, Dimension.MAKE, to_make)
        request = MappingRequest(
            uncurated_make_id=make_id,
            uncurated_model_id=_require_id(engine, Dimension.MODEL, model, parent_id=make_id),
            canonical_make_id=canonical_make_id,
            canonical_model_id=_require_id(engine, Dimension.MODEL, to_model, parent_id=canonical_make_id),
            model_year_id=_require_id(engine, Dimension.MODEL_YEAR, model_year) if model_year else None,
            fuel_type_id=_require_id(engine, Dimension.FUEL_TYPE, fuel) if fuel else None,
            vehicle_type_id=_require_id(engine, Dimension.VEHICLE_TYPE, vehicle_type) if vehicle_type else None,
        )
        record = engine.add_mapping(request)

    if as_json:
        echo_json(record.to_dict())
        return
    status(
        f"Mapped {record.uncurated_make} {record.uncurated_model} -> "
        f"{record.canonical_make} {record.canonical_model} ({pluralize(record.record_count, 'record')})",
        style="success",
    )


@mappings_group.command("remove")
@click.argument("mapping_id", required=False, type=int)
@click.option("--make", help="Remove every mapping of this uncurated make ...")
@click.option("--model", help="... and model")
def remove_command(mapping_id: int | None, make: str | None, model: str | None) -> None:
    """Remove a mapping by id, or every mapping of an uncurated pair."""
    if mapping_id is None and not (make and model):
        raise click.UsageError("Pass a MAPPING_ID or both --make and --model")
    with open_engine() as engine:
        if mapping_id is not None:
            removed = int(engine.delete_mapping(mapping_id))
        else:
            assert make is not None and model is not None
            make_id = _require_id(engine, Dimension.MAKE, make)
            model_id = _require_id(engine, Dimension.MODEL, model, parent_id=make_id)
            removed = engine.delete_mappings_for_pair(make_id, model_id)
    if removed:
        status(f"Removed {pluralize(removed, 'mapping')}", style="success")
    else:
        status("No matching mapping", style="warning")


@mappings_group.command("stats")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def stats_command(as_json: bool) -> None:
    """Show how much of the uncurated data the mappings cover."""
    with open_engine() as engine:
        stats = engine.regularization.detailed_statistics()
    if as_json:
        payload = dataclasses.asdict(stats)
        payload["coverage_percent"] = stats.summary.coverage_percent
        echo_json(payload)
        return

    table = Table(title="Regularization coverage")
    table.add_column("Field")
    table.add_column("Assigned", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("%", justify="right")
    for name, cov in (
        ("make/model", stats.make_model),
        ("fuel type", stats.fuel_type),
        ("vehicle type", stats.vehicle_type),
    ):
        table.add_row(name, f"{cov.assigned:,}", f"{cov.total:,}", f"{cov.percent:.1f}")
    get_console().print(table)
    summary = stats.summary
    status(
        f"{pluralize(summary.mapping_count, 'mapping')} ({stats.wildcard_mappings} wildcard, "
        f"{stats.triplet_mappings} model-year) cover {summary.covered_records:,} of "
        f"{summary.total_uncurated_records:,} uncurated records ({summary.coverage_percent:.1f}%)",
        style="info",
    )


@mappings_group.command("pairs")
@click.option("--all", "include_exact", is_flag=True, help="Include pairs whose spelling exists in curated years")
@click.option("--limit", default=50, show_default=True, help="Rows to show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def pairs_command(include_exact: bool, limit: int, as_json: bool) -> None:
    """List uncurated make/model pairs, most frequent first."""
    with open_engine() as engine:
        pairs = engine.regularization.find_uncurated_pairs(include_exact_matches=include_exact)
    if as_json:
        echo_json([dataclasses.asdict(p) for p in pairs[:limit]])
        return

    table = Table(title=f"Uncurated pairs ({len(pairs):,})")
    table.add_column("Make")
    table.add_column("Model")
    table.add_column("Records", justify="right")
    table.add_column("% uncurated", justify="right")
    table.add_column("Years")
    table.add_column("Mapped")
    table.add_column("In curated")
    for p in pairs[:limit]:
        table.add_row(
            p.make_name,
            p.model_name,
            f"{p.record_count:,}",
            f"{p.percentage_of_uncurated:.2f}",
            f"{p.earliest_year}-{p.latest_year}",
            "✓" if p.has_mapping else "",
            "✓" if p.exists_in_curated else "",
        )
    get_console().print(table)


@mappings_group.command("auto")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def auto_command(as_json: bool) -> None:
    """Map uncurated pairs whose spelling already exists in curated years."""
    with open_engine() as engine:
        with spinner("Auto-regularizing exact matches"):
            created = engine.auto_regularize()
    if as_json:
        echo_json([r.to_dict() for r in created])
        return
    status(f"Created {pluralize(len(created), 'mapping')}", style="success")


@mappings_group.command("suggest")
@click.option("--make", required=True, help="Uncurated make name")
@click.option("--model", required=True, help="Uncurated model name")
@click.option("--limit", default=10, show_default=True, help="Candidates to show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def suggest_command(make: str, model: str, limit: int, as_json: bool) -> None:
    """Rank curated models by similarity to an uncurated spelling."""
    with open_engine() as engine:
        make_id = _require_id(engine, Dimension.MAKE, make)
        model_id = _require_id(engine, Dimension.MODEL, model, parent_id=make_id)
        candidates = engine.regularization.suggest_canonical(make_id, model_id, limit=limit)
    if as_json:
        echo_json(
            [
                {
                    "make": c.model.make_name,
                    "model": c.model.model_name,
                    "records": c.model.record_count,
                    "score": c.score,
                }
                for c in candidates
            ]
        )
        return
    if not candidates:
        status("No similar curated model", style="warning")
        return
    table = Table(title=f"Candidates for {make} {model}")
    table.add_column("Make")
    table.add_column("Model")
    table.add_column("Records", justify="right")
    table.add_column("Score", justify="right")
    for c in candidates:
        table.add_row(c.model.make_name, c.model.model_name, f"{c.model.record_count:,}", f"{c.score:.2f}")
    get_console().print(table)
