"""saaq hierarchy command - print the canonical make/model hierarchy."""

from __future__ import annotations

from typing import Any

import click
from rich.tree import Tree

from saaqengine.cli.utils import echo_json, open_engine
from saaqengine.core.progress import get_console, spinner
from saaqengine.regularization.models import CanonicalHierarchy, CanonicalMake


def hierarchy_to_dict(hierarchy: CanonicalHierarchy, makes: list[CanonicalMake] | None = None) -> dict[str, Any]:
    return {
        "cache_key": hierarchy.cache_key,
        "curated_years": list(hierarchy.curated_years),
        "mapping_version": hierarchy.mapping_version,
        "makes": [
            {
                "id": make.make_id,
                "name": make.make_name,
                "record_count": make.record_count,
                "models": [
                    {
                        "id": model.model_id,
                        "name": model.model_name,
                        "record_count": model.record_count,
                        "model_years": sorted(model.model_year_values.values()),
                        "vehicle_types": [vt.code for vt in model.vehicle_types],
                    }
                    for model in make.models
                ],
            }
            for make in (hierarchy.makes if makes is None else makes)
        ],
    }


@click.command()
@click.option("--make", "make_filter", help="Only this make")
@click.option("--year", "years", type=int, multiple=True, help="Curated years to cover (default: all)")
@click.option("--refresh", is_flag=True, help="Rebuild instead of reading the stored hierarchy")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def hierarchy_command(make_filter: str | None, years: tuple[int, ...], refresh: bool, as_json: bool) -> None:
    """Show canonical makes and models from curated years."""
    with open_engine() as engine, spinner("Building canonical hierarchy"):
        hierarchy = engine.canonical_hierarchy(years or None, force_refresh=refresh)

    makes = hierarchy.makes
    if make_filter:
        makes = [m for m in makes if m.make_name.casefold() == make_filter.casefold()]

    if as_json:
        echo_json(hierarchy_to_dict(hierarchy, makes))
        return

    tree = Tree(
        f"Canonical hierarchy: {len(hierarchy.makes):,} makes, {hierarchy.model_count:,} models "
        f"({hierarchy.record_count:,} records)"
    )
    for make in makes:
        branch = tree.add(f"[bold]{make.make_name}[/bold] ({make.record_count:,})")
        for model in make.models:
            years_seen = sorted(model.model_year_values.values())
            span = f" {years_seen[0]}-{years_seen[-1]}" if years_seen else ""
            types = ", ".join(vt.code or "?" for vt in model.vehicle_types)
            branch.add(f"{model.model_name} ({model.record_count:,}){span}" + (f" [{types}]" if types else ""))
    get_console().print(tree)
