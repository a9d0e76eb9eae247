"""saaq status command - show database and cache state."""

from __future__ import annotations

from pathlib import Path

import click
from rich.table import Table

from saaqengine.cli.utils import echo_json, open_engine
from saaqengine.core.progress import get_console, status


@click.command()
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--load", is_flag=True, help="Load the filter cache and report its size")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def status_command(path: Path, load: bool, as_json: bool) -> None:
    """Show project status.

    PATH is the project directory (default: current directory).
    """
    with open_engine(path) as engine:
        if load:
            engine.initialize()
        info = engine.status()
        if load:
            info["cache_items"] = engine.cache.snapshot.item_count
        stats = engine.regularization.statistics()
        imports = engine.db.execute_raw(
            "SELECT entity, year, SUM(record_count) FROM import_log "
            "WHERE status IN ('completed', 'partial') GROUP BY entity, year ORDER BY entity, year"
        )
        info["imports"] = [{"entity": r[0], "year": r[1], "records": r[2]} for r in imports]
        info["mappings"] = {
            "count": stats.mapping_count,
            "covered_records": stats.covered_records,
            "coverage_percent": round(stats.coverage_percent, 2),
        }

    if as_json:
        echo_json(info)
        return

    status(f"Database: {info['db_path']}", style="none")
    generation = info["generation"]
    status(
        f"Data generation {generation['data_generation']}, mapping version {generation['mapping_version']}",
        style="info",
    )
    status(f"Cache: {info['cache_state']}", style="info")
    years = info["years"]
    status(f"Curated years: {years['curated']}", style="info")
    status(f"Uncurated years: {years['uncurated']}", style="info")
    mappings = info["mappings"]
    status(
        f"Mappings: {mappings['count']} covering {mappings['covered_records']:,} records "
        f"({mappings['coverage_percent']}%)",
        style="info",
    )
    if info["imports"]:
        table = Table(title="Imported years")
        table.add_column("Entity")
        table.add_column("Year", justify="right")
        table.add_column("Records", justify="right")
        for row in info["imports"]:
            table.add_row(row["entity"], str(row["year"]), f"{row['records']:,}")
        get_console().print(table)
    else:
        status("No data imported yet", style="warning")
