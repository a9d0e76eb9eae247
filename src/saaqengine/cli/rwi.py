"""saaq rwi commands - Road Wear Index configuration."""

from __future__ import annotations

from pathlib import Path

import click
from rich.table import Table

from saaqengine.cli.utils import echo_json, open_engine
from saaqengine.core.progress import get_console, status


@click.group()
def rwi_group() -> None:
    """Show, export, import or reset axle load distributions."""


@rwi_group.command("show")
@click.option("--sql", "show_sql", is_flag=True, help="Print the generated CASE expression")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def show_command(show_sql: bool, as_json: bool) -> None:
    """Show the active configuration and its coefficients."""
    with open_engine() as engine:
        config = engine.rwi_configuration
        path = engine.rwi_path
    if as_json:
        echo_json(config.model_dump(mode="json"))
        return

    table = Table(title=f"Road Wear Index ({path})")
    table.add_column("Entry")
    table.add_column("Distribution")
    table.add_column("Coefficient", justify="right")
    for entry, distribution, coefficient in config.summary():
        table.add_row(entry, distribution, f"{coefficient:.6f}")
    console = get_console()
    console.print(table)
    status(f"Fingerprint {config.fingerprint()}", style="info")
    if show_sql:
        console.print(config.case_sql(), highlight=False)


@rwi_group.command("export")
@click.argument("destination", type=click.Path(dir_okay=False, path_type=Path))
def export_command(destination: Path) -> None:
    """Write the active configuration to DESTINATION."""
    with open_engine() as engine:
        engine.export_rwi_configuration(destination)
    status(f"Exported to {destination}", style="success")


@rwi_group.command("import")
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def import_command(source: Path) -> None:
    """Validate SOURCE and make it the active configuration."""
    with open_engine() as engine:
        config = engine.import_rwi_configuration(source)
    status(f"Imported {source} (fingerprint {config.fingerprint()})", style="success")


@rwi_group.command("reset")
def reset_command() -> None:
    """Restore the built-in distributions."""
    with open_engine() as engine:
        engine.reset_rwi_configuration()
    status("Reset to built-in distributions", style="success")
