"""saaq import command - load SAAQ CSV exports."""

from __future__ import annotations

import csv
from collections.abc import Iterator
from pathlib import Path

import click

from saaqengine.cli.utils import echo_json, open_engine
from saaqengine.core.progress import pluralize, row_counter, spinner, status
from saaqengine.models import EntityScope


def read_rows(path: Path, encoding: str) -> Iterator[dict[str, str]]:
    """Stream CSV rows keyed by header; the delimiter is sniffed (SAAQ uses ',' or ';')."""
    with path.open(newline="", encoding=encoding) as f:
        sample = f.read(4096)
        f.seek(0)
        try:
            dialect: type[csv.Dialect] | csv.Dialect = csv.Sniffer().sniff(sample, delimiters=",;\t")
        except csv.Error:
            dialect = csv.excel
        yield from csv.DictReader(f, dialect=dialect)


@click.command()
@click.argument("entity", type=click.Choice([s.value for s in EntityScope]))
@click.argument("year", type=int)
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--replace", is_flag=True, help="Replace the year's existing records")
@click.option("--encoding", default="utf-8-sig", show_default=True, help="CSV file encoding")
@click.option("--show-errors", default=10, show_default=True, help="Row errors to print per file")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def import_command(
    entity: str,
    year: int,
    files: tuple[Path, ...],
    replace: bool,
    encoding: str,
    show_errors: int,
    as_json: bool,
) -> None:
    """Import CSV FILES as ENTITY records of data YEAR.

    With several files, only the first replaces the year.
    """
    scope = EntityScope(entity)
    results = []
    with open_engine() as engine:
        for index, path in enumerate(files):
            label = f"Importing {path.name}"
            with spinner(label) as live:
                result = engine.import_batch(
                    scope,
                    year,
                    read_rows(path, encoding),
                    replace_year=replace and index == 0,
                    file_name=path.name,
                    progress=row_counter(live, label),
                )
            results.append(result)
            if as_json:
                continue
            style = "success" if not result.skipped else "warning"
            status(
                f"{path.name}: {pluralize(result.inserted, 'record')} imported, "
                f"{pluralize(result.skipped, 'row')} skipped ({result.elapsed_seconds:.1f}s)",
                style=style,
            )
            if result.replaced:
                status(f"replaced {pluralize(result.replaced, 'existing record')}", indent=2)
            for error in result.errors[:show_errors]:
                status(f"row {error.row}: {error.message}", style="info", indent=2)

    if as_json:
        echo_json([r.to_dict() for r in results])
