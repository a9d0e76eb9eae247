"""CLI utilities."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import click

from saaqengine.config.loader import PROJECT_DIR_NAME, get_database_path, get_rwi_config_path, load_config
from saaqengine.core.errors import EngineError
from saaqengine.engine import Engine


def find_project_root(start_path: Path | None = None) -> Path:
    """Find the project root from the given path.

    Walks up the directory tree looking for a .saaq directory.
    If start_path is None, uses the current working directory.

    Raises:
        click.ClickException: If no initialized project is found
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()
    while True:
        if (current / PROJECT_DIR_NAME).is_dir():
            return current
        if current == current.parent:
            break
        current = current.parent

    raise click.ClickException(
        f"No SAAQ project found at or above {start_path}\nRun 'saaq init' to create one."
    )


@contextmanager
def open_engine(path: Path | None = None) -> Iterator[Engine]:
    """Open the project's engine; engine errors become click errors."""
    root = find_project_root(path)
    try:
        config = load_config(root)
        engine = Engine.open(
            get_database_path(root, config),
            config,
            rwi_path=get_rwi_config_path(root, config),
        )
    except EngineError as e:
        raise click.ClickException(str(e)) from e

    try:
        yield engine
    except EngineError as e:
        raise click.ClickException(str(e)) from e
    finally:
        engine.close()


def echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str, ensure_ascii=False))


def format_value(value: float | None, digits: int = 2) -> str:
    if value is None:
        return "-"
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.{digits}f}"
