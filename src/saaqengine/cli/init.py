"""saaq init command - create a project directory and database."""

from __future__ import annotations

import shutil
from pathlib import Path

import click
import yaml

from saaqengine.config.constants import DEFAULT_CURATED_YEARS, DEFAULT_UNCURATED_YEARS
from saaqengine.config.loader import PROJECT_DIR_NAME, get_database_path, get_rwi_config_path, load_config
from saaqengine.core.errors import EngineError
from saaqengine.core.progress import get_console, spinner, status
from saaqengine.engine import Engine
from saaqengine.query.rwi import save_rwi_configuration


def _default_config() -> dict[str, object]:
    return {
        "years": {
            "curated": list(DEFAULT_CURATED_YEARS),
            "uncurated": list(DEFAULT_UNCURATED_YEARS),
        },
        "regularization": {"enabled": False, "coupling": True},
        "query": {"slow_query_policy": "warn"},
    }


def initialize_project(root: Path, *, force: bool = False) -> bool:
    """Create .saaq/ with a config file, an empty database and the default RWI file.

    Returns False when the project already exists and force is not set.
    """
    project_dir = root / PROJECT_DIR_NAME
    console = get_console()

    if project_dir.exists() and not force:
        status(f"Already initialized: {project_dir}", style="info")
        status("Use --force to reinitialize", style="info")
        return False

    if force and project_dir.exists():
        shutil.rmtree(project_dir)
    project_dir.mkdir(parents=True)

    config_path = project_dir / "config.yaml"
    config_path.write_text(yaml.safe_dump(_default_config(), sort_keys=False), encoding="utf-8")

    gitignore_path = project_dir / ".gitignore"
    gitignore_path.write_text(
        "# Ignore everything except user config files\n*\n!.gitignore\n!config.yaml\n!rwi.json\n"
    )

    config = load_config(root)
    rwi_path = get_rwi_config_path(root, config)
    with spinner("Creating database"):
        engine = Engine.open(get_database_path(root, config), config, rwi_path=rwi_path)
        try:
            save_rwi_configuration(engine.rwi_configuration, rwi_path)
        finally:
            engine.close()

    console.print()
    status(f"Initialized {project_dir}", style="success")
    status("Import data with 'saaq import vehicle YEAR FILE.csv'", style="info")
    return True


@click.command()
@click.argument("path", default=".", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Delete and recreate an existing project")
def init_command(path: Path, force: bool) -> None:
    """Initialize a SAAQ project.

    PATH is the project directory (default: current directory).
    """
    try:
        initialize_project(path.resolve(), force=force)
    except EngineError as e:
        raise click.ClickException(str(e)) from e
