"""SAAQ engine CLI - saaq command."""

import click

from saaqengine.cli.hierarchy import hierarchy_command
from saaqengine.cli.imports import import_command
from saaqengine.cli.init import init_command
from saaqengine.cli.mappings import mappings_group
from saaqengine.cli.query import explain_command, query_command
from saaqengine.cli.rwi import rwi_group
from saaqengine.cli.status import status_command
from saaqengine.core.logging import configure_logging, request_scope


@click.group()
@click.version_option(version="0.1.0", prog_name="saaq")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """SAAQ - yearly vehicle and license statistics with make/model regularization."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    configure_logging(level="DEBUG" if verbose else "WARNING")
    # One correlation id for every event the command emits
    ctx.obj["request_id"] = ctx.with_resource(request_scope())


cli.add_command(init_command, name="init")
cli.add_command(import_command, name="import")
cli.add_command(query_command, name="query")
cli.add_command(explain_command, name="explain")
cli.add_command(mappings_group, name="mappings")
cli.add_command(hierarchy_command, name="hierarchy")
cli.add_command(status_command, name="status")
cli.add_command(rwi_group, name="rwi")


if __name__ == "__main__":
    cli()
