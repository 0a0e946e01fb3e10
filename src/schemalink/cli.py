"""Root CLI group for schemalink with global flags and command registration."""

from __future__ import annotations

import click

from schemalink import __version__
from schemalink.commands import register_commands
from schemalink.commands._context import AppContext
from schemalink.config.settings import SchemalinkSettings


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="schemalink")
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output.")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
@click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr.")
@click.option("-c", "--config", "config_path", default=None, help="Override config file path.")
@click.option("--sync", is_flag=True, help="Force synchronous event dispatch.")
@click.option("--actor", default=None, help="Identity recorded on changed rows.")
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    verbose: bool,
    log_json: bool,
    config_path: str | None,
    sync: bool,
    actor: str | None,
) -> None:
    """schemalink — keep a schema registry's link graph consistent."""
    ctx.ensure_object(dict)
    flags: dict[str, object] = {
        "json_output": json_output,
        "verbose": verbose,
        "log_json": log_json,
        "sync": sync,
    }
    if actor is not None:
        flags["actor"] = actor
    settings = SchemalinkSettings.from_cli(config_path=config_path, **flags)
    app = AppContext(settings)
    ctx.obj = app
    ctx.call_on_close(app.close)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


register_commands(cli)
