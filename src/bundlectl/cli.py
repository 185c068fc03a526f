"""Root CLI group for bundlectl with global flags and command registration."""

from __future__ import annotations

import click

from bundlectl import __version__
from bundlectl.commands import register_commands
from bundlectl.commands._base import BundleGroup
from bundlectl.commands._context import AppContext
from bundlectl.config.settings import BundleSettings


@click.group(
    cls=BundleGroup,
    invoke_without_command=True,
    examples="""\
  bundlectl build
  bundlectl -v build --out dist
  bundlectl externals aiohttp/web
  bundlectl -c deploy/bundlectl.toml build""",
)
@click.version_option(version=__version__, prog_name="bundlectl")
@click.option("--json", "json_output", is_flag=True, help="Structured JSON output.")
@click.option("-q", "--quiet", is_flag=True, help="Minimal output.")
@click.option("-v", "--verbose", is_flag=True, help="Detailed output with build timings.")
@click.option("--log-json", is_flag=True, help="Structured JSON log output to stderr.")
@click.option("-c", "--config", "config_path", default=None, help="Override config file path.")
@click.pass_context
def cli(
    ctx: click.Context,
    json_output: bool,
    quiet: bool,
    verbose: bool,
    log_json: bool,
    config_path: str | None,
) -> None:
    """bundlectl — package a compiled web application for deployment."""
    ctx.ensure_object(dict)
    settings = BundleSettings.from_cli(
        config_path=config_path,
        json_output=json_output,
        quiet=quiet,
        verbose=verbose,
        log_json=log_json,
    )
    ctx.obj = AppContext(settings)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


register_commands(cli)
