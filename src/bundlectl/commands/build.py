"""Command: build the deployable output directory."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from bundlectl.commands._base import BundleCommand

if TYPE_CHECKING:
    from bundlectl.commands._context import AppContext


@click.command(
    cls=BundleCommand,
    examples="""\
  bundlectl build
  bundlectl build --app .webapp/output --out dist
  bundlectl build --bundle-all
  bundlectl build --no-precompress
  bundlectl --json build""",
)
@click.option("--app", "app_dir", default=None, help="Compiled application directory.")
@click.option("--out", default=None, help="Output directory.")
@click.option(
    "--bundle-all/--no-bundle-all", default=None, help="Embed every non-built-in module."
)
@click.option(
    "--precompress/--no-precompress",
    default=None,
    help="Write .gz siblings for static assets (default: on).",
)
@click.pass_obj
def build(
    app: AppContext,
    app_dir: str | None,
    out: str | None,
    bundle_all: bool | None,
    precompress: bool | None,
) -> None:
    """Bundle the compiled application into a deployable directory."""
    from bundlectl.infrastructure.builder import CompiledAppBuilder
    from bundlectl.services.build import BuildService

    overrides = {
        key: value
        for key, value in {
            "app_dir": app_dir,
            "out": out,
            "bundle_all": bundle_all,
            "precompress": precompress,
        }.items()
        if value is not None
    }
    settings = app.settings
    adapter = settings.adapter.model_copy(update=overrides)
    root = settings.project_root

    builder = CompiledAppBuilder(root / adapter.app_dir, project_root=root)
    svc = BuildService(root, adapter, settings.runtime, plugins=app.plugins)
    app.emit(svc.adapt(builder))
