"""Command: show the compiled externalization rules."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from bundlectl.commands._base import BundleCommand

if TYPE_CHECKING:
    from bundlectl.commands._context import AppContext


@click.command(
    cls=BundleCommand,
    examples="""\
  bundlectl externals
  bundlectl externals aiohttp aiohttp/web yaml
  bundlectl externals --bundle-all requests
  bundlectl --json externals python:json""",
)
@click.argument("specifiers", nargs=-1)
@click.option(
    "--bundle-all/--no-bundle-all", default=None, help="Embed every non-built-in module."
)
@click.pass_obj
def externals(app: AppContext, specifiers: tuple[str, ...], bundle_all: bool | None) -> None:
    """Classify module SPECIFIERS as external or embedded."""
    from bundlectl.services.classify import ClassifyService

    adapter = app.settings.adapter
    if bundle_all is not None:
        adapter = adapter.model_copy(update={"bundle_all": bundle_all})
    svc = ClassifyService(app.settings.project_root, adapter)
    app.emit(svc.classify(list(specifiers)))
