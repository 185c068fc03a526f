"""Subcommand modules for bundlectl.

Provides register_commands() which uses deferred imports to keep
``bundlectl --help`` fast.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register all standalone commands on the root CLI group."""
    from bundlectl.commands.build import build
    from bundlectl.commands.externals import externals

    cli.add_command(build)
    cli.add_command(externals)
