"""Pluggy hook specifications for bundlectl build events.

Hooks run synchronously after the step they describe has completed.
A failing hook implementation is reported as a warning on the build result.
"""

from __future__ import annotations

from typing import Any

import pluggy

hookspec = pluggy.HookspecMarker("bundlectl")
hookimpl = pluggy.HookimplMarker("bundlectl")


class BundlectlHookSpec:
    """Hook specifications for the bundlectl plugin system."""

    @hookspec
    def post_pass(
        self,
        pass_name: str,
        output_dir: str,
        entries: dict[str, str],
    ) -> None:
        """Called after a bundling pass has written its output."""

    @hookspec
    def post_build(
        self,
        out: str,
        descriptor: dict[str, Any],
    ) -> None:
        """Called after the output directory has been finalized."""
