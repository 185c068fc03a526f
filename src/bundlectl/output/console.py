"""Rich Console factory and theme for bundlectl output.

Creates Console instances that render to a StringIO buffer, preserving
the ``format_result() -> str`` contract. In non-TTY environments
(tests, pipes) Rich automatically disables color codes.
"""

from __future__ import annotations

from io import StringIO

from rich.console import Console
from rich.theme import Theme

BUNDLE_THEME = Theme(
    {
        "bundle.ok": "bold green",
        "bundle.error": "bold red",
        "bundle.op": "bold cyan",
        "bundle.key": "dim",
        "bundle.path": "dim",
        "bundle.name": "bold",
        "bundle.external": "blue",
        "bundle.embed": "magenta",
    }
)

_PLACEMENT_STYLES: dict[str, str] = {
    "external": "bundle.external",
    "embed": "bundle.embed",
}


def create_console(*, no_color: bool = False, width: int | None = None) -> Console:
    """Create a Console that renders to a StringIO buffer."""
    return Console(
        file=StringIO(),
        theme=BUNDLE_THEME,
        no_color=no_color,
        highlight=False,
        width=width or 120,
    )


def get_output(console: Console) -> str:
    """Extract rendered text from a StringIO-backed Console."""
    assert isinstance(console.file, StringIO)
    return console.file.getvalue()


def style_for_placement(placement: str) -> str:
    return _PLACEMENT_STYLES.get(placement, "")
