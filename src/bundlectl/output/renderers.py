"""Operation-specific Rich renderers for ServiceResult.

Each renderer writes to a Rich Console (backed by StringIO). The caller
extracts the rendered text via ``get_output(console)``.

Renderers are dispatched by ``result.op`` in :func:`render_result`.
Unknown ops fall through to a generic key-value renderer.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from rich.table import Table
from rich.text import Text

from bundlectl.output.console import create_console, get_output, style_for_placement

if TYPE_CHECKING:
    from rich.console import Console

    from bundlectl.services.result import ServiceResult


# ── Public API ────────────────────────────────────────────────────────


def render_result(result: ServiceResult, *, verbose: bool = False) -> str:
    """Render a ServiceResult to a styled string via Rich."""
    console = create_console()

    if result.ok:
        renderer = _OP_RENDERERS.get(result.op, _render_generic)
        renderer(result, console, verbose=verbose)
    else:
        _render_error(result, console, verbose=verbose)

    return get_output(console).rstrip("\n")


def render_quiet(result: ServiceResult) -> str:
    """Render minimal output for ``--quiet`` mode."""
    if not result.ok:
        msg = result.error.message if result.error else "Unknown error"
        return f"ERROR: {result.op} — {msg}"
    if result.op == "build":
        return str(result.data.get("out", ""))
    if result.op == "externals":
        return "\n".join(
            f"{spec}\t{placement}"
            for spec, placement in result.data.get("classifications", {}).items()
        )
    return f"OK: {result.op}"


# ── Helpers ───────────────────────────────────────────────────────────


def _status_line(console: Console, result: ServiceResult) -> None:
    label = Text("OK", style="bundle.ok")
    op = Text(f"  {result.op}", style="bundle.op")
    console.print(label, op, end="")
    console.print()


def _field(console: Console, key: str, value: Any) -> None:
    k = Text(f"  {key}: ", style="bundle.key")
    if key in ("out", "path"):
        v = Text(str(value), style="bundle.path")
    elif key == "name":
        v = Text(str(value), style="bundle.name")
    elif isinstance(value, (dict, list)):
        v = Text(json.dumps(value, separators=(",", ":")))
    else:
        v = Text(str(value))
    console.print(Text.assemble(k, v))


def _render_meta(console: Console, result: ServiceResult) -> None:
    """Print meta block including telemetry span tree (verbose only)."""
    if not result.meta:
        return

    console.print()
    console.print(Text("  meta:", style="dim"))

    for k, v in result.meta.items():
        if k == "telemetry":
            _render_telemetry_tree(console, v, indent=4)
        else:
            console.print(f"    {k}: {v}")


def _render_telemetry_tree(console: Console, span_data: dict[str, Any], indent: int = 4) -> None:
    """Render a span tree with color-coded timing."""
    prefix = " " * indent
    name = span_data.get("name", "?")
    duration = span_data.get("duration_ms", 0.0)

    if duration > 1000:
        style = "bold red"
    elif duration > 100:
        style = "yellow"
    else:
        style = "dim"

    line = f"{prefix}[{style}]{duration:>8.2f}ms[/{style}]  {name}"
    annotations = span_data.get("annotations") or {}
    if annotations:
        line += "  (" + ", ".join(f"{k}={v}" for k, v in annotations.items()) + ")"
    console.print(line)

    for child in span_data.get("children", []):
        _render_telemetry_tree(console, child, indent=indent + 4)


# ── Error renderer ────────────────────────────────────────────────────


def _render_error(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    err = result.error
    msg = err.message if err else "Unknown error"
    label = Text("ERROR", style="bundle.error")
    op = Text(f"  {result.op}", style="bundle.op")
    console.print(label, op, Text(" — "), msg)
    if err is not None:
        console.print(Text(f"  code: {err.code}", style="dim"))

    if verbose and err and err.detail:
        console.print(Text("  detail:", style="dim"))
        for k, v in err.detail.items():
            console.print(f"    {k}: {v}")


# ── Operation renderers ───────────────────────────────────────────────


def _render_build(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    d = result.data
    _status_line(console, result)
    for key in ("out", "name", "version", "rules"):
        if key in d:
            _field(console, key, d[key])
    if d.get("instrumented"):
        _field(console, "instrumented", True)

    table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
    table.add_column("Pass", style="bundle.op", no_wrap=True)
    table.add_column("Modules", justify="right")
    table.add_column("Chunks")
    table.add_column("Externals", style="bundle.external")
    for name, summary in d.get("passes", {}).items():
        table.add_row(
            name,
            str(summary.get("modules", 0)),
            ", ".join(summary.get("chunks", [])) or "-",
            ", ".join(summary.get("externals", [])) or "-",
        )
    console.print()
    console.print(table)

    deps = d.get("dependencies", [])
    console.print()
    console.print(Text(f"  dependencies ({len(deps)}):", style="bundle.key"))
    for dep in deps:
        console.print(f"    {dep}")
    if verbose:
        _render_meta(console, result)


def _render_externals(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    d = result.data
    _status_line(console, result)
    _field(console, "bundle_all", d.get("bundle_all", False))
    _field(console, "rules", d.get("rules", 0))
    _field(console, "builtins", d.get("builtins", 0))
    names = d.get("names", [])
    if names:
        _field(console, "external", ", ".join(names))

    classifications = d.get("classifications", {})
    if classifications:
        table = Table(show_header=True, show_lines=False, pad_edge=False, expand=False)
        table.add_column("Specifier", no_wrap=True)
        table.add_column("Placement")
        for spec, placement in classifications.items():
            table.add_row(spec, Text(placement, style=style_for_placement(placement)))
        console.print()
        console.print(table)
    if verbose:
        _render_meta(console, result)


def _render_generic(result: ServiceResult, console: Console, *, verbose: bool = False) -> None:
    """Fallback renderer: status line + all data as key-value pairs."""
    _status_line(console, result)
    for key, value in result.data.items():
        _field(console, key, value)
    if verbose:
        _render_meta(console, result)


# ── Dispatch table ────────────────────────────────────────────────────

_OP_RENDERERS: dict[str, Any] = {
    "build": _render_build,
    "externals": _render_externals,
}
