"""Shared Jinja2 template loading with per-project override support."""

from __future__ import annotations

import json
from pathlib import Path

from jinja2 import BaseLoader, ChoiceLoader, Environment, FileSystemLoader, PackageLoader


def toml_str(value: object) -> str:
    """Render *value* as a TOML basic string (JSON escaping is a subset)."""
    return json.dumps(str(value), ensure_ascii=False)


def build_template_environment(group: str, *, project_root: Path | None = None) -> Environment:
    """Build a Jinja2 environment with user overrides before packaged defaults.

    User overrides are loaded from ``.bundlectl/templates/`` inside the
    project. Both a namespaced directory (``.bundlectl/templates/descriptor/``)
    and the shared root are searched.
    """

    loaders: list[BaseLoader] = []
    if project_root is not None:
        template_root = project_root / ".bundlectl" / "templates"
        loaders.append(FileSystemLoader([str(template_root / group), str(template_root)]))

    loaders.append(PackageLoader("bundlectl", f"templates/{group}"))
    env = Environment(loader=ChoiceLoader(loaders), keep_trailing_newline=True)
    env.filters["toml_str"] = toml_str
    return env
