"""Config file discovery and reading.

Walk-up finder locates ``bundlectl.toml`` (or a ``pyproject.toml`` carrying a
``[tool.bundlectl]`` table), similar to how git finds .git/.
Supports the BUNDLECTL_CONFIG env var and --config CLI flag overrides.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

CONFIG_FILENAME = "bundlectl.toml"
PYPROJECT_FILENAME = "pyproject.toml"
CONFIG_ENV_VAR = "BUNDLECTL_CONFIG"


def _has_tool_table(pyproject: Path) -> bool:
    try:
        data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError:
        return False
    return isinstance(data.get("tool", {}).get("bundlectl"), dict)


def find_config(start: Path | None = None) -> Path | None:
    """Walk up from *start* (default: cwd) looking for a config file.

    ``bundlectl.toml`` wins over ``pyproject.toml`` in the same directory.
    Returns None if nothing is found. Checks BUNDLECTL_CONFIG first.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        p = Path(env_path)
        if p.is_file():
            return p
        return None

    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        pyproject = current / PYPROJECT_FILENAME
        if pyproject.is_file() and _has_tool_table(pyproject):
            return pyproject
        parent = current.parent
        if parent == current:
            break
        current = parent
    return None


def read_config_data(path: Path) -> dict[str, Any]:
    """Parse *path* and return the bundlectl tables.

    For ``pyproject.toml`` that is ``[tool.bundlectl]``; for any other file
    the whole document. Raises ``tomllib.TOMLDecodeError`` on invalid TOML.
    """
    data: dict[str, Any] = tomllib.loads(path.read_text(encoding="utf-8"))
    if path.name == PYPROJECT_FILENAME:
        tool = data.get("tool", {}).get("bundlectl", {})
        return tool if isinstance(tool, dict) else {}
    return data
