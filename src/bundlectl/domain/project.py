"""Source project manifest — the ``[project]`` table of ``pyproject.toml``.

Dependency maps are keyed by PEP 503 canonical names and hold the
*requirement tail*: everything after the distribution name (extras,
version specifier, environment marker). ``"aiohttp[speedups]>=3.9"`` becomes
``{"aiohttp": "[speedups]>=3.9"}``, a bare ``"click"`` becomes ``{"click": ""}``.
"""

from __future__ import annotations

import re
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from bundlectl.errors import ManifestError

MANIFEST_FILENAME = "pyproject.toml"

_NAME_RE = re.compile(r"^\s*([A-Za-z0-9](?:[A-Za-z0-9._-]*[A-Za-z0-9])?)(.*)$", re.DOTALL)


def canonicalize_name(name: str) -> str:
    """PEP 503 normalisation: lowercase, runs of ``-_.`` collapsed to ``-``."""
    return re.sub(r"[-_.]+", "-", name).lower()


def parse_requirement(requirement: str) -> tuple[str, str]:
    """Split a PEP 508 string into ``(canonical_name, tail)``.

    Raises:
        ManifestError: If the string does not start with a distribution name.
    """
    match = _NAME_RE.match(requirement)
    if match is None:
        msg = f"Invalid dependency specification: {requirement!r}"
        raise ManifestError(msg, detail={"requirement": requirement})
    name, tail = match.groups()
    return canonicalize_name(name), tail.strip()


def format_requirement(name: str, tail: str) -> str:
    """Inverse of :func:`parse_requirement`."""
    if not tail:
        return name
    if tail.startswith((";", "@")):
        return f"{name} {tail}"
    return f"{name}{tail}"


def dependency_map(requirements: list[str]) -> dict[str, str]:
    """Build a name → tail map; a later duplicate overrides an earlier one."""
    deps: dict[str, str] = {}
    for requirement in requirements:
        name, tail = parse_requirement(requirement)
        deps[name] = tail
    return deps


class ProjectManifest(BaseModel):
    """The parts of the source project's manifest the adapter consumes.

    Attributes:
        name: ``[project].name`` or None.
        version: ``[project].version`` or None (dynamic versions are None).
        requires_python: ``[project].requires-python`` or None.
        dependencies: Declared production dependencies (name → tail).
        raw: The complete parsed document, handed to user rule functions.
    """

    model_config = {"frozen": True}

    name: str | None = None
    version: str | None = None
    requires_python: str | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectManifest:
        project = data.get("project", {})
        if not isinstance(project, dict):
            msg = "[project] must be a table"
            raise ManifestError(msg)
        requirements = project.get("dependencies", [])
        if not isinstance(requirements, list) or not all(
            isinstance(r, str) for r in requirements
        ):
            msg = "[project].dependencies must be a list of strings"
            raise ManifestError(msg)
        return cls(
            name=project.get("name"),
            version=project.get("version"),
            requires_python=project.get("requires-python"),
            dependencies=dependency_map(requirements),
            raw=data,
        )

    @classmethod
    def load(cls, project_root: Path) -> ProjectManifest:
        """Read ``pyproject.toml`` under *project_root*.

        A missing file yields an empty manifest: the descriptor then falls
        back to default name/version and no declared dependencies.
        """
        path = project_root / MANIFEST_FILENAME
        if not path.is_file():
            return cls()
        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as exc:
            msg = f"Invalid TOML in {path}: {exc}"
            raise ManifestError(msg, detail={"path": str(path)}) from exc
        return cls.from_dict(data)
