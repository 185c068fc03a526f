"""Bundling pass inputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from bundlectl.domain.externals import ExternalRuleSet


class PassName(StrEnum):
    APPLICATION = "application"
    RUNTIME = "runtime"


@dataclass(frozen=True)
class BundleUnit:
    """One bundling pass: entries, destination and externalization rules.

    Attributes:
        name: Which pass this unit belongs to.
        entries: Entry name → source file. Each entry is written as
            ``<output_dir>/<name>.py``.
        output_dir: Destination directory, created by the bundler.
        module_format: Output module format; only ``"package"`` is produced.
        externals: Specifiers matching these rules stay plain imports.
        module_paths: Extra directories searched when resolving imports.
    """

    name: PassName
    entries: dict[str, Path]
    output_dir: Path
    externals: ExternalRuleSet
    module_format: str = "package"
    module_paths: tuple[Path, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class BundleOutput:
    """What a bundler wrote for one unit.

    Attributes:
        output_dir: Where the unit was written.
        files: Output-relative paths of entries and embedded local modules.
        chunks: Embedded distribution top-level name → chunk directory.
        external_imports: Top-level names left as plain imports.
        optional_imports: Conditional imports left unresolved at build time.
        warnings: Non-fatal issues (unresolvable optional imports).
    """

    output_dir: Path
    files: tuple[str, ...]
    chunks: dict[str, str]
    external_imports: tuple[str, ...]
    optional_imports: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
