"""Descriptor emission — the output directory's ``pyproject.toml``."""

from __future__ import annotations

from pathlib import Path

import structlog

from bundlectl.domain.descriptor import PackageDescriptor
from bundlectl.domain.project import ProjectManifest
from bundlectl.infrastructure.templates import build_template_environment

log = structlog.get_logger("bundlectl.descriptor")

DESCRIPTOR_FILENAME = "pyproject.toml"
TEMPLATE_NAME = "pyproject.toml.j2"


class DescriptorEmitter:
    """Builds and renders a :class:`PackageDescriptor`.

    Template overrides are looked up in ``.bundlectl/templates/descriptor/``
    under *project_root* before the packaged default.
    """

    def __init__(self, project_root: Path | None = None) -> None:
        self._env = build_template_environment("descriptor", project_root=project_root)

    def build(self, manifest: ProjectManifest) -> PackageDescriptor:
        return PackageDescriptor.from_manifest(manifest)

    def render(self, descriptor: PackageDescriptor) -> str:
        template = self._env.get_template(TEMPLATE_NAME)
        return template.render(descriptor=descriptor)

    def write(self, descriptor: PackageDescriptor, out: Path) -> Path:
        path = out / DESCRIPTOR_FILENAME
        path.write_text(self.render(descriptor), encoding="utf-8")
        log.debug("descriptor.written", path=str(path), dependencies=len(descriptor.dependencies))
        return path
