"""Package descriptor for the deployable output directory.

The descriptor is a ``pyproject.toml`` that ships no code: installing it with
``pip install .`` pulls in exactly the dependencies the bundled server and the
generated runtime need.

INVARIANT: every distribution in :data:`RUNTIME_PINS` appears in
:attr:`PackageDescriptor.dependencies`, declared by the source project or not.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from bundlectl.domain.project import ProjectManifest, canonicalize_name, format_requirement

DEFAULT_NAME = "web-app"
DEFAULT_VERSION = "1.0.0"
DEFAULT_REQUIRES_PYTHON = ">=3.12"
MODULE_TYPE = "package"
ENTRY = "index.py"

RUNTIME_PINS: dict[str, str] = {
    "aiohttp": ">=3.9,<4",
    "pydantic": ">=2.6,<3",
    "structlog": ">=24.1",
}

OBSERVABILITY_PINS: dict[str, str] = {
    "opentelemetry-api": ">=1.24",
    "opentelemetry-sdk": ">=1.24",
    "opentelemetry-exporter-otlp-proto-http": ">=1.24",
    "opentelemetry-exporter-otlp-proto-grpc": ">=1.24",
}


def references_observability(dependencies: dict[str, str]) -> bool:
    """True when any declared dependency is an OpenTelemetry distribution."""
    return any(
        name in OBSERVABILITY_PINS or name.startswith("opentelemetry-") for name in dependencies
    )


def merge_dependencies(declared: dict[str, str]) -> dict[str, str]:
    """Merge the dependency map; later layers override earlier ones.

    declared → pinned runtime-support libraries → pinned observability
    libraries (only when the project already references one).
    """
    merged = {canonicalize_name(name): tail for name, tail in declared.items()}
    merged.update(RUNTIME_PINS)
    if references_observability(merged):
        merged.update(OBSERVABILITY_PINS)
    return dict(sorted(merged.items()))


class PackageDescriptor(BaseModel):
    """Name, version and dependency map of the deployable unit."""

    model_config = {"frozen": True}

    name: str = DEFAULT_NAME
    version: str = DEFAULT_VERSION
    module_type: str = MODULE_TYPE
    entry: str = ENTRY
    requires_python: str = DEFAULT_REQUIRES_PYTHON
    dependencies: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_manifest(cls, manifest: ProjectManifest) -> PackageDescriptor:
        return cls(
            name=manifest.name or DEFAULT_NAME,
            version=manifest.version or DEFAULT_VERSION,
            requires_python=manifest.requires_python or DEFAULT_REQUIRES_PYTHON,
            dependencies=merge_dependencies(manifest.dependencies),
        )

    @property
    def requirements(self) -> list[str]:
        """PEP 508 strings, sorted by name."""
        return [format_requirement(name, tail) for name, tail in self.dependencies.items()]
