"""Programmatic adapter API.

    from bundlectl.adapter import create_adapter
    from bundlectl.infrastructure.builder import CompiledAppBuilder

    adapter = create_adapter(out="build", external=lambda pkg: ["aiohttp"])
    result = adapter.adapt(CompiledAppBuilder(Path(".webapp/output"), project_root=Path(".")))

Options are the union of the ``[adapter]`` and ``[runtime]`` config fields;
unlike the TOML config, ``external`` may be a callable here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from bundlectl.config.models import AdapterConfig, RuntimeConfig
from bundlectl.errors import ConfigurationError
from bundlectl.infrastructure.builder import Builder
from bundlectl.plugins.manager import PluginManager
from bundlectl.services.build import BuildService
from bundlectl.services.result import ServiceResult

ADAPTER_NAME = "bundlectl"


@dataclass(frozen=True)
class Adapter:
    """A configured adapter, ready to run against a builder."""

    adapter: AdapterConfig
    runtime: RuntimeConfig
    project_root: Path
    plugins: PluginManager | None = None
    name: str = ADAPTER_NAME
    supports: dict[str, bool] = field(
        default_factory=lambda: {"read": True, "instrumentation": True}
    )

    def adapt(self, builder: Builder) -> ServiceResult:
        service = BuildService(
            self.project_root, self.adapter, self.runtime, plugins=self.plugins
        )
        return service.adapt(builder)


def create_adapter(
    *,
    project_root: Path | None = None,
    plugins: PluginManager | None = None,
    **options: Any,
) -> Adapter:
    """Validate *options* and build an :class:`Adapter`.

    Raises:
        ConfigurationError: On unknown or invalid options.
    """
    adapter_fields = set(AdapterConfig.model_fields)
    runtime_fields = set(RuntimeConfig.model_fields)
    unknown = sorted(set(options) - adapter_fields - runtime_fields)
    if unknown:
        msg = f"Unknown adapter option(s): {', '.join(unknown)}"
        raise ConfigurationError(msg, detail={"options": unknown})
    try:
        adapter = AdapterConfig(**{k: v for k, v in options.items() if k in adapter_fields})
        runtime = RuntimeConfig(**{k: v for k, v in options.items() if k in runtime_fields})
    except ValidationError as exc:
        msg = f"Invalid adapter options: {exc.error_count()} error(s)"
        errors = exc.errors(include_url=False, include_context=False, include_input=False)
        raise ConfigurationError(msg, detail={"errors": errors}) from exc
    return Adapter(
        adapter=adapter,
        runtime=runtime,
        project_root=project_root or Path.cwd(),
        plugins=plugins,
    )
