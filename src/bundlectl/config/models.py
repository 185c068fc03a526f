"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, ``bundlectl.toml`` (or the
``[tool.bundlectl]`` table of ``pyproject.toml``) only contains overrides.
A project needs no configuration at all to build.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, Field

# --- bundlectl.toml sections ---


class BundlerConfig(BaseModel):
    """[adapter.bundler] section — options forwarded to the bundler."""

    model_config = {"frozen": True}

    module_paths: list[str] = Field(default_factory=list)


class AdapterConfig(BaseModel):
    """[adapter] section.

    Attributes:
        out: Output directory, relative to the project root.
        app_dir: Compiled application directory read by the builder.
        precompress: Write ``.gz`` siblings for static assets.
        env_prefix: Prefix applied to the runtime's environment variables.
        external: Names to keep external, a ``"module:function"`` reference,
            or (programmatic API only) a callable receiving the manifest.
        bundle_all: Embed everything except built-in modules.
    """

    model_config = {"frozen": True}

    out: str = "build"
    app_dir: str = ".webapp/output"
    precompress: bool = True
    env_prefix: str = ""
    external: list[str] | str | Callable[..., Any] | None = None
    bundle_all: bool = False
    bundler: BundlerConfig = Field(default_factory=BundlerConfig)


class TelemetryConfig(BaseModel):
    """[runtime.telemetry_config] section — exporter defaults.

    Environment variables on the deployment target override every field.
    """

    model_config = {"frozen": True}

    service_name: str | None = None
    service_version: str | None = None
    endpoint: str | None = None
    protocol: Literal["http", "grpc"] = "http"
    headers: dict[str, str] = Field(default_factory=dict)
    resource_attributes: dict[str, str] = Field(default_factory=dict)


class RuntimeConfig(BaseModel):
    """[runtime] section — constants rendered into the generated entry."""

    model_config = {"frozen": True}

    compression: bool = True
    compression_level: int = Field(default=6, ge=1, le=9)
    body_limit: str = "10mb"
    websocket: bool = True
    websocket_path: str = "/ws"
    telemetry: bool = True
    telemetry_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    telemetry_config: TelemetryConfig = Field(default_factory=TelemetryConfig)
    health_check: bool = True
    graceful_shutdown_timeout: int = Field(default=30000, ge=0)
