"""Server configuration, resolved once at startup.

Build-time constants (rendered into the generated entry) are merged with the
process environment. The optional env prefix applies to the server variables
only; the ``OTEL_*`` variables and ``DYNATRACE_API_TOKEN`` are always read
unprefixed so standard collectors and sidecars keep working.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger("runtime.config")

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_KEEP_ALIVE_TIMEOUT = 65000
DEFAULT_HEADERS_TIMEOUT = 66000
DEFAULT_BODY_LIMIT = 10 * 1024 * 1024
DEFAULT_SERVICE_NAME = "web-app"
DEFAULT_SERVICE_VERSION = "1.0.0"

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(b|kb|mb|gb)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"b": 1, "kb": 1024, "mb": 1024**2, "gb": 1024**3}
_TRUE = frozenset({"1", "true", "yes", "on"})


def parse_size(value: str | int | None) -> int:
    """``"512kb"`` → 524288. Anything unparseable yields the 10 MiB default."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value if value > 0 else DEFAULT_BODY_LIMIT
    if not isinstance(value, str):
        return DEFAULT_BODY_LIMIT
    match = _SIZE_RE.match(value)
    if match is None:
        return DEFAULT_BODY_LIMIT
    size = int(float(match.group(1)) * _SIZE_UNITS[(match.group(2) or "b").lower()])
    return size if size > 0 else DEFAULT_BODY_LIMIT


def parse_attributes(value: str | None) -> dict[str, str]:
    """``"k=v,k2=v2"`` → dict. Entries without ``=`` are ignored."""
    if not value:
        return {}
    attributes: dict[str, str] = {}
    for item in value.split(","):
        key, sep, val = item.partition("=")
        if sep and key.strip():
            attributes[key.strip()] = val.strip()
    return attributes


def _flag(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in _TRUE


def _int(value: str | None, default: int) -> int:
    if value is None or value.strip() == "":
        return default
    return int(value)


def telemetry_protocol(value: str | None) -> Literal["http", "grpc"]:
    """Anything but ``grpc`` (``http/protobuf``, ``http/json``, typos) is http."""
    if not value:
        return "http"
    normalized = value.strip().lower()
    if normalized == "grpc":
        return "grpc"
    if normalized not in ("http", "http/protobuf"):
        log.warning("telemetry.protocol_unknown", protocol=value, using="http")
    return "http"


def sample_rate(value: Any) -> float:
    """Parse a sampling ratio; unparseable values sample everything, others are clamped."""
    if value is None or value == "":
        return 1.0
    try:
        rate = float(value)
    except (TypeError, ValueError):
        log.warning("telemetry.sample_rate_invalid", sample_rate=value, using=1.0)
        return 1.0
    if math.isnan(rate):
        log.warning("telemetry.sample_rate_invalid", sample_rate=value, using=1.0)
        return 1.0
    clamped = min(max(rate, 0.0), 1.0)
    if clamped != rate:
        log.warning("telemetry.sample_rate_clamped", sample_rate=value, using=clamped)
    return clamped


class TelemetrySettings(BaseModel):
    model_config = {"frozen": True}

    enabled: bool = True
    service_name: str = DEFAULT_SERVICE_NAME
    service_version: str = DEFAULT_SERVICE_VERSION
    endpoint: str | None = None
    protocol: Literal["http", "grpc"] = "http"
    sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    api_token: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    resource_attributes: dict[str, str] = Field(default_factory=dict)


class ServerConfig(BaseModel):
    """Everything the generated server reads at startup.

    Timeouts are milliseconds. ``max_requests_per_socket == 0`` means
    unlimited. ``headers_timeout`` is carried for parity with the listener
    settings of other hosts; aiohttp has no separate header deadline.
    """

    model_config = {"frozen": True}

    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    keep_alive_timeout: int = Field(default=DEFAULT_KEEP_ALIVE_TIMEOUT, ge=0)
    headers_timeout: int = Field(default=DEFAULT_HEADERS_TIMEOUT, ge=0)
    max_requests_per_socket: int = Field(default=0, ge=0)
    trust_proxy: bool = False
    origin: str | None = None
    compression: bool = True
    compression_level: int = Field(default=6, ge=1, le=9)
    body_limit: int = Field(default=DEFAULT_BODY_LIMIT, gt=0)
    websocket_enabled: bool = True
    websocket_path: str = "/ws"
    health_check: bool = True
    graceful_shutdown_timeout: int = Field(default=30000, ge=0)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)

    @classmethod
    def resolve(
        cls,
        build_options: Mapping[str, Any],
        environ: Mapping[str, str],
        *,
        env_prefix: str = "",
    ) -> ServerConfig:
        """Merge *build_options* with *environ*; environment wins."""

        def env(name: str) -> str | None:
            return environ.get(f"{env_prefix}{name}")

        opts = dict(build_options)
        otel = dict(opts.get("telemetry_config") or {})

        telemetry = TelemetrySettings(
            enabled=bool(opts.get("telemetry", True))
            and environ.get("OTEL_ENABLED", "").strip().lower() != "false",
            service_name=environ.get("OTEL_SERVICE_NAME")
            or otel.get("service_name")
            or DEFAULT_SERVICE_NAME,
            service_version=environ.get("OTEL_SERVICE_VERSION")
            or otel.get("service_version")
            or DEFAULT_SERVICE_VERSION,
            endpoint=environ.get("OTEL_EXPORTER_OTLP_ENDPOINT") or otel.get("endpoint"),
            protocol=telemetry_protocol(
                environ.get("OTEL_EXPORTER_OTLP_PROTOCOL") or otel.get("protocol")
            ),
            sample_rate=sample_rate(
                environ.get("OTEL_SAMPLE_RATE") or opts.get("telemetry_sample_rate", 1.0)
            ),
            api_token=environ.get("DYNATRACE_API_TOKEN") or None,
            headers=dict(otel.get("headers") or {}),
            resource_attributes={
                **(otel.get("resource_attributes") or {}),
                **parse_attributes(environ.get("OTEL_RESOURCE_ATTRIBUTES")),
            },
        )

        body_limit = env("BODY_SIZE_LIMIT") or opts.get("body_limit")
        return cls(
            host=env("HOST") or DEFAULT_HOST,
            port=_int(env("PORT"), DEFAULT_PORT),
            keep_alive_timeout=_int(env("KEEP_ALIVE_TIMEOUT"), DEFAULT_KEEP_ALIVE_TIMEOUT),
            headers_timeout=_int(env("HEADERS_TIMEOUT"), DEFAULT_HEADERS_TIMEOUT),
            max_requests_per_socket=_int(env("MAX_REQUESTS_PER_SOCKET"), 0),
            trust_proxy=_flag(env("TRUST_PROXY"), False),
            origin=(env("ORIGIN") or "").rstrip("/") or None,
            compression=bool(opts.get("compression", True)),
            compression_level=int(opts.get("compression_level", 6)),
            body_limit=parse_size(body_limit),
            websocket_enabled=_flag(env("WEBSOCKET_ENABLED"), bool(opts.get("websocket", True))),
            websocket_path=env("WEBSOCKET_PATH") or opts.get("websocket_path") or "/ws",
            health_check=bool(opts.get("health_check", True)),
            graceful_shutdown_timeout=int(opts.get("graceful_shutdown_timeout", 30000)),
            telemetry=telemetry,
        )
