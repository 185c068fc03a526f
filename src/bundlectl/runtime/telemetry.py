"""OpenTelemetry init/shutdown.

The SDK is imported only when telemetry is enabled, so a deployment without
the ``opentelemetry-*`` packages runs fine with telemetry off. Any failure in
:meth:`Telemetry.start` disables telemetry with a warning; it never stops the
server from starting.
"""

from __future__ import annotations

import asyncio
import importlib
from typing import Any

import structlog
from aiohttp import web

from .config import TelemetrySettings

log = structlog.get_logger("runtime.telemetry")

TRACER_NAME = "bundlectl.runtime"
UNTRACED_PATHS = frozenset({"/health", "/readiness"})
HTTP_TRACES_PATH = "/v1/traces"

_EXPORTERS = {
    "http": "opentelemetry.exporter.otlp.proto.http.trace_exporter",
    "grpc": "opentelemetry.exporter.otlp.proto.grpc.trace_exporter",
}


def exporter_headers(settings: TelemetrySettings) -> dict[str, str]:
    headers: dict[str, str] = {}
    if settings.api_token:
        headers["Authorization"] = f"Api-Token {settings.api_token}"
    headers.update(settings.headers)
    return headers


def exporter_endpoint(settings: TelemetrySettings) -> str | None:
    """OTLP/HTTP wants the full traces URL; gRPC takes the bare endpoint."""
    endpoint = settings.endpoint
    if not endpoint or settings.protocol != "http":
        return endpoint
    endpoint = endpoint.rstrip("/")
    if endpoint.endswith(HTTP_TRACES_PATH):
        return endpoint
    return endpoint + HTTP_TRACES_PATH


def resource_attributes(settings: TelemetrySettings) -> dict[str, str]:
    return {
        "service.name": settings.service_name,
        "service.version": settings.service_version,
        **settings.resource_attributes,
    }


class Telemetry:
    """Owns the tracer provider for the life of the process."""

    def __init__(self, settings: TelemetrySettings) -> None:
        self.settings = settings
        self._provider: Any = None

    @property
    def active(self) -> bool:
        return self._provider is not None

    def start(self) -> bool:
        if not self.settings.enabled:
            log.info("telemetry.disabled")
            return False
        try:
            self._provider = self._build_provider()
        except Exception as exc:
            log.warning("telemetry.start_failed", error=str(exc))
            self._provider = None
            return False
        log.info(
            "telemetry.started",
            service=self.settings.service_name,
            endpoint=self.settings.endpoint or "default",
            protocol=self.settings.protocol,
            sample_rate=self.settings.sample_rate,
        )
        return True

    def _build_provider(self) -> Any:
        trace = importlib.import_module("opentelemetry.trace")
        resources = importlib.import_module("opentelemetry.sdk.resources")
        sdk_trace = importlib.import_module("opentelemetry.sdk.trace")
        export = importlib.import_module("opentelemetry.sdk.trace.export")
        exporter_module = importlib.import_module(_EXPORTERS[self.settings.protocol])

        options: dict[str, Any] = {
            "resource": resources.Resource.create(resource_attributes(self.settings))
        }
        if self.settings.sample_rate < 1.0:
            sampling = importlib.import_module("opentelemetry.sdk.trace.sampling")
            options["sampler"] = sampling.TraceIdRatioBased(self.settings.sample_rate)
        provider = sdk_trace.TracerProvider(**options)

        exporter_options: dict[str, Any] = {"headers": exporter_headers(self.settings)}
        if self.settings.endpoint:
            exporter_options["endpoint"] = exporter_endpoint(self.settings)
        exporter = exporter_module.OTLPSpanExporter(**exporter_options)
        provider.add_span_processor(export.BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)
        return provider

    def tracer(self) -> Any:
        if self._provider is None:
            return None
        return self._provider.get_tracer(TRACER_NAME)

    async def shutdown(self) -> None:
        """Flush and stop the provider off the event loop."""
        provider, self._provider = self._provider, None
        if provider is None:
            return
        log.info("telemetry.shutting_down")
        await asyncio.to_thread(provider.shutdown)
        log.info("telemetry.shutdown_complete")


def tracing_middleware(telemetry: Telemetry):
    @web.middleware
    async def tracing(request: web.Request, handler):
        tracer = telemetry.tracer()
        if tracer is None or request.path in UNTRACED_PATHS:
            return await handler(request)
        with tracer.start_as_current_span(f"{request.method} {request.path}") as span:
            span.set_attribute("http.request.method", request.method)
            span.set_attribute("url.path", request.path)
            response = await handler(request)
            span.set_attribute("http.response.status_code", response.status)
            return response

    return tracing
