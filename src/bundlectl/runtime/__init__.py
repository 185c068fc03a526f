"""Runtime for the deployable output directory.

This package is copied into the build output and imported by the generated
entry point. It depends only on aiohttp, pydantic and structlog (plus the
OpenTelemetry SDK when telemetry is enabled and installed), and uses
relative imports only so it runs without bundlectl installed.
"""
