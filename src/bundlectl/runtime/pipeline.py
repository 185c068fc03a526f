"""Assemble the aiohttp application.

Middleware order is fixed and the first match short-circuits::

    upgrade → in-flight → max-requests → tracing → probes
        → compression → body guard → static → application

Upgrade interception runs first so upgraded connections are never counted
as in-flight HTTP requests during drain.
"""

from __future__ import annotations

import asyncio
import weakref
from pathlib import Path
from typing import Any

from aiohttp import web

from .body import body_middleware
from .compression import compression_middleware
from .config import ServerConfig
from .handler import CONFIG_KEY, SERVER_KEY, app_handler
from .probes import probe_middleware
from .state import PipelineState
from .static import default_roots, static_middleware
from .telemetry import Telemetry, tracing_middleware
from .upgrade import UpgradeChannel


def inflight_middleware(state: PipelineState):
    """Count a request as in flight while its handler runs.

    Responses still being written when the count drops are awaited by the
    runner cleanup during drain.
    """

    @web.middleware
    async def inflight(request: web.Request, handler):
        state.request_started()
        try:
            return await handler(request)
        finally:
            state.request_finished()

    return inflight


def max_requests_middleware(limit: int):
    """Ask the client to reconnect after *limit* requests on one connection."""
    counts: weakref.WeakKeyDictionary[asyncio.BaseTransport, int] = (
        weakref.WeakKeyDictionary()
    )

    @web.middleware
    async def max_requests(request: web.Request, handler):
        response = await handler(request)
        transport = request.transport
        if transport is None:
            return response
        count = counts.get(transport, 0) + 1
        if count >= limit:
            counts.pop(transport, None)
            response.force_close()
        else:
            counts[transport] = count
        return response

    return max_requests


def build_application(
    server: Any,
    config: ServerConfig,
    state: PipelineState,
    *,
    client_dir: Path,
    prerendered_dir: Path,
    channel: UpgradeChannel | None = None,
    telemetry: Telemetry | None = None,
) -> web.Application:
    middlewares = []
    if channel is not None:
        middlewares.append(channel.middleware())
    middlewares.append(inflight_middleware(state))
    if config.max_requests_per_socket > 0:
        middlewares.append(max_requests_middleware(config.max_requests_per_socket))
    if telemetry is not None:
        middlewares.append(tracing_middleware(telemetry))
    if config.health_check:
        middlewares.append(probe_middleware(state))
    if config.compression:
        middlewares.append(compression_middleware(config.compression_level))
    middlewares.append(body_middleware(config.body_limit))
    middlewares.append(static_middleware(default_roots(client_dir, prerendered_dir)))

    app = web.Application(middlewares=middlewares, client_max_size=config.body_limit)
    app[SERVER_KEY] = server
    app[CONFIG_KEY] = config
    app.router.add_route("*", "/{tail:.*}", app_handler)
    return app
