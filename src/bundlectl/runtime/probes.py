"""Liveness and readiness probes.

``/health`` answers as long as the process is up; ``/readiness`` tells load
balancers to stop routing here once draining starts.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from aiohttp import web

from .state import PipelineState

HEALTH_PATH = "/health"
READINESS_PATH = "/readiness"
_NO_STORE = {"Cache-Control": "no-store"}


def health(state: PipelineState) -> web.Response:
    if state.shutting_down:
        return web.json_response({"status": "shutting_down"}, status=503, headers=_NO_STORE)
    return web.json_response({"status": "ok"}, headers=_NO_STORE)


def readiness(state: PipelineState, clock: Callable[[], float] = time.monotonic) -> web.Response:
    if state.shutting_down:
        return web.json_response({"status": "draining"}, status=503, headers=_NO_STORE)
    uptime = round(clock() - state.started_at, 3)
    return web.json_response({"status": "ready", "uptime_s": uptime}, headers=_NO_STORE)


def probe_middleware(state: PipelineState):
    @web.middleware
    async def probes(request: web.Request, handler):
        if request.path == HEALTH_PATH:
            return health(state)
        if request.path == READINESS_PATH:
            return readiness(state)
        return await handler(request)

    return probes
