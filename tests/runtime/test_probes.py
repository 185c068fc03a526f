"""Tests for the liveness and readiness probes."""

from __future__ import annotations

import json

from aiohttp import test_utils, web

from bundlectl.runtime.probes import (
    HEALTH_PATH,
    READINESS_PATH,
    health,
    probe_middleware,
    readiness,
)
from bundlectl.runtime.state import PipelineState


def _payload(response: web.Response) -> dict:
    assert isinstance(response.body, bytes)
    return json.loads(response.body)


class TestProbeResponses:
    def test_health_ok(self) -> None:
        response = health(PipelineState())
        assert response.status == 200
        assert _payload(response) == {"status": "ok"}
        assert response.headers["Cache-Control"] == "no-store"

    def test_health_while_shutting_down(self) -> None:
        state = PipelineState()
        state.begin_shutdown()
        response = health(state)
        assert response.status == 503
        assert _payload(response) == {"status": "shutting_down"}

    def test_readiness_reports_uptime(self) -> None:
        state = PipelineState()
        response = readiness(state, clock=lambda: state.started_at + 12.3456)
        assert response.status == 200
        assert _payload(response) == {"status": "ready", "uptime_s": 12.346}

    def test_readiness_while_draining(self) -> None:
        state = PipelineState()
        state.begin_shutdown()
        response = readiness(state)
        assert response.status == 503
        assert _payload(response) == {"status": "draining"}
        assert response.headers["Cache-Control"] == "no-store"


class TestProbeMiddleware:
    async def test_intercepts_probe_paths(self) -> None:
        state = PipelineState()
        calls: list[str] = []

        async def fallback(request: web.Request) -> web.Response:
            calls.append(request.path)
            return web.Response(text="app")

        app = web.Application(middlewares=[probe_middleware(state)])
        app.router.add_route("*", "/{tail:.*}", fallback)

        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            resp = await client.get(HEALTH_PATH)
            assert resp.status == 200
            resp = await client.get(READINESS_PATH)
            assert (await resp.json())["status"] == "ready"
            resp = await client.get("/healthz")
            assert await resp.text() == "app"

            state.begin_shutdown()
            resp = await client.get(HEALTH_PATH)
            assert resp.status == 503
            resp = await client.get(READINESS_PATH)
            assert resp.status == 503

        assert calls == ["/healthz"]
