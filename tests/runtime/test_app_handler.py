"""Tests for the aiohttp ↔ embedded server bridge."""

from __future__ import annotations

from aiohttp import test_utils, web

from bundlectl.runtime.config import ServerConfig
from bundlectl.runtime.handler import (
    CONFIG_KEY,
    SERVER_KEY,
    AppResponse,
    app_handler,
    client_address,
    request_url,
    to_web_response,
)
from tests.conftest import EchoServer


def _app(server: EchoServer, config: ServerConfig) -> web.Application:
    app = web.Application()
    app[SERVER_KEY] = server
    app[CONFIG_KEY] = config
    app.router.add_route("*", "/{tail:.*}", app_handler)
    return app


class TestRequestHelpers:
    def test_url_from_host(self) -> None:
        request = test_utils.make_mocked_request(
            "GET", "/cart?item=1", headers={"Host": "shop.local"}
        )
        assert request_url(request, ServerConfig()) == "http://shop.local/cart?item=1"

    def test_origin_overrides(self) -> None:
        request = test_utils.make_mocked_request("GET", "/cart", headers={"Host": "internal"})
        config = ServerConfig(origin="https://shop.example.com")
        assert request_url(request, config) == "https://shop.example.com/cart"

    def test_forwarded_proto_only_when_trusted(self) -> None:
        request = test_utils.make_mocked_request(
            "GET", "/", headers={"Host": "shop.local", "X-Forwarded-Proto": "https, http"}
        )
        assert request_url(request, ServerConfig()).startswith("http://")
        assert request_url(request, ServerConfig(trust_proxy=True)) == "https://shop.local/"

    def test_forwarded_for_only_when_trusted(self) -> None:
        request = test_utils.make_mocked_request(
            "GET", "/", headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"}
        )
        assert client_address(request, ServerConfig(trust_proxy=True)) == "203.0.113.9"
        assert client_address(request, ServerConfig()) != "203.0.113.9"


class TestToWebResponse:
    def test_hop_headers_dropped(self) -> None:
        response = to_web_response(
            AppResponse(
                status=201,
                headers=[
                    ("Set-Cookie", "a=1"),
                    ("Set-Cookie", "b=2"),
                    ("Transfer-Encoding", "chunked"),
                    ("Connection", "close"),
                ],
                body="created",
            )
        )
        assert response.status == 201
        assert response.body == b"created"
        assert response.headers.getall("Set-Cookie") == ["a=1", "b=2"]
        assert "Transfer-Encoding" not in response.headers
        assert "Connection" not in response.headers

    def test_empty_body(self) -> None:
        assert to_web_response(AppResponse(status=204)).body is None


class TestAppHandler:
    async def test_round_trip(self) -> None:
        server = EchoServer()
        async with test_utils.TestClient(test_utils.TestServer(_app(server, ServerConfig()))) as c:
            resp = await c.post("/orders?x=1", data=b"raw-bytes")
            assert resp.status == 200
            payload = await resp.json()
        assert payload["method"] == "POST"
        assert payload["url"].endswith("/orders?x=1")
        assert payload["body"] == "raw-bytes"
        assert server.requests[0].headers["content-length"] == "9"

    async def test_body_limit_enforced_without_guard(self) -> None:
        server = EchoServer()
        app = _app(server, ServerConfig(body_limit=8))
        async with test_utils.TestClient(test_utils.TestServer(app)) as c:
            resp = await c.post("/upload", data=b"x" * 64)
            assert resp.status == 413
        assert server.requests == []

    async def test_server_failure_is_contained(self) -> None:
        server = EchoServer(fail=True)
        async with test_utils.TestClient(test_utils.TestServer(_app(server, ServerConfig()))) as c:
            resp = await c.get("/boom")
            assert resp.status == 500
            assert await resp.json() == {"error": "Internal Server Error"}
            resp = await c.get("/again")
            assert resp.status == 500
