"""Application fallback: aiohttp request ↔ embedded server.

The compiled server knows nothing about aiohttp. It receives an
:class:`AppRequest` and answers with an :class:`AppResponse`::

    class Server:
        def __init__(self, manifest): ...
        async def init(self, *, env: dict[str, str]) -> None: ...
        async def respond(self, request: AppRequest) -> AppResponse: ...
        async def handle_message(self, message, reply) -> None: ...  # optional
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog
from aiohttp import web

from .body import BodyTooLarge, read_limited, too_large
from .config import ServerConfig

log = structlog.get_logger("runtime.handler")

_HOP_HEADERS = frozenset({"content-length", "transfer-encoding", "connection"})


@dataclass(frozen=True)
class AppRequest:
    method: str
    url: str
    headers: dict[str, str]
    body: bytes = b""
    parsed_body: Any = None
    client_address: str | None = None


@dataclass
class AppResponse:
    status: int = 200
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes | str | None = None


class EmbeddedServer(Protocol):
    async def init(self, *, env: dict[str, str]) -> None: ...

    async def respond(self, request: AppRequest) -> AppResponse: ...


def _first(value: str | None) -> str | None:
    if not value:
        return None
    first = value.split(",")[0].strip()
    return first or None


def request_url(request: web.Request, config: ServerConfig) -> str:
    """Absolute URL as the client saw it."""
    path = str(request.rel_url)
    if config.origin:
        return f"{config.origin}{path}"
    scheme = request.scheme
    if config.trust_proxy:
        scheme = _first(request.headers.get("X-Forwarded-Proto")) or scheme
    return f"{scheme}://{request.host}{path}"


def client_address(request: web.Request, config: ServerConfig) -> str | None:
    if config.trust_proxy:
        forwarded = _first(request.headers.get("X-Forwarded-For"))
        if forwarded:
            return forwarded
    return request.remote


async def to_app_request(request: web.Request, config: ServerConfig) -> AppRequest:
    """Convert *request*; reads the body unless the body guard already did.

    Raises:
        BodyTooLarge: If an unparsed body exceeds the configured limit.
    """
    if "raw_body" in request:
        body = request["raw_body"]
    elif request.can_read_body:
        body = await read_limited(request, config.body_limit)
    else:
        body = b""
    return AppRequest(
        method=request.method,
        url=request_url(request, config),
        headers={k.lower(): v for k, v in request.headers.items()},
        body=body,
        parsed_body=request.get("body"),
        client_address=client_address(request, config),
    )


def to_web_response(response: AppResponse) -> web.Response:
    body = response.body
    if isinstance(body, str):
        body = body.encode("utf-8")
    result = web.Response(status=response.status, body=body)
    for name, value in response.headers:
        if name.lower() in _HOP_HEADERS:
            continue
        result.headers.add(name, value)
    return result


SERVER_KEY = web.AppKey("server", object)
CONFIG_KEY = web.AppKey("config", ServerConfig)


async def app_handler(request: web.Request) -> web.StreamResponse:
    server = request.app[SERVER_KEY]
    config = request.app[CONFIG_KEY]
    try:
        app_request = await to_app_request(request, config)
    except BodyTooLarge:
        return too_large()
    try:
        response = await server.respond(app_request)
    except Exception:
        log.exception("request.failed", method=request.method, path=request.path)
        return web.json_response({"error": "Internal Server Error"}, status=500)
    return to_web_response(response)
