"""Request body guard and parser.

The body is read chunk by chunk and the request is rejected the moment the
running total passes the limit, so an oversized upload never gets buffered.
"""

from __future__ import annotations

import json
from urllib.parse import parse_qsl

import structlog
from aiohttp import hdrs, web

log = structlog.get_logger("runtime.body")

GUARDED_METHODS = frozenset({"POST", "PUT", "PATCH"})
JSON_TYPE = "application/json"
FORM_TYPE = "application/x-www-form-urlencoded"
CHUNK_SIZE = 64 * 1024


class BodyTooLarge(Exception):
    def __init__(self, limit: int, received: int) -> None:
        super().__init__(f"request body exceeds {limit} bytes")
        self.limit = limit
        self.received = received


async def read_limited(request: web.Request, limit: int) -> bytes:
    """Read the request body, raising :class:`BodyTooLarge` past *limit*.

    A declared ``Content-Length`` over the limit is refused before any read.
    Each read asks for at most one byte past the limit, so an oversized
    stream is rejected without consuming the rest of it.
    """
    declared = request.content_length
    if declared is not None and declared > limit:
        raise BodyTooLarge(limit, declared)
    chunks: list[bytes] = []
    received = 0
    while True:
        chunk = await request.content.read(min(CHUNK_SIZE, limit - received + 1))
        if not chunk:
            break
        received += len(chunk)
        if received > limit:
            raise BodyTooLarge(limit, received)
        chunks.append(chunk)
    return b"".join(chunks)


def parse_body(content_type: str, raw: bytes):
    """Decode *raw* by *content_type*; raises ValueError when malformed."""
    if content_type == JSON_TYPE:
        if not raw:
            return None
        return json.loads(raw.decode("utf-8"))
    return dict(parse_qsl(raw.decode("utf-8"), keep_blank_values=True, strict_parsing=False))


def too_large() -> web.Response:
    """413 for this exchange only; aiohttp discards the unread remainder."""
    return web.json_response({"error": "Request body too large"}, status=413)


def body_middleware(limit: int):
    @web.middleware
    async def body_guard(request: web.Request, handler):
        if request.method not in GUARDED_METHODS or request.content_type not in (
            JSON_TYPE,
            FORM_TYPE,
        ):
            return await handler(request)
        try:
            raw = await read_limited(request, limit)
        except BodyTooLarge as exc:
            log.warning("body.too_large", path=request.path, limit=exc.limit)
            return too_large()
        try:
            parsed = parse_body(request.content_type, raw)
        except (ValueError, UnicodeDecodeError):
            return web.json_response({"error": "Invalid request body"}, status=400)
        request["raw_body"] = raw
        request["body"] = parsed
        return await handler(request)

    return body_guard
