"""Response compression.

Only fully-buffered ``web.Response`` bodies are touched; file and streamed
responses pass through untouched (static files are served precompressed).
"""

from __future__ import annotations

import gzip
import zlib

from aiohttp import hdrs, web

MIN_SIZE = 1024
_SKIP_PREFIXES = ("image/", "video/", "audio/", "font/")
_ENCODINGS = ("gzip", "deflate")


def negotiate(accept_encoding: str) -> str | None:
    """Pick gzip or deflate from an ``Accept-Encoding`` header, or None."""
    offered: dict[str, float] = {}
    for part in accept_encoding.lower().split(","):
        name, _, params = part.strip().partition(";")
        quality = 1.0
        params = params.strip()
        if params.startswith("q="):
            try:
                quality = float(params[2:])
            except ValueError:
                quality = 0.0
        if name:
            offered[name.strip()] = quality
    for encoding in _ENCODINGS:
        q = offered.get(encoding, offered.get("*", 0.0))
        if q > 0:
            return encoding
    return None


def should_compress(response: web.StreamResponse) -> bool:
    if type(response) is not web.Response or response.body is None:
        return False
    if not isinstance(response.body, bytes | bytearray) or len(response.body) < MIN_SIZE:
        return False
    if hdrs.CONTENT_ENCODING in response.headers:
        return False
    if "no-transform" in response.headers.get(hdrs.CACHE_CONTROL, ""):
        return False
    if response.status in (204, 304) or response.status < 200:
        return False
    return not response.content_type.startswith(_SKIP_PREFIXES)


def compress(body: bytes, encoding: str, level: int) -> bytes:
    if encoding == "gzip":
        return gzip.compress(body, compresslevel=level, mtime=0)
    return zlib.compress(body, level)


def compression_middleware(level: int):
    @web.middleware
    async def compression(request: web.Request, handler):
        response = await handler(request)
        if not should_compress(response):
            return response
        encoding = negotiate(request.headers.get(hdrs.ACCEPT_ENCODING, ""))
        response.headers.add(hdrs.VARY, hdrs.ACCEPT_ENCODING)
        if encoding is None:
            return response
        response.body = compress(bytes(response.body), encoding, level)
        response.headers[hdrs.CONTENT_ENCODING] = encoding
        return response

    return compression
