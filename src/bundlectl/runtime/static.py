"""Static asset responders.

One :class:`AssetRoot` per directory, tried in order; the first root that has
the file answers. Requests that escape a root are refused with 403, and
misses fall through to the application. ``web.FileResponse`` picks a ``.br``
or ``.gz`` sibling when the client accepts it.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from aiohttp import hdrs, web

IMMUTABLE_CACHE = "public, immutable, max-age=31536000"
REVALIDATE_CACHE = "public, max-age=0, must-revalidate"
DEFAULT_CACHE = "public, max-age=3600"
IMMUTABLE_SEGMENT = "/immutable/"
INDEX_FILE = "index.html"

CachePolicy = Callable[[str, Path], str]


def client_cache_policy(url_path: str, file: Path) -> str:
    if IMMUTABLE_SEGMENT in url_path:
        return IMMUTABLE_CACHE
    if file.suffix == ".html":
        return REVALIDATE_CACHE
    return DEFAULT_CACHE


def prerendered_cache_policy(url_path: str, file: Path) -> str:
    return REVALIDATE_CACHE


class PathTraversal(Exception):
    pass


@dataclass(frozen=True)
class AssetRoot:
    """A directory served under ``/``, with its cache policy."""

    directory: Path
    cache_policy: CachePolicy

    def locate(self, url_path: str) -> Path | None:
        """Map *url_path* to a file under this root.

        A path the filesystem rejects (NUL byte, over-long name) is a miss.

        Raises:
            PathTraversal: If the path resolves outside the root.
        """
        root = self.directory.resolve()
        try:
            candidate = (root / url_path.lstrip("/")).resolve()
        except (ValueError, OSError):
            return None
        if not candidate.is_relative_to(root):
            raise PathTraversal(url_path)

        try:
            if url_path.endswith("/") or candidate.is_dir():
                candidate = candidate / INDEX_FILE
            elif not candidate.suffix and not candidate.exists():
                candidate = candidate.with_name(candidate.name + ".html")
            return candidate if candidate.is_file() else None
        except (ValueError, OSError):
            return None

    def respond(self, url_path: str) -> web.StreamResponse | None:
        file = self.locate(url_path)
        if file is None:
            return None
        return web.FileResponse(
            file, headers={hdrs.CACHE_CONTROL: self.cache_policy(url_path, file)}
        )


def default_roots(client_dir: Path, prerendered_dir: Path) -> list[AssetRoot]:
    return [
        AssetRoot(client_dir, client_cache_policy),
        AssetRoot(prerendered_dir, prerendered_cache_policy),
    ]


def static_middleware(roots: Sequence[AssetRoot]):
    active = [root for root in roots if root.directory.is_dir()]

    @web.middleware
    async def static(request: web.Request, handler):
        if request.method not in (hdrs.METH_GET, hdrs.METH_HEAD) or not active:
            return await handler(request)
        for root in active:
            try:
                response = root.respond(request.path)
            except PathTraversal:
                return web.json_response({"error": "Forbidden"}, status=403)
            if response is not None:
                return response
        return await handler(request)

    return static
