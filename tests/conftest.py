"""Shared pytest fixtures and test helpers for bundlectl tests."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from bundlectl.services.telemetry import disable_telemetry

SERVER_SOURCE = '''\
"""Compiled application server."""

import json

from lib.render import render_page


class Server:
    def __init__(self, manifest):
        self.manifest = manifest
        self.env = None

    async def init(self, *, env):
        self.env = env

    async def respond(self, request):
        return render_page(request, self.manifest)
'''

RENDER_SOURCE = '''\
from dataclasses import dataclass, field


@dataclass
class Page:
    status: int = 200
    headers: list = field(default_factory=list)
    body: str = ""


def render_page(request, manifest):
    return Page(headers=[("content-type", "text/plain")], body=f"{request.method} {request.url}")
'''


@pytest.fixture
def cli_runner() -> CliRunner:
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def _reset_build_telemetry() -> Iterator[None]:
    """``--verbose`` flips a ContextVar; keep it from leaking across tests."""
    yield
    disable_telemetry()


def write_pyproject(
    root: Path,
    *,
    name: str | None = "demo-app",
    version: str | None = "0.3.1",
    dependencies: list[str] | None = None,
    extra: str = "",
) -> Path:
    lines = ["[project]"]
    if name is not None:
        lines.append(f'name = "{name}"')
    if version is not None:
        lines.append(f'version = "{version}"')
    deps = ", ".join(json.dumps(d) for d in (dependencies or []))
    lines.append(f"dependencies = [{deps}]")
    path = root / "pyproject.toml"
    path.write_text("\n".join(lines) + "\n" + extra, encoding="utf-8")
    return path


def write_compiled_app(app_dir: Path, *, base: str = "", instrumentation: bool = False) -> Path:
    """Lay out a compiled application the way the framework build does."""
    (app_dir / "client" / "immutable").mkdir(parents=True)
    (app_dir / "client" / "immutable" / "app.3f9a.js").write_text(
        "console.log('hello');\n" * 100, encoding="utf-8"
    )
    (app_dir / "client" / "favicon.png").write_bytes(b"\x89PNG\r\n\x1a\n")
    (app_dir / "prerendered").mkdir()
    (app_dir / "prerendered" / "about.html").write_text("<h1>About</h1>\n", encoding="utf-8")

    server = app_dir / "server"
    (server / "lib").mkdir(parents=True)
    (server / "index.py").write_text(SERVER_SOURCE, encoding="utf-8")
    (server / "lib" / "__init__.py").write_text("", encoding="utf-8")
    (server / "lib" / "render.py").write_text(RENDER_SOURCE, encoding="utf-8")
    if instrumentation:
        (server / "instrumentation_server.py").write_text(
            "import os\n\nos.environ.setdefault('INSTRUMENTED', '1')\n", encoding="utf-8"
        )

    manifest: dict[str, Any] = {"base": base, "routes": [{"id": "/", "pattern": "^/$"}]}
    (app_dir / "manifest.json").write_text(json.dumps(manifest), encoding="utf-8")
    return app_dir


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Source project with a manifest and a compiled application."""
    root = tmp_path / "project"
    root.mkdir()
    write_pyproject(root, dependencies=["aiohttp>=3.9"])
    write_compiled_app(root / ".webapp" / "output")
    return root


@pytest.fixture
def _isolated_project(project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Change CWD to the project so the CLI discovers it."""
    monkeypatch.chdir(project)
    monkeypatch.delenv("BUNDLECTL_CONFIG", raising=False)


# ── Runtime helpers ───────────────────────────────────────────────────


class EchoServer:
    """Embedded server double: echoes the converted request back as JSON."""

    def __init__(self, *, fail: bool = False, body_size: int = 0) -> None:
        self.fail = fail
        self.body_size = body_size
        self.env: dict[str, str] | None = None
        self.requests: list[Any] = []
        self.messages: list[dict[str, Any]] = []

    async def init(self, *, env: dict[str, str]) -> None:
        self.env = env

    async def respond(self, request: Any) -> Any:
        from bundlectl.runtime.handler import AppResponse

        self.requests.append(request)
        if self.fail:
            msg = "render exploded"
            raise RuntimeError(msg)
        payload = {
            "method": request.method,
            "url": request.url,
            "body": request.body.decode("utf-8", "replace"),
            "parsed": request.parsed_body,
            "client": request.client_address,
            "pad": "x" * self.body_size,
        }
        return AppResponse(
            status=200,
            headers=[("Content-Type", "application/json"), ("Content-Length", "999")],
            body=json.dumps(payload),
        )

    async def handle_message(self, message: dict[str, Any], reply: Any) -> None:
        self.messages.append(message)
        if message.get("type") == "explode":
            msg = "bad message"
            raise ValueError(msg)
        await reply({"type": "echo", "data": message.get("data")})


def write_static_tree(root: Path) -> tuple[Path, Path]:
    """Client and pre-rendered asset roots for the static responders."""
    client = root / "client"
    (client / "immutable").mkdir(parents=True)
    (client / "immutable" / "app.js").write_text("console.log(1);\n" * 200, encoding="utf-8")
    (client / "robots.txt").write_text("User-agent: *\n", encoding="utf-8")
    (client / "docs").mkdir()
    (client / "docs" / "index.html").write_text("<h1>Docs</h1>\n", encoding="utf-8")
    prerendered = root / "prerendered"
    prerendered.mkdir()
    (prerendered / "about.html").write_text("<h1>About</h1>\n", encoding="utf-8")
    (root / "secret.txt").write_text("top secret\n", encoding="utf-8")
    return client, prerendered
