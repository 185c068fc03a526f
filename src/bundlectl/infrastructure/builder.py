"""Build collaborator — everything the adapter asks of the web framework.

The adapter never inspects the compiled application itself. It drives a
:class:`Builder`: clear and create directories, copy files with token
replacement, write client/prerendered/server output, render the app manifest,
precompress assets, and wire an optional instrumentation module into the
final entry point.

:class:`CompiledAppBuilder` is the default implementation. It reads a
compiled application directory laid out as::

    <app_dir>/
        client/               static assets (hashed files under immutable/)
        prerendered/          pre-rendered pages
        prerendered.json      optional list of pre-rendered paths
        server/               server code; index.py is the server entry
        manifest.json         route manifest plus the base path
"""

from __future__ import annotations

import gzip
import json
import re
import shutil
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog

from bundlectl.errors import BuilderError

SERVER_ENTRY = "index.py"
INSTRUMENTATION_FILE = "instrumentation_server.py"
MANIFEST_FILE = "manifest.json"
PRERENDERED_INDEX = "prerendered.json"
BUILD_ROOT = Path(".bundlectl") / "build"

COMPRESSIBLE_SUFFIXES = frozenset(
    {".html", ".js", ".mjs", ".css", ".svg", ".xml", ".json", ".txt", ".map", ".wasm"}
)
_TEXT_SUFFIXES = frozenset({".py", ".pyi", ".txt", ".json", ".toml", ".cfg", ".md"})


@runtime_checkable
class Builder(Protocol):
    """Operations the adapter needs from the framework build."""

    log: Any

    @property
    def base(self) -> str: ...

    @property
    def prerendered_paths(self) -> list[str]: ...

    def rimraf(self, path: Path) -> None: ...

    def mkdirp(self, path: Path) -> None: ...

    def copy(
        self, source: Path, dest: Path, *, replace: dict[str, str] | None = None
    ) -> list[str]: ...

    def write_client(self, dest: Path) -> list[str]: ...

    def write_prerendered(self, dest: Path) -> list[str]: ...

    def write_server(self, dest: Path) -> list[str]: ...

    def generate_manifest(self, *, relative_path: str) -> str: ...

    def compress(self, directory: Path) -> None: ...

    def get_build_directory(self, name: str) -> Path: ...

    def has_server_instrumentation_file(self) -> bool: ...

    def instrument(
        self, *, entrypoint: Path, instrumentation: Path, exports: Sequence[str]
    ) -> None: ...


def _replace_tokens(text: str, replace: dict[str, str]) -> str:
    if not replace:
        return text
    pattern = re.compile(r"\b(" + "|".join(re.escape(k) for k in replace) + r")\b")
    return pattern.sub(lambda m: replace[m.group(1)], text)


def _copy_file(source: Path, dest: Path, replace: dict[str, str] | None) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    if replace and source.suffix in _TEXT_SUFFIXES:
        text = source.read_text(encoding="utf-8")
        dest.write_text(_replace_tokens(text, replace), encoding="utf-8")
    else:
        shutil.copy2(source, dest)


def _walk_files(root: Path) -> Iterable[Path]:
    for path in sorted(root.rglob("*")):
        if path.is_file() and "__pycache__" not in path.parts:
            yield path


class CompiledAppBuilder:
    """Builder over a compiled application directory.

    Args:
        app_dir: The compiled application (see module docstring).
        project_root: Source project; build scratch space lives under it.
    """

    def __init__(self, app_dir: Path, *, project_root: Path) -> None:
        self.app_dir = app_dir
        self.project_root = project_root
        self.log = structlog.get_logger("bundlectl.builder")
        self._manifest: dict[str, Any] | None = None

    # --- manifest -----------------------------------------------------

    def _app_manifest(self) -> dict[str, Any]:
        if self._manifest is None:
            path = self.app_dir / MANIFEST_FILE
            if not path.is_file():
                msg = f"Compiled application has no {MANIFEST_FILE}: {self.app_dir}"
                raise BuilderError(msg, detail={"app_dir": str(self.app_dir)})
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                msg = f"Invalid JSON in {path}: {exc}"
                raise BuilderError(msg, detail={"path": str(path)}) from exc
            if not isinstance(data, dict):
                msg = f"{path} must contain a JSON object"
                raise BuilderError(msg, detail={"path": str(path)})
            self._manifest = data
        return self._manifest

    @property
    def base(self) -> str:
        """Base path the app is mounted under (``""`` or ``/docs``)."""
        base = self._app_manifest().get("base", "")
        return str(base).rstrip("/")

    @property
    def prerendered_paths(self) -> list[str]:
        index = self.app_dir / PRERENDERED_INDEX
        if index.is_file():
            return sorted(json.loads(index.read_text(encoding="utf-8")))
        root = self.app_dir / "prerendered"
        if not root.is_dir():
            return []
        paths: list[str] = []
        for file in _walk_files(root):
            rel = file.relative_to(root).as_posix()
            if rel.endswith("index.html"):
                rel = rel[: -len("index.html")]
            elif rel.endswith(".html"):
                rel = rel[: -len(".html")]
            paths.append(f"{self.base}/{rel}")
        return sorted(paths)

    def generate_manifest(self, *, relative_path: str) -> str:
        """Render the route manifest as a Python literal.

        The ``base`` entry is dropped (it is exported separately) and
        *relative_path* is recorded under ``relative_path`` for the server,
        which resolves its own module references against it.
        """
        manifest = dict(self._app_manifest())
        manifest.pop("base", None)
        manifest["relative_path"] = relative_path
        return repr(manifest)

    # --- filesystem ---------------------------------------------------

    def rimraf(self, path: Path) -> None:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()

    def mkdirp(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    def copy(self, source: Path, dest: Path, *, replace: dict[str, str] | None = None) -> list[str]:
        """Copy a file or directory tree, substituting *replace* tokens.

        Tokens are whole words (``SERVER`` does not touch ``SERVER_NAME``) and
        are only substituted in text files. Returns the copied relative paths.

        Raises:
            BuilderError: If *source* does not exist.
        """
        if source.is_file():
            _copy_file(source, dest, replace)
            return [source.name]
        if not source.is_dir():
            msg = f"Cannot copy missing path: {source}"
            raise BuilderError(msg, detail={"source": str(source)})
        copied: list[str] = []
        for file in _walk_files(source):
            rel = file.relative_to(source)
            _copy_file(file, dest / rel, replace)
            copied.append(rel.as_posix())
        return copied

    def _write_tree(self, name: str, dest: Path) -> list[str]:
        source = self.app_dir / name
        if not source.is_dir():
            return []
        return self.copy(source, dest)

    def write_client(self, dest: Path) -> list[str]:
        return self._write_tree("client", dest)

    def write_prerendered(self, dest: Path) -> list[str]:
        return self._write_tree("prerendered", dest)

    def write_server(self, dest: Path) -> list[str]:
        source = self.app_dir / "server"
        if not (source / SERVER_ENTRY).is_file():
            msg = f"Compiled application has no server entry: {source / SERVER_ENTRY}"
            raise BuilderError(msg, detail={"app_dir": str(self.app_dir)})
        return self.copy(source, dest)

    def compress(self, directory: Path) -> None:
        """Write a ``.gz`` sibling next to every compressible asset."""
        if not directory.is_dir():
            return
        for file in _walk_files(directory):
            if file.suffix not in COMPRESSIBLE_SUFFIXES:
                continue
            target = file.with_name(file.name + ".gz")
            with file.open("rb") as src, gzip.open(target, "wb", compresslevel=9) as dst:
                shutil.copyfileobj(src, dst)

    def get_build_directory(self, name: str) -> Path:
        return self.project_root / BUILD_ROOT / name

    # --- instrumentation ----------------------------------------------

    def has_server_instrumentation_file(self) -> bool:
        return (self.app_dir / "server" / INSTRUMENTATION_FILE).is_file()

    def instrument(
        self, *, entrypoint: Path, instrumentation: Path, exports: Sequence[str]
    ) -> None:
        """Make *instrumentation* load before anything else in *entrypoint*.

        The original entry is moved to ``<stem>_entry.py`` and *entrypoint*
        becomes a thin module that imports the instrumentation module, then
        re-exports *exports* and ``main`` from the moved entry.
        """
        if not entrypoint.is_file():
            msg = f"Cannot instrument missing entry point: {entrypoint}"
            raise BuilderError(msg, detail={"entrypoint": str(entrypoint)})
        root = entrypoint.parent
        moved = entrypoint.with_name(f"{entrypoint.stem}_entry.py")
        entrypoint.replace(moved)
        source_map = entrypoint.with_name(entrypoint.name + ".map")
        if source_map.is_file():
            source_map.replace(moved.with_name(moved.name + ".map"))

        instrumentation_module = ".".join(instrumentation.relative_to(root).with_suffix("").parts)
        names = ", ".join(sorted({*exports, "main"}))
        entrypoint.write_text(
            "\n".join(
                [
                    '"""Instrumented entry point generated by bundlectl."""',
                    "",
                    "import sys",
                    "from pathlib import Path",
                    "",
                    "sys.path.insert(0, str(Path(__file__).resolve().parent))",
                    "",
                    f"import {instrumentation_module}  # noqa: E402,F401",
                    f"from {moved.stem} import {names}  # noqa: E402",
                    "",
                    f"__all__ = {sorted(exports)!r}",
                    "",
                    'if __name__ == "__main__":',
                    "    sys.exit(main())",
                    "",
                ]
            ),
            encoding="utf-8",
        )
        self.log.debug("instrumented", entrypoint=str(entrypoint), module=instrumentation_module)
