"""Import-graph bundler.

Starting from each entry file, the bundler follows ``import`` statements
through the AST and decides, per imported module, where it goes:

- external (matches the unit's rule set): left as a plain import;
- local (lives next to the entries): copied to the same relative path;
- third-party: the whole top-level package is copied into a
  content-addressed chunk directory, ``chunks/<name>-<sha256[:8]>/``.

Entries are copied verbatim apart from a short prelude that puts the entry's
own directory and the chunk directories on ``sys.path``. Every entry gets a
``<entry>.py.map`` describing the inserted lines, and the unit gets a
``bundle.json`` index. Identical inputs produce byte-identical output.

Imports under ``if TYPE_CHECKING:`` are ignored. Imports inside function
bodies or guarded by ``try/except ImportError`` are *optional*: they are
never embedded and a failure to resolve them is a warning, not an error.
"""

from __future__ import annotations

import ast
import hashlib
import importlib.machinery
import json
import shutil
import sys
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import structlog

from bundlectl.domain.bundle import BundleOutput, BundleUnit
from bundlectl.errors import BundlingFailure

log = structlog.get_logger("bundlectl.bundler")

CHUNKS_DIR = "chunks"
INDEX_FILE = "bundle.json"
PRELUDE_MARKER = "# --- bundlectl: module search path ---"
_IMPORT_ERRORS = frozenset({"ImportError", "ModuleNotFoundError", "Exception", "BaseException"})


class Bundler(Protocol):
    """Bundling collaborator; runs one pass per call."""

    def bundle(self, unit: BundleUnit) -> BundleOutput: ...


@dataclass(frozen=True, slots=True)
class ImportRef:
    """One import found in a source file."""

    module: str
    level: int
    names: tuple[str, ...]
    optional: bool
    lineno: int


class _ImportCollector(ast.NodeVisitor):
    def __init__(self) -> None:
        self.refs: list[ImportRef] = []
        self._optional_depth = 0

    def _add(self, module: str, level: int, names: tuple[str, ...], lineno: int) -> None:
        self.refs.append(
            ImportRef(
                module=module,
                level=level,
                names=names,
                optional=self._optional_depth > 0,
                lineno=lineno,
            )
        )

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            self._add(alias.name, 0, (), node.lineno)

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        names = tuple(alias.name for alias in node.names if alias.name != "*")
        self._add(node.module or "", node.level, names, node.lineno)

    def visit_If(self, node: ast.If) -> None:
        if _is_type_checking(node.test):
            for child in node.orelse:
                self.visit(child)
            return
        self.generic_visit(node)

    def _visit_optional(self, node: ast.AST) -> None:
        self._optional_depth += 1
        try:
            self.generic_visit(node)
        finally:
            self._optional_depth -= 1

    visit_FunctionDef = _visit_optional
    visit_AsyncFunctionDef = _visit_optional
    visit_Lambda = _visit_optional

    def visit_Try(self, node: ast.Try) -> None:
        if any(_catches_import_error(h) for h in node.handlers):
            self._optional_depth += 1
            try:
                for child in node.body:
                    self.visit(child)
            finally:
                self._optional_depth -= 1
            for child in (*node.handlers, *node.orelse, *node.finalbody):
                self.visit(child)
            return
        self.generic_visit(node)

    visit_TryStar = visit_Try


def _is_type_checking(test: ast.expr) -> bool:
    if isinstance(test, ast.Name):
        return test.id == "TYPE_CHECKING"
    if isinstance(test, ast.Attribute):
        return test.attr == "TYPE_CHECKING"
    return False


def _catches_import_error(handler: ast.ExceptHandler) -> bool:
    if handler.type is None:
        return True
    types = handler.type.elts if isinstance(handler.type, ast.Tuple) else [handler.type]
    return any(isinstance(t, ast.Name) and t.id in _IMPORT_ERRORS for t in types)


def collect_imports(source: str, *, filename: str = "<unknown>") -> list[ImportRef]:
    """Parse *source* and return its imports in source order.

    Raises:
        SyntaxError: If *source* is not valid Python.
    """
    collector = _ImportCollector()
    collector.visit(ast.parse(source, filename=filename))
    return collector.refs


def _prelude_line(source: str) -> int:
    """Line after the module docstring and ``__future__`` imports."""
    tree = ast.parse(source)
    line = 0
    for index, node in enumerate(tree.body):
        is_docstring = (
            index == 0
            and isinstance(node, ast.Expr)
            and isinstance(node.value, ast.Constant)
            and isinstance(node.value.value, str)
        )
        is_future = isinstance(node, ast.ImportFrom) and node.module == "__future__"
        if not (is_docstring or is_future):
            break
        line = node.end_lineno or node.lineno
    return line


def render_prelude(chunk_dirs: list[str]) -> list[str]:
    """Lines that put the entry directory and *chunk_dirs* on ``sys.path``."""
    return [
        PRELUDE_MARKER,
        "import sys as _bundle_sys",
        "from pathlib import Path as _BundlePath",
        "",
        "_bundle_root = _BundlePath(__file__).resolve().parent",
        f"for _bundle_dir in {['.', *chunk_dirs]!r}:",
        "    _bundle_path = str((_bundle_root / _bundle_dir).resolve())",
        "    if _bundle_path not in _bundle_sys.path:",
        "        _bundle_sys.path.insert(0, _bundle_path)",
        "del _bundle_sys, _BundlePath, _bundle_root, _bundle_dir, _bundle_path",
        "# --- end bundlectl ---",
    ]


def _iter_package_files(root: Path) -> Iterator[Path]:
    for path in sorted(root.rglob("*")):
        if not path.is_file() or "__pycache__" in path.parts:
            continue
        if path.suffix in (".pyc", ".pyo"):
            continue
        yield path


def content_hash(paths: list[tuple[str, Path]]) -> str:
    """First 8 hex digits of a sha256 over sorted ``(relpath, bytes)`` pairs."""
    digest = hashlib.sha256()
    for rel, path in sorted(paths):
        digest.update(rel.encode("utf-8"))
        digest.update(b"\0")
        digest.update(path.read_bytes())
        digest.update(b"\0")
    return digest.hexdigest()[:8]


class ImportGraphBundler:
    """Default :class:`Bundler`.

    Args:
        search_paths: Where third-party modules are looked up after the
            unit's own ``module_paths``; defaults to ``sys.path``.
    """

    def __init__(self, search_paths: list[str] | None = None) -> None:
        self._search_paths = list(sys.path) if search_paths is None else list(search_paths)

    # --- resolution ---------------------------------------------------

    @staticmethod
    def _local_candidates(root: Path, dotted: str) -> list[Path]:
        base = root.joinpath(*dotted.split("."))
        return [base.with_suffix(".py"), base / "__init__.py"]

    def _resolve_local(self, root: Path, dotted: str) -> list[Path]:
        """Local files backing *dotted*, including ancestor ``__init__``."""
        parts = dotted.split(".")
        top = root / parts[0]
        if not (top.with_suffix(".py").is_file() or top.is_dir()):
            return []
        found: list[Path] = []
        for depth in range(1, len(parts) + 1):
            prefix = ".".join(parts[:depth])
            for candidate in self._local_candidates(root, prefix):
                if candidate.is_file():
                    found.append(candidate)
                    break
        return found

    def _find_spec(
        self, top: str, module_paths: tuple[Path, ...]
    ) -> importlib.machinery.ModuleSpec | None:
        paths = [str(p) for p in module_paths] + self._search_paths
        return importlib.machinery.PathFinder.find_spec(top, paths)

    @staticmethod
    def _absolute(ref: ImportRef, module_name: str, is_package: bool) -> list[str]:
        """Absolute dotted names an import may refer to."""
        if ref.level == 0:
            base = ref.module
        else:
            package = module_name if is_package else module_name.rpartition(".")[0]
            parts = package.split(".") if package else []
            drop = ref.level - 1
            if drop > len(parts):
                return []
            parts = parts[: len(parts) - drop] if drop else parts
            base = ".".join([*parts, ref.module] if ref.module else parts)
        if not base:
            return list(ref.names)
        return [base, *(f"{base}.{name}" for name in ref.names)]

    # --- bundling -----------------------------------------------------

    def bundle(self, unit: BundleUnit) -> BundleOutput:
        """Write *unit* to ``unit.output_dir``.

        Raises:
            BundlingFailure: On unreadable or invalid sources, or a required
                import that is neither external nor resolvable.
        """
        if unit.module_format != "package":
            msg = f"Unsupported module format: {unit.module_format!r}"
            raise BundlingFailure(msg, pass_name=unit.name)
        if not unit.entries:
            msg = "Bundling pass has no entries"
            raise BundlingFailure(msg, pass_name=unit.name)

        out = unit.output_dir
        out.mkdir(parents=True, exist_ok=True)

        local_files: dict[Path, tuple[Path, str]] = {}
        chunk_sources: dict[str, Path] = {}
        externals: set[str] = set()
        optional: set[str] = set()
        warnings: list[str] = []

        queue: deque[tuple[Path, Path, str, bool]] = deque()
        for name, path in sorted(unit.entries.items()):
            if not path.is_file():
                msg = f"Entry {name!r} not found: {path}"
                raise BundlingFailure(msg, pass_name=unit.name, detail={"entry": str(path)})
            queue.append((path, path.parent, path.stem, True))

        seen: set[Path] = set()
        while queue:
            path, root, module_name, strict = queue.popleft()
            if path in seen:
                continue
            seen.add(path)
            try:
                source = path.read_text(encoding="utf-8")
                refs = collect_imports(source, filename=str(path))
            except (OSError, UnicodeDecodeError, SyntaxError) as exc:
                if not strict:
                    warnings.append(f"Skipped unparseable embedded module {path}: {exc}")
                    continue
                msg = f"Cannot parse {path}: {exc}"
                raise BundlingFailure(msg, pass_name=unit.name, detail={"file": str(path)}) from exc

            is_package = path.name == "__init__.py"
            for ref in refs:
                candidates = self._absolute(ref, module_name, is_package)
                if not candidates:
                    continue
                primary = candidates[0]
                top = primary.split(".")[0]
                if top == "__future__":
                    continue
                if ref.level == 0 and unit.externals.is_external(primary):
                    externals.add(top)
                    continue
                if ref.level == 0 and not strict and top == module_name.split(".")[0]:
                    continue

                resolved_local = False
                if strict:
                    for dotted in candidates:
                        for file in self._resolve_local(root, dotted):
                            rel = file.relative_to(root)
                            local_files.setdefault(file, (root, rel.as_posix()))
                            dotted_name = ".".join(rel.with_suffix("").parts)
                            if file.name == "__init__.py":
                                dotted_name = dotted_name.rpartition(".")[0]
                            queue.append((file, root, dotted_name, True))
                            resolved_local = True
                if resolved_local or ref.level > 0:
                    continue

                if ref.optional:
                    optional.add(top)
                    continue
                if top in chunk_sources:
                    continue
                spec = self._find_spec(top, unit.module_paths)
                if spec is None or (
                    spec.origin in (None, "built-in", "frozen")
                    and not spec.submodule_search_locations
                ):
                    if strict:
                        msg = f"Cannot resolve import {primary!r} in {path} (line {ref.lineno})"
                        raise BundlingFailure(
                            msg,
                            pass_name=unit.name,
                            detail={"module": primary, "file": str(path), "line": ref.lineno},
                        )
                    warnings.append(f"Unresolved import {primary!r} in embedded module {path}")
                    continue
                if spec.submodule_search_locations:
                    location = Path(next(iter(spec.submodule_search_locations)))
                    chunk_sources[top] = location
                    for file in _iter_package_files(location):
                        if file.suffix == ".py":
                            rel = file.relative_to(location.parent).with_suffix("")
                            queue.append((file, location.parent, ".".join(rel.parts), False))
                else:
                    origin = Path(str(spec.origin))
                    chunk_sources[top] = origin
                    if origin.suffix == ".py":
                        queue.append((origin, origin.parent, top, False))

        for warning in warnings:
            log.warning("bundle.warning", pass_name=str(unit.name), detail=warning)

        chunks = self._write_chunks(out, chunk_sources)
        files = self._write_locals(out, local_files, set(unit.entries.values()))
        chunk_dirs = [chunks[top] for top in sorted(chunks)]
        for name, path in sorted(unit.entries.items()):
            self._write_entry(out, name, path, chunk_dirs)
            files.append(f"{name}.py")

        index = {
            "format": unit.module_format,
            "pass": str(unit.name),
            "entries": {name: f"{name}.py" for name in sorted(unit.entries)},
            "modules": sorted(set(files)),
            "chunks": dict(sorted(chunks.items())),
            "externals": sorted(externals),
            "optional": sorted(optional),
        }
        (out / INDEX_FILE).write_text(json.dumps(index, indent=2) + "\n", encoding="utf-8")
        log.debug(
            "bundle.written",
            pass_name=str(unit.name),
            output=str(out),
            modules=len(index["modules"]),
            chunks=len(chunks),
        )
        return BundleOutput(
            output_dir=out,
            files=tuple(sorted(set(files))),
            chunks=dict(sorted(chunks.items())),
            external_imports=tuple(sorted(externals)),
            optional_imports=tuple(sorted(optional)),
            warnings=tuple(warnings),
        )

    # --- writers ------------------------------------------------------

    @staticmethod
    def _write_chunks(out: Path, sources: dict[str, Path]) -> dict[str, str]:
        chunks: dict[str, str] = {}
        for top, location in sorted(sources.items()):
            if location.is_dir():
                members = [
                    (file.relative_to(location.parent).as_posix(), file)
                    for file in _iter_package_files(location)
                ]
            else:
                members = [(location.name, location)]
            chunk_name = f"{CHUNKS_DIR}/{top}-{content_hash(members)}"
            target = out / chunk_name
            if target.exists():
                shutil.rmtree(target)
            for rel, file in members:
                dest = target / rel
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(file, dest)
            chunks[top] = chunk_name
        return chunks

    @staticmethod
    def _write_locals(
        out: Path, files: dict[Path, tuple[Path, str]], entries: set[Path]
    ) -> list[str]:
        written: list[str] = []
        data_dirs: set[tuple[Path, Path]] = set()
        for file, (root, rel) in sorted(files.items()):
            if file in entries:
                continue
            dest = out / rel
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(file, dest)
            written.append(rel)
            if file.parent != root:
                data_dirs.add((root, file.parent))
        # Package data (templates, JSON) travels with the package that uses it.
        for root, directory in sorted(data_dirs):
            for data in sorted(directory.iterdir()):
                if data.is_file() and data.suffix not in (".py", ".pyc"):
                    dest = out / data.relative_to(root)
                    shutil.copy2(data, dest)
        return written

    @staticmethod
    def _write_entry(out: Path, name: str, path: Path, chunk_dirs: list[str]) -> None:
        source = path.read_text(encoding="utf-8")
        lines = source.splitlines()
        insert_at = _prelude_line(source)
        prelude = render_prelude(chunk_dirs)
        bundled = [*lines[:insert_at], *prelude, *lines[insert_at:]]
        target = out / f"{name}.py"
        target.write_text("\n".join(bundled) + "\n", encoding="utf-8")
        source_map = {
            "version": 1,
            "file": target.name,
            "source": path.name,
            "inserted": {"after_line": insert_at, "lines": len(prelude)},
        }
        (out / f"{name}.py.map").write_text(
            json.dumps(source_map, indent=2) + "\n", encoding="utf-8"
        )
