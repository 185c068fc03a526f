"""Externalization rules — what stays out of the bundle.

A module that is *external* is left as a plain ``import`` in the bundled
output and must be installed on the deployment target. Everything else is
*embedded*: copied into the output next to the code that imports it.

The user-facing configuration is polymorphic (a list of names, or a function
that receives the project manifest). It is normalized once into a tagged
:data:`ExternalRule` and then compiled into an :class:`ExternalRuleSet` of
matchers; nothing downstream ever sees the raw configuration.

INVARIANT: every compiled rule set contains a matcher for every built-in
(standard library) module name.
"""

from __future__ import annotations

import importlib
import importlib.metadata
import sys
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, Protocol

from bundlectl.domain.project import canonicalize_name
from bundlectl.errors import ConfigurationError

# Frozen at import time so a build never depends on what was imported before it.
BUILTIN_MODULES: tuple[str, ...] = tuple(sorted(sys.stdlib_module_names))

# Distributions the generated runtime imports at top level.
REQUIRED_RUNTIME_PACKAGES: tuple[str, ...] = ("aiohttp", "pydantic", "structlog")

RUNTIME_SCHEME = "python:"
SUBPATH_SEPARATORS = frozenset("/.")
_WILDCARD_SUFFIXES = ("/*", ".*")


class Placement(StrEnum):
    """Classification result for a single module specifier."""

    EXTERNAL = "external"
    EMBED = "embed"


class Matcher(Protocol):
    """Anything that can decide whether a specifier is external."""

    @property
    def key(self) -> str: ...

    def matches(self, specifier: str) -> bool: ...


def _strip_scheme(specifier: str) -> str:
    if specifier.startswith(RUNTIME_SCHEME):
        return specifier[len(RUNTIME_SCHEME) :]
    return specifier


def _is_nested(specifier: str, name: str) -> bool:
    return (
        len(specifier) > len(name)
        and specifier.startswith(name)
        and specifier[len(name)] in SUBPATH_SEPARATORS
    )


@dataclass(frozen=True, slots=True)
class ModuleMatcher:
    """Exact name or ``name`` + nested subpath, optional ``python:`` scheme.

    ``ModuleMatcher("foo")`` accepts ``foo``, ``foo/sub``, ``foo.sub`` and
    ``python:foo``; it rejects ``foobar``. With ``nested_only`` the bare name
    itself is rejected (compiled from ``foo/*`` patterns).
    """

    name: str
    nested_only: bool = False

    @property
    def key(self) -> str:
        return f"{self.name}/*" if self.nested_only else self.name

    def matches(self, specifier: str) -> bool:
        spec = _strip_scheme(specifier)
        if spec == self.name:
            return not self.nested_only
        return _is_nested(spec, self.name)


@dataclass(frozen=True, slots=True)
class OutputDirMatcher:
    """Treat an already-bundled output directory as external.

    Matches the directory's import package (``server``, ``server.index``)
    as well as path specifiers that point inside it (``./server/index.py``
    or an absolute path under *directory*).
    """

    package: str
    directory: str

    @property
    def key(self) -> str:
        return f"./{self.package}/"

    def matches(self, specifier: str) -> bool:
        spec = _strip_scheme(specifier)
        if spec.startswith("./"):
            spec = spec[2:]
        if spec == self.package or _is_nested(spec, self.package):
            return True
        candidate = Path(spec)
        if not candidate.is_absolute():
            return False
        return candidate.resolve().is_relative_to(Path(self.directory).resolve())


# --- User rule: tagged variant ---------------------------------------------


@dataclass(frozen=True, slots=True)
class ListRule:
    """An explicit list of external module or distribution names."""

    names: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class FunctionRule:
    """A callable receiving the project manifest and returning names."""

    func: Callable[[dict[str, Any]], Any]
    label: str


ExternalRule = ListRule | FunctionRule


def _load_callable(reference: str) -> FunctionRule:
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        msg = f"External rule reference must look like 'module:function', got {reference!r}"
        raise ConfigurationError(msg, detail={"external": reference})
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        msg = f"Cannot import external rule module {module_name!r}: {exc}"
        raise ConfigurationError(msg, detail={"external": reference}) from exc
    func = getattr(module, attr, None)
    if not callable(func):
        msg = f"External rule {reference!r} is not callable"
        raise ConfigurationError(msg, detail={"external": reference})
    return FunctionRule(func=func, label=reference)


def normalize_rule(value: Any) -> ExternalRule | None:
    """Normalize the raw ``external`` option into a tagged rule.

    Accepts ``None``, a list/tuple of names, a callable, or a
    ``"module:function"`` reference (the TOML spelling of a callable).

    Raises:
        ConfigurationError: For any other shape.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return _load_callable(value)
    if isinstance(value, (list, tuple)):
        return ListRule(names=_validate_names(value, source="external list"))
    if callable(value):
        label = getattr(value, "__qualname__", None) or repr(value)
        return FunctionRule(func=value, label=label)
    msg = f"'external' must be a list of names or a function, got {type(value).__name__}"
    raise ConfigurationError(msg)


def _validate_names(values: Iterable[Any], *, source: str) -> tuple[str, ...]:
    names: list[str] = []
    for value in values:
        if not isinstance(value, str) or not value.strip():
            msg = f"{source} must contain non-empty strings, got {value!r}"
            raise ConfigurationError(msg, detail={"value": repr(value)})
        names.append(value.strip())
    return tuple(names)


def resolve_rule(rule: ExternalRule, manifest: dict[str, Any]) -> tuple[str, ...]:
    """Evaluate a rule against the project manifest.

    Raises:
        ConfigurationError: If a function rule raises or returns anything but
            a list of non-empty strings.
    """
    if isinstance(rule, ListRule):
        return rule.names
    try:
        result = rule.func(manifest)
    except Exception as exc:
        msg = f"External rule function {rule.label} raised {type(exc).__name__}: {exc}"
        raise ConfigurationError(msg, detail={"external": rule.label}) from exc
    if not isinstance(result, (list, tuple)):
        msg = (
            f"External rule function {rule.label} must return a list of names, "
            f"got {type(result).__name__}"
        )
        raise ConfigurationError(msg, detail={"external": rule.label})
    return _validate_names(result, source=f"External rule function {rule.label}")


# --- Import name discovery -------------------------------------------------


def import_names(distribution: str) -> tuple[str, ...]:
    """Top-level import names provided by *distribution*.

    Uses the installed distribution's ``top_level.txt`` or file listing when
    available; the normalized distribution name (``-`` → ``_``) is always
    included so uninstalled distributions still produce a matcher.
    """
    names = {canonicalize_name(distribution).replace("-", "_")}
    try:
        dist = importlib.metadata.distribution(distribution)
    except importlib.metadata.PackageNotFoundError:
        return tuple(sorted(names))

    top_level = dist.read_text("top_level.txt")
    if top_level:
        names.update(line.strip() for line in top_level.splitlines() if line.strip())
    else:
        for file in dist.files or ():
            parts = file.parts
            if not parts or parts[0] in ("..", "__pycache__"):
                continue
            if parts[0].endswith((".dist-info", ".egg-info", ".data")):
                continue
            if len(parts) == 1:
                if parts[0].endswith(".py"):
                    names.add(parts[0][:-3])
            else:
                names.add(parts[0])
    return tuple(sorted(n for n in names if n.isidentifier() and n != "__pycache__"))


def _matchers_for(name: str) -> list[Matcher]:
    """Compile one configured name into matchers.

    ``foo/*`` and ``foo.*`` become nested-only matchers. A name that looks
    like a distribution also matches its import names.
    """
    for suffix in _WILDCARD_SUFFIXES:
        if name.endswith(suffix):
            return [ModuleMatcher(name[: -len(suffix)], nested_only=True)]
    matchers: list[Matcher] = [ModuleMatcher(name)]
    if "/" not in name and "." not in name:
        matchers.extend(ModuleMatcher(alias) for alias in import_names(name) if alias != name)
    return matchers


# --- Compiled rule set -----------------------------------------------------


@dataclass(frozen=True, slots=True)
class ExternalRuleSet:
    """Immutable, deduplicated collection of compiled matchers."""

    matchers: tuple[Matcher, ...]

    @classmethod
    def from_matchers(cls, matchers: Iterable[Matcher]) -> ExternalRuleSet:
        unique: dict[Matcher, None] = {}
        for matcher in matchers:
            unique.setdefault(matcher, None)
        return cls(matchers=tuple(unique))

    @property
    def names(self) -> frozenset[str]:
        return frozenset(m.key for m in self.matchers)

    def is_external(self, specifier: str) -> bool:
        return any(m.matches(specifier) for m in self.matchers)

    def classify(self, specifier: str) -> Placement:
        return Placement.EXTERNAL if self.is_external(specifier) else Placement.EMBED

    def extend(self, *matchers: Matcher) -> ExternalRuleSet:
        """Return a new set with *matchers* appended (always a superset)."""
        return ExternalRuleSet.from_matchers((*self.matchers, *matchers))

    def issuperset(self, other: ExternalRuleSet) -> bool:
        own = set(self.matchers)
        return all(m in own for m in other.matchers)

    def __len__(self) -> int:
        return len(self.matchers)


def builtin_rules() -> ExternalRuleSet:
    """The rule set containing exactly the built-in modules."""
    return ExternalRuleSet.from_matchers(ModuleMatcher(name) for name in BUILTIN_MODULES)


def compile_rules(
    *,
    declared: Iterable[str],
    rule: ExternalRule | None = None,
    manifest: dict[str, Any] | None = None,
    bundle_all: bool = False,
    required: Iterable[str] = REQUIRED_RUNTIME_PACKAGES,
) -> ExternalRuleSet:
    """Compile the externalization policy into a rule set.

    - *bundle_all*: built-ins only; everything else gets embedded.
    - otherwise: built-ins, the required runtime-support libraries, and either
      the user *rule*'s result or the *declared* production dependencies.

    Raises:
        ConfigurationError: If *rule* is a function that misbehaves.
    """
    base = builtin_rules()
    if bundle_all:
        return base

    names: list[str] = list(required)
    if rule is not None:
        names.extend(resolve_rule(rule, manifest or {}))
    else:
        names.extend(declared)

    extra: list[Matcher] = []
    for name in names:
        extra.extend(_matchers_for(name))
    return base.extend(*extra)
