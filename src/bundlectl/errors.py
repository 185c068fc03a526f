"""Exception taxonomy for build-time failures.

Services catch these and convert them into :class:`ServiceResult` errors;
the CLI never sees a traceback for an expected failure. Runtime failures
(startup, shutdown) live in :mod:`bundlectl.runtime.errors` because the
runtime package ships without the rest of bundlectl.
"""

from __future__ import annotations

from typing import Any


class BundlectlError(Exception):
    """Base class for all build-time errors.

    Attributes:
        code: Stable error code surfaced in ``ServiceError.code``.
        detail: Structured context for JSON output.
    """

    code = "BUNDLECTL_ERROR"

    def __init__(self, message: str, *, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ConfigurationError(BundlectlError):
    """Malformed adapter configuration, raised before any bundling pass runs."""

    code = "CONFIGURATION_ERROR"


class ManifestError(BundlectlError):
    """The source project's ``pyproject.toml`` is unreadable or malformed."""

    code = "MANIFEST_INVALID"


class BuilderError(BundlectlError):
    """A build collaborator operation failed (copy, compress, write)."""

    code = "BUILDER_FAILED"


class BundlingFailure(BundlectlError):
    """A bundling pass failed; no artifact is finalized."""

    code = "BUNDLING_FAILED"

    def __init__(
        self,
        message: str,
        *,
        pass_name: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(detail or {})
        if pass_name is not None:
            merged.setdefault("pass", pass_name)
        super().__init__(message, detail=merged)
        self.pass_name = pass_name
