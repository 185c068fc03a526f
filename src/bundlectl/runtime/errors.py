"""Runtime failure taxonomy."""

from __future__ import annotations


class RuntimeFailure(Exception):
    """Base class for process-level runtime failures."""


class StartupFailure(RuntimeFailure):
    """The server could not start (application init or listener bind)."""


class ShutdownFailure(RuntimeFailure):
    """A drain step raised or the shutdown deadline fired."""
