"""BaseService — shared foundation for bundlectl services.

Every service works against one source project and may dispatch plugin
hooks. Services own their error boundaries: expected failures become
``ServiceResult(ok=False)``, never exceptions.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from bundlectl.plugins.manager import PluginManager


class BaseService:
    """Base for service-layer classes.

    Usage::

        class BuildService(BaseService):
            def adapt(self, builder, ...) -> ServiceResult:
                ...
                self._dispatch_event("post_build", {...}, warnings)
    """

    def __init__(self, project_root: Path, *, plugins: PluginManager | None = None) -> None:
        self._project_root = project_root
        self._plugins = plugins

    @property
    def project_root(self) -> Path:
        return self._project_root

    def _dispatch_event(self, hook_name: str, payload: dict[str, Any], warnings: list[str]) -> None:
        """Dispatch a plugin hook. No-op without a plugin manager.

        INVARIANT: Plugin failures are warnings, never errors.
        """
        if self._plugins is None:
            return
        self._plugins.dispatch(hook_name, warnings, **payload)
