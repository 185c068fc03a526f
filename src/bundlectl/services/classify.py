"""Inspect the compiled externalization rules for a project."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from bundlectl.domain.externals import (
    BUILTIN_MODULES,
    compile_rules,
    normalize_rule,
)
from bundlectl.domain.project import ProjectManifest
from bundlectl.errors import BundlectlError
from bundlectl.services.base import BaseService
from bundlectl.services.result import ServiceResult
from bundlectl.services.telemetry import traced

if TYPE_CHECKING:
    from bundlectl.config.models import AdapterConfig


class ClassifyService(BaseService):
    """Compile the project's rules and classify module specifiers."""

    def __init__(self, project_root: Path, adapter: AdapterConfig, **kwargs: Any) -> None:
        super().__init__(project_root, **kwargs)
        self._adapter = adapter

    @traced
    def classify(self, specifiers: list[str]) -> ServiceResult:
        try:
            manifest = ProjectManifest.load(self.project_root)
            rules = compile_rules(
                declared=manifest.dependencies,
                rule=normalize_rule(self._adapter.external),
                manifest=manifest.raw,
                bundle_all=self._adapter.bundle_all,
            )
        except BundlectlError as exc:
            return ServiceResult.failure("externals", exc)

        builtins = set(BUILTIN_MODULES)
        return ServiceResult(
            ok=True,
            op="externals",
            data={
                "bundle_all": self._adapter.bundle_all,
                "rules": len(rules),
                "builtins": len(builtins),
                "names": sorted(rules.names - builtins),
                "classifications": {spec: str(rules.classify(spec)) for spec in specifiers},
            },
        )
