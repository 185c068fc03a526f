"""Tests for the programmatic adapter API."""

from __future__ import annotations

from pathlib import Path

import pytest

from bundlectl.adapter import ADAPTER_NAME, Adapter, create_adapter
from bundlectl.errors import ConfigurationError
from bundlectl.infrastructure.builder import CompiledAppBuilder


class TestCreateAdapter:
    def test_defaults(self, tmp_path: Path) -> None:
        adapter = create_adapter(project_root=tmp_path)
        assert isinstance(adapter, Adapter)
        assert adapter.name == ADAPTER_NAME == "bundlectl"
        assert adapter.supports == {"read": True, "instrumentation": True}
        assert adapter.adapter.out == "build"
        assert adapter.runtime.compression is True
        assert adapter.project_root == tmp_path

    def test_splits_options(self, tmp_path: Path) -> None:
        adapter = create_adapter(
            project_root=tmp_path, out="dist", env_prefix="APP_", compression_level=9
        )
        assert adapter.adapter.out == "dist"
        assert adapter.adapter.env_prefix == "APP_"
        assert adapter.runtime.compression_level == 9

    def test_callable_external(self, tmp_path: Path) -> None:
        def rule(manifest: dict) -> list[str]:
            return ["aiohttp"]

        assert create_adapter(project_root=tmp_path, external=rule).adapter.external is rule

    def test_unknown_option(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            create_adapter(polyfill=True, minify=False)
        assert exc_info.value.detail == {"options": ["minify", "polyfill"]}

    def test_invalid_option(self) -> None:
        with pytest.raises(ConfigurationError, match="Invalid adapter options"):
            create_adapter(compression_level=42)


class TestAdapt:
    def test_builds_project(self, project: Path) -> None:
        adapter = create_adapter(project_root=project, out="deploy")
        builder = CompiledAppBuilder(project / ".webapp" / "output", project_root=project)
        result = adapter.adapt(builder)
        assert result.ok, result.error
        assert result.data["out"] == str(project / "deploy")
        assert (project / "deploy" / "index.py").is_file()

    def test_rule_callable_receives_manifest(self, project: Path) -> None:
        seen: list[dict] = []

        def rule(manifest: dict) -> list[str]:
            seen.append(manifest)
            return ["aiohttp"]

        adapter = create_adapter(project_root=project, external=rule)
        builder = CompiledAppBuilder(project / ".webapp" / "output", project_root=project)
        assert adapter.adapt(builder).ok
        assert seen[0]["project"]["name"] == "demo-app"
