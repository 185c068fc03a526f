"""Tests for the package descriptor model."""

from __future__ import annotations

from bundlectl.domain.descriptor import (
    DEFAULT_NAME,
    DEFAULT_VERSION,
    OBSERVABILITY_PINS,
    RUNTIME_PINS,
    PackageDescriptor,
    merge_dependencies,
)
from bundlectl.domain.externals import REQUIRED_RUNTIME_PACKAGES
from bundlectl.domain.project import ProjectManifest


class TestMergeDependencies:
    def test_runtime_libraries_added(self) -> None:
        merged = merge_dependencies({"a": ">=1.0"})
        assert merged["a"] == ">=1.0"
        for name in REQUIRED_RUNTIME_PACKAGES:
            assert name in merged

    def test_runtime_pins_override_declared(self) -> None:
        merged = merge_dependencies({"aiohttp": ">=3.0"})
        assert merged["aiohttp"] == RUNTIME_PINS["aiohttp"]

    def test_observability_only_when_referenced(self) -> None:
        assert not set(OBSERVABILITY_PINS) & set(merge_dependencies({"a": ""}))
        merged = merge_dependencies({"opentelemetry-api": ">=1.0"})
        assert set(OBSERVABILITY_PINS) <= set(merged)
        assert merged["opentelemetry-api"] == OBSERVABILITY_PINS["opentelemetry-api"]

    def test_sorted_and_canonical(self) -> None:
        merged = merge_dependencies({"Zed_Lib": "", "alpha": ""})
        assert list(merged) == sorted(merged)
        assert "zed-lib" in merged


class TestPackageDescriptor:
    def test_defaults_when_manifest_is_empty(self) -> None:
        descriptor = PackageDescriptor.from_manifest(ProjectManifest())
        assert descriptor.name == DEFAULT_NAME
        assert descriptor.version == DEFAULT_VERSION
        assert set(RUNTIME_PINS) <= set(descriptor.dependencies)

    def test_requirements(self) -> None:
        manifest = ProjectManifest(name="demo", version="2.0.0", dependencies={"a": ">=1.0"})
        descriptor = PackageDescriptor.from_manifest(manifest)
        assert descriptor.name == "demo"
        assert "a>=1.0" in descriptor.requirements
        assert "aiohttp>=3.9,<4" in descriptor.requirements
