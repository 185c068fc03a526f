"""Tests for local directory plugin discovery in PluginManager."""

from __future__ import annotations

import sys
from pathlib import Path

from bundlectl.plugins.manager import LOCAL_PLUGIN_DIR, PluginManager

_VALID_PLUGIN_SRC = """\
import pluggy

hookimpl = pluggy.HookimplMarker("bundlectl")

calls: list[str] = []


class LocalBuildPlugin:
    \"\"\"Records finished builds.\"\"\"

    @hookimpl
    def post_build(self, out: str, descriptor: dict) -> None:
        calls.append(out)
"""

_SYNTAX_ERROR_SRC = """\
def broken(
"""

_NO_HOOKS_SRC = """\
class PlainClass:
    def hello(self) -> str:
        return "world"
"""


def _write(directory: Path, name: str, source: str) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / name).write_text(source)


class TestLocalDiscovery:
    def test_default_location(self) -> None:
        assert LOCAL_PLUGIN_DIR == Path(".bundlectl") / "plugins"

    def test_loads_valid_plugin(self, tmp_path: Path) -> None:
        plugins = tmp_path / "plugins"
        _write(plugins, "recorder.py", _VALID_PLUGIN_SRC)
        pm = PluginManager()
        names = pm.discover_and_load(local_dir=plugins)
        assert "bundlectl_local_plugin_recorder.LocalBuildPlugin" in names

        pm.dispatch("post_build", [], out="/srv/app", descriptor={})
        module = sys.modules["bundlectl_local_plugin_recorder"]
        assert module.calls == ["/srv/app"]

    def test_skips_private_and_plain_modules(self, tmp_path: Path) -> None:
        plugins = tmp_path / "plugins"
        _write(plugins, "_private.py", _VALID_PLUGIN_SRC)
        _write(plugins, "plain.py", _NO_HOOKS_SRC)
        pm = PluginManager()
        pm.discover_and_load(local_dir=plugins)
        assert not any(n.startswith("bundlectl_local_plugin_") for n in pm.list_plugin_names())

    def test_broken_plugin_is_skipped(self, tmp_path: Path) -> None:
        plugins = tmp_path / "plugins"
        _write(plugins, "broken.py", _SYNTAX_ERROR_SRC)
        _write(plugins, "good.py", _VALID_PLUGIN_SRC)
        pm = PluginManager()
        names = pm.discover_and_load(local_dir=plugins)
        assert "bundlectl_local_plugin_good.LocalBuildPlugin" in names
        assert "bundlectl_local_plugin_broken" not in sys.modules

    def test_missing_directory(self, tmp_path: Path) -> None:
        pm = PluginManager()
        pm.discover_and_load(local_dir=tmp_path / "nope")
        assert pm.is_loaded is True
