"""Tests for BaseService plugin dispatch."""

from pathlib import Path

from bundlectl.plugins import PluginManager, hookimpl
from bundlectl.services.base import BaseService


class _Recorder:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    @hookimpl
    def post_build(self, out: str, descriptor: dict) -> None:
        self.calls.append({"out": out, "descriptor": descriptor})


class TestBaseService:
    def test_project_root(self, tmp_path: Path) -> None:
        assert BaseService(tmp_path).project_root == tmp_path

    def test_dispatch_without_plugins_is_noop(self, tmp_path: Path) -> None:
        warnings: list[str] = []
        payload = {"out": "x", "descriptor": {}}
        BaseService(tmp_path)._dispatch_event("post_build", payload, warnings)
        assert warnings == []

    def test_dispatch_calls_hook(self, tmp_path: Path) -> None:
        plugins = PluginManager()
        recorder = _Recorder()
        plugins.register_plugin(recorder)
        warnings: list[str] = []
        BaseService(tmp_path, plugins=plugins)._dispatch_event(
            "post_build", {"out": "build", "descriptor": {"name": "x"}}, warnings
        )
        assert recorder.calls == [{"out": "build", "descriptor": {"name": "x"}}]
        assert warnings == []
