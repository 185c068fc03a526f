"""Tests for BundleSettings — unified CLI + env + TOML settings."""

from __future__ import annotations

from pathlib import Path

import click
import pytest
from pydantic import ValidationError

from bundlectl.config.discovery import CONFIG_ENV_VAR
from bundlectl.config.settings import BundleSettings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.delenv("BUNDLECTL_ADAPTER__OUT", raising=False)


class TestBundleSettings:
    def test_defaults_without_config(self, tmp_path: Path) -> None:
        settings = BundleSettings.from_cli(project_root=tmp_path)
        assert settings.project_root == tmp_path
        assert settings.config_path is None
        assert settings.adapter.out == "build"
        assert settings.runtime.graceful_shutdown_timeout == 30000
        assert settings.json_output is False

    def test_frozen(self, tmp_path: Path) -> None:
        settings = BundleSettings.from_cli(project_root=tmp_path)
        with pytest.raises(ValidationError):
            settings.quiet = True  # type: ignore[misc]

    def test_loads_discovered_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "bundlectl.toml").write_text(
            '[adapter]\nout = "dist"\nprecompress = false\n\n[runtime]\nwebsocket = false\n'
        )
        nested = tmp_path / "src"
        nested.mkdir()
        monkeypatch.chdir(nested)
        settings = BundleSettings.from_cli()
        assert settings.project_root == tmp_path.resolve()
        assert settings.adapter.out == "dist"
        assert settings.adapter.precompress is False
        assert settings.runtime.websocket is False

    def test_loads_tool_table(self, tmp_path: Path) -> None:
        (tmp_path / "pyproject.toml").write_text(
            '[project]\nname = "x"\n\n[tool.bundlectl.runtime]\nbody_limit = "1mb"\n'
        )
        settings = BundleSettings.from_cli(project_root=tmp_path)
        assert settings.runtime.body_limit == "1mb"

    def test_explicit_config_path(self, tmp_path: Path) -> None:
        config = tmp_path / "other.toml"
        config.write_text('[adapter]\nenv_prefix = "APP_"\n')
        settings = BundleSettings.from_cli(config_path=str(config), project_root=tmp_path)
        assert settings.config_path == config
        assert settings.adapter.env_prefix == "APP_"

    def test_env_overrides_toml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "bundlectl.toml").write_text('[adapter]\nout = "dist"\n')
        monkeypatch.setenv("BUNDLECTL_ADAPTER__OUT", "from-env")
        settings = BundleSettings.from_cli(project_root=tmp_path)
        assert settings.adapter.out == "from-env"

    def test_cli_flags_win(self, tmp_path: Path) -> None:
        settings = BundleSettings.from_cli(project_root=tmp_path, quiet=True, verbose=True)
        assert settings.quiet is True
        assert settings.verbose is True

    def test_invalid_toml(self, tmp_path: Path) -> None:
        config = tmp_path / "bundlectl.toml"
        config.write_text("[adapter\n")
        with pytest.raises(click.ClickException, match="Invalid TOML"):
            BundleSettings.from_cli(config_path=str(config), project_root=tmp_path)
