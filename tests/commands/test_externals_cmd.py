"""Tests for the externals command."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from bundlectl.cli import cli


@pytest.mark.usefixtures("_isolated_project")
class TestExternalsCommand:
    def test_quiet_lines(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["-q", "externals", "aiohttp/web", "flask", "python:os"])
        assert result.exit_code == 0, result.output
        assert result.output.strip().splitlines() == [
            "aiohttp/web\texternal",
            "flask\tembed",
            "python:os\texternal",
        ]

    def test_bundle_all(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["--json", "externals", "--bundle-all", "aiohttp"])
        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["data"]["classifications"] == {"aiohttp": "embed"}

    def test_human_table(self, cli_runner: CliRunner) -> None:
        result = cli_runner.invoke(cli, ["externals", "aiohttp"])
        assert result.exit_code == 0, result.output
        assert "aiohttp" in result.output
        assert "external" in result.output

    def test_bad_rule(self, cli_runner: CliRunner, project) -> None:
        (project / "bundlectl.toml").write_text('[adapter]\nexternal = "nocolon"\n')
        result = cli_runner.invoke(cli, ["externals", "x"])
        assert result.exit_code == 1
        assert "CONFIGURATION_ERROR" in result.output
