"""Tests for the generated server's logging setup."""

from __future__ import annotations

import json
import logging
from collections.abc import Generator

import pytest
import structlog

from bundlectl.runtime.logging import configure_logging


@pytest.fixture(autouse=True)
def _restore_logging() -> Generator[None]:
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    access_level = logging.getLogger("aiohttp.access").level
    yield
    root.handlers = handlers
    root.setLevel(level)
    logging.getLogger("aiohttp.access").setLevel(access_level)
    structlog.reset_defaults()


class TestRuntimeLogging:
    def test_json_lines_on_stdout(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging({})
        structlog.get_logger("runtime.test").info("server.listening", port=3000)
        captured = capfd.readouterr()
        parsed = json.loads(captured.out.strip())
        assert parsed["event"] == "server.listening"
        assert parsed["port"] == 3000
        assert parsed["level"] == "info"
        assert captured.err == ""

    def test_level_from_environment(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging({"LOG_LEVEL": "warning"})
        log = structlog.get_logger("runtime.test")
        log.info("hidden")
        log.warning("shown")
        lines = capfd.readouterr().out.strip().splitlines()
        assert [json.loads(line)["event"] for line in lines] == ["shown"]

    def test_unknown_level_defaults_to_info(self) -> None:
        configure_logging({"LOG_LEVEL": "chatty"})
        assert logging.getLogger().level == logging.INFO

    def test_console_format(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging({"LOG_FORMAT": "console"})
        structlog.get_logger("runtime.test").info("hello")
        out = capfd.readouterr().out
        assert "hello" in out
        with pytest.raises(json.JSONDecodeError):
            json.loads(out)

    def test_access_log_quieted(self) -> None:
        configure_logging({})
        assert logging.getLogger("aiohttp.access").level == logging.WARNING

    def test_exceptions_rendered(self, capfd: pytest.CaptureFixture[str]) -> None:
        configure_logging({})
        try:
            raise ValueError("kaboom")
        except ValueError:
            structlog.get_logger("runtime.test").exception("request.failed")
        parsed = json.loads(capfd.readouterr().out.strip())
        assert "kaboom" in parsed["exception"]
