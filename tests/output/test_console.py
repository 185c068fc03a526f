"""Tests for the Rich console factory."""

from __future__ import annotations

from bundlectl.output.console import BUNDLE_THEME, create_console, get_output, style_for_placement


class TestConsole:
    def test_renders_to_buffer(self) -> None:
        console = create_console()
        console.print("hello")
        assert get_output(console) == "hello\n"

    def test_theme_styles(self) -> None:
        assert "bundle.ok" in BUNDLE_THEME.styles
        assert "bundle.external" in BUNDLE_THEME.styles

    def test_placement_styles(self) -> None:
        assert style_for_placement("external") == "bundle.external"
        assert style_for_placement("embed") == "bundle.embed"
        assert style_for_placement("other") == ""

    def test_width(self) -> None:
        assert create_console(width=60).width == 60
