"""Tests for operation-specific Rich renderers."""

from bundlectl.output.renderers import render_quiet, render_result
from bundlectl.services.result import ServiceError, ServiceResult


def _ok(op: str, **data: object) -> ServiceResult:
    return ServiceResult(ok=True, op=op, data=dict(data))


def _err(op: str, code: str, message: str, **detail: object) -> ServiceResult:
    return ServiceResult(
        ok=False,
        op=op,
        error=ServiceError(code=code, message=message, detail=dict(detail)),
    )


def _build_result(**extra: object) -> ServiceResult:
    return _ok(
        "build",
        out="/srv/demo/build",
        name="demo-app",
        version="0.3.1",
        rules=3,
        passes={
            "application": {"modules": 4, "chunks": [], "externals": ["aiohttp"]},
            "runtime": {"modules": 12, "chunks": ["runtime"], "externals": ["server"]},
        },
        dependencies=["aiohttp>=3.9,<4", "structlog>=24.1"],
        **extra,
    )


class TestErrorRenderer:
    def test_basic_error(self) -> None:
        output = render_result(_err("build", "BUNDLING_FAILED", "Cannot resolve import"))
        assert "ERROR" in output
        assert "build" in output
        assert "Cannot resolve import" in output
        assert "BUNDLING_FAILED" in output

    def test_verbose_shows_detail(self) -> None:
        result = _err("build", "BUNDLING_FAILED", "Bad", module="missing_mod")
        output = render_result(result, verbose=True)
        assert "detail" in output
        assert "missing_mod" in output

    def test_detail_hidden_without_verbose(self) -> None:
        result = _err("build", "BUNDLING_FAILED", "Bad", module="missing_mod")
        assert "missing_mod" not in render_result(result)

    def test_no_error_object(self) -> None:
        assert "Unknown error" in render_result(ServiceResult(ok=False, op="test"))


class TestBuildRenderer:
    def test_summary(self) -> None:
        output = render_result(_build_result())
        assert "OK" in output
        assert "/srv/demo/build" in output
        assert "demo-app" in output
        assert "application" in output
        assert "runtime" in output
        assert "dependencies (2)" in output
        assert "structlog>=24.1" in output

    def test_instrumented_flag(self) -> None:
        assert "instrumented" in render_result(_build_result(instrumented=True))
        assert "instrumented" not in render_result(_build_result(instrumented=False))

    def test_verbose_span_tree(self) -> None:
        result = ServiceResult(
            ok=True,
            op="build",
            data={"out": "/x"},
            meta={
                "telemetry": {
                    "name": "BuildService.adapt",
                    "duration_ms": 1500.0,
                    "children": [
                        {"name": "pass:runtime", "duration_ms": 12.5, "annotations": {"chunks": 1}}
                    ],
                }
            },
        )
        output = render_result(result, verbose=True)
        assert "BuildService.adapt" in output
        assert "pass:runtime" in output
        assert "chunks=1" in output
        assert "pass:runtime" not in render_result(result)


class TestExternalsRenderer:
    def test_table(self) -> None:
        result = _ok(
            "externals",
            bundle_all=False,
            rules=2,
            builtins=200,
            names=["aiohttp", "requests"],
            classifications={"aiohttp.web": "external", "./local": "embed"},
        )
        output = render_result(result)
        assert "aiohttp, requests" in output
        assert "aiohttp.web" in output
        assert "embed" in output


class TestGenericRenderer:
    def test_unknown_op(self) -> None:
        output = render_result(_ok("custom", count=3, items=["a"]))
        assert "custom" in output
        assert "count: 3" in output
        assert '["a"]' in output


class TestQuiet:
    def test_build_prints_out(self) -> None:
        assert render_quiet(_build_result()) == "/srv/demo/build"

    def test_externals_lines(self) -> None:
        result = _ok("externals", classifications={"aiohttp": "external", "./x": "embed"})
        assert render_quiet(result) == "aiohttp\texternal\n./x\tembed"

    def test_error(self) -> None:
        assert render_quiet(_err("build", "X", "broken")) == "ERROR: build — broken"

    def test_other_op(self) -> None:
        assert render_quiet(_ok("custom")) == "OK: custom"
