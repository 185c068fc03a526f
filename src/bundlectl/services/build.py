"""BuildService — turn a compiled web application into a deployable directory.

Steps, in order:

1. compile the externalization rules (configuration errors abort here);
2. clear the output and scratch directories;
3. copy client and prerendered assets, precompress them;
4. write the server code and ``manifest.py`` to scratch space;
5. pass 1 (application) into ``<stage>/server``;
6. copy the runtime entry with its build-time constants;
7. pass 2 (runtime) into ``<stage>``;
8. wire the instrumentation module into the entry, if any;
9. write the descriptor, then promote ``<stage>`` to ``<out>``.

Everything is written to a staging directory first. A failure at any step
removes the stage, so ``<out>`` only ever exists as a complete build.
"""

from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from bundlectl.domain.bundle import BundleOutput, BundleUnit
from bundlectl.domain.externals import compile_rules, normalize_rule
from bundlectl.domain.project import ProjectManifest
from bundlectl.errors import BuilderError, BundlectlError
from bundlectl.infrastructure.bundler import Bundler, ImportGraphBundler
from bundlectl.services.base import BaseService
from bundlectl.services.bundle import SERVER_DIR, BundleOrchestrator
from bundlectl.services.descriptor import DescriptorEmitter
from bundlectl.services.result import ServiceResult
from bundlectl.services.telemetry import trace_span, traced

if TYPE_CHECKING:
    from bundlectl.config.models import AdapterConfig, RuntimeConfig
    from bundlectl.infrastructure.builder import Builder

log = structlog.get_logger("bundlectl.build")

FILES_DIR = Path(__file__).resolve().parents[1] / "files"
INSTRUMENTATION_EXPORTS = ("path", "host", "port", "server")


def render_manifest_module(builder: Builder) -> str:
    """Source of the bundled ``manifest.py``."""
    return "\n\n".join(
        [
            f"manifest = {builder.generate_manifest(relative_path='./')}",
            f"prerendered = frozenset({sorted(builder.prerendered_paths)!r})",
            f"base = {builder.base!r}",
        ]
    ) + "\n"


def glue_replacements(adapter: AdapterConfig, runtime: RuntimeConfig) -> dict[str, str]:
    """Token → source text substituted into the runtime entry."""
    return {
        "SERVER": f"{SERVER_DIR}.index",
        "MANIFEST": f"{SERVER_DIR}.manifest",
        "ENV_PREFIX": json.dumps(adapter.env_prefix),
        "BUILD_OPTIONS": repr(runtime.model_dump(mode="json")),
    }


class BuildService(BaseService):
    """Runs the full adapter build for one project."""

    def __init__(
        self,
        project_root: Path,
        adapter: AdapterConfig,
        runtime: RuntimeConfig,
        *,
        bundler: Bundler | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(project_root, **kwargs)
        self._adapter = adapter
        self._runtime = runtime
        self._bundler = bundler or ImportGraphBundler()

    @property
    def out(self) -> Path:
        return self.project_root / self._adapter.out

    @traced
    def adapt(self, builder: Builder) -> ServiceResult:
        warnings: list[str] = []
        stage = builder.get_build_directory("stage")
        try:
            data = self._adapt(builder, stage, warnings)
        except BundlectlError as exc:
            log.error("build.failed", code=exc.code, error=exc.message)
            return ServiceResult.failure("build", exc, warnings=warnings)
        except OSError as exc:
            error = BuilderError(f"Filesystem operation failed: {exc}")
            log.error("build.failed", code=error.code, error=error.message)
            return ServiceResult.failure("build", error, warnings=warnings)
        finally:
            if stage.exists():
                builder.rimraf(stage)
        return ServiceResult(ok=True, op="build", data=data, warnings=warnings)

    def _adapt(self, builder: Builder, stage: Path, warnings: list[str]) -> dict[str, Any]:
        manifest = ProjectManifest.load(self.project_root)
        with trace_span("rules"):
            rules = compile_rules(
                declared=manifest.dependencies,
                rule=normalize_rule(self._adapter.external),
                manifest=manifest.raw,
                bundle_all=self._adapter.bundle_all,
            )

        out = self.out
        tmp = builder.get_build_directory("adapter")
        builder.rimraf(out)
        builder.rimraf(tmp)
        builder.rimraf(stage)
        builder.mkdirp(tmp)
        builder.mkdirp(stage)

        base = builder.base.lstrip("/")
        with trace_span("assets"):
            builder.log.info("Copying assets")
            builder.write_client(stage / "client" / base)
            builder.write_prerendered(stage / "prerendered" / base)
            if self._adapter.precompress:
                builder.log.info("Compressing assets")
                builder.compress(stage / "client")
                builder.compress(stage / "prerendered")

        builder.log.info("Building server")
        builder.write_server(tmp)
        (tmp / "manifest.py").write_text(render_manifest_module(builder), encoding="utf-8")
        instrumentation = builder.has_server_instrumentation_file()

        module_paths = tuple(
            self.project_root / p for p in self._adapter.bundler.module_paths
        )

        def on_pass(unit: BundleUnit, output: BundleOutput) -> None:
            warnings.extend(output.warnings)
            self._dispatch_event(
                "post_pass",
                {
                    "pass_name": str(unit.name),
                    "output_dir": str(output.output_dir),
                    "entries": {k: str(v) for k, v in unit.entries.items()},
                },
                warnings,
            )

        orchestrator = BundleOrchestrator(
            self._bundler, module_paths=module_paths, on_pass=on_pass
        )
        application = orchestrator.application_unit(
            server_dir=tmp, out=stage, rules=rules, instrumentation=instrumentation
        )
        app_output = orchestrator.run_pass(application)

        glue_dir = tmp / "runtime"
        builder.copy(FILES_DIR, glue_dir, replace=glue_replacements(self._adapter, self._runtime))
        runtime_unit = orchestrator.runtime_unit(
            glue_entry=glue_dir / "index.py", out=stage, application=application
        )
        runtime_output = orchestrator.run_runtime(runtime_unit, application=application)

        if instrumentation:
            builder.instrument(
                entrypoint=stage / "index.py",
                instrumentation=stage / SERVER_DIR / "instrumentation_server.py",
                exports=INSTRUMENTATION_EXPORTS,
            )

        builder.log.info("Generating pyproject.toml")
        emitter = DescriptorEmitter(self.project_root)
        descriptor = emitter.build(manifest)
        emitter.write(descriptor, stage)

        with trace_span("promote"):
            builder.rimraf(out)
            out.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(stage), str(out))

        builder.log.info(
            "Including dependencies in output pyproject.toml",
            count=len(descriptor.dependencies),
        )
        builder.log.info(
            f"Build complete. To run the server:\n  cd {out}\n  pip install .\n  python index.py"
        )
        self._dispatch_event(
            "post_build",
            {"out": str(out), "descriptor": descriptor.model_dump()},
            warnings,
        )
        return {
            "out": str(out),
            "name": descriptor.name,
            "version": descriptor.version,
            "dependencies": descriptor.requirements,
            "instrumented": instrumentation,
            "rules": len(rules),
            "passes": {
                str(application.name): _pass_summary(app_output),
                str(runtime_unit.name): _pass_summary(runtime_output),
            },
        }


def _pass_summary(output: BundleOutput) -> dict[str, Any]:
    return {
        "modules": len(output.files),
        "chunks": sorted(output.chunks),
        "externals": list(output.external_imports),
    }
