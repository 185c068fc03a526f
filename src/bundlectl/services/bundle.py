"""Bundle orchestration — the two ordered bundling passes.

Pass 1 bundles the application server (entry + manifest, plus the
instrumentation module when present) into ``<out>/server``. Pass 2 bundles
the generated runtime entry into ``<out>`` and treats everything pass 1 wrote
as external, so server code is never embedded twice.

INVARIANT: pass 2's rule set is a superset of pass 1's.
INVARIANT: pass 2 never starts before pass 1's output index exists.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import structlog

from bundlectl.domain.bundle import BundleOutput, BundleUnit, PassName
from bundlectl.domain.externals import ExternalRuleSet, OutputDirMatcher
from bundlectl.errors import BundlingFailure
from bundlectl.infrastructure.bundler import INDEX_FILE, Bundler
from bundlectl.services.telemetry import trace_span

log = structlog.get_logger("bundlectl.bundle")

SERVER_DIR = "server"
INSTRUMENTATION_ENTRY = "instrumentation_server"

# Directory holding the ``runtime`` package; searched during pass 2 so the
# runtime resolves even when bundlectl is not installed in the target project.
ADAPTER_MODULE_DIR = Path(__file__).resolve().parents[1]

PassHook = Callable[[BundleUnit, BundleOutput], None]


class BundleOrchestrator:
    """Runs the application and runtime passes through a :class:`Bundler`.

    Args:
        bundler: The bundling collaborator.
        module_paths: Extra module search paths for both passes.
        on_pass: Called after each successful write (plugin dispatch).
    """

    def __init__(
        self,
        bundler: Bundler,
        *,
        module_paths: tuple[Path, ...] = (),
        on_pass: PassHook | None = None,
    ) -> None:
        self._bundler = bundler
        self._module_paths = module_paths
        self._on_pass = on_pass

    def application_unit(
        self,
        *,
        server_dir: Path,
        out: Path,
        rules: ExternalRuleSet,
        instrumentation: bool = False,
    ) -> BundleUnit:
        entries = {
            "index": server_dir / "index.py",
            "manifest": server_dir / "manifest.py",
        }
        if instrumentation:
            entries[INSTRUMENTATION_ENTRY] = server_dir / f"{INSTRUMENTATION_ENTRY}.py"
        return BundleUnit(
            name=PassName.APPLICATION,
            entries=entries,
            output_dir=out / SERVER_DIR,
            externals=rules,
            module_paths=self._module_paths,
        )

    def runtime_unit(self, *, glue_entry: Path, out: Path, application: BundleUnit) -> BundleUnit:
        externals = application.externals.extend(
            OutputDirMatcher(SERVER_DIR, str(application.output_dir))
        )
        return BundleUnit(
            name=PassName.RUNTIME,
            entries={"index": glue_entry},
            output_dir=out,
            externals=externals,
            module_paths=(ADAPTER_MODULE_DIR, *self._module_paths),
        )

    def run_pass(self, unit: BundleUnit) -> BundleOutput:
        """Execute one pass.

        Raises:
            BundlingFailure: If the bundler fails for any reason.
        """
        with trace_span(f"pass:{unit.name}") as span:
            try:
                output = self._bundler.bundle(unit)
            except BundlingFailure:
                raise
            except Exception as exc:
                msg = f"{unit.name} pass failed: {exc}"
                raise BundlingFailure(msg, pass_name=unit.name) from exc
            if span:
                span.annotate("chunks", len(output.chunks))
                span.annotate("externals", len(output.external_imports))
        log.debug("pass.complete", pass_name=str(unit.name), output=str(output.output_dir))
        if self._on_pass is not None:
            self._on_pass(unit, output)
        return output

    def run_runtime(self, unit: BundleUnit, *, application: BundleUnit) -> BundleOutput:
        """Execute pass 2 after checking pass 1 has completed its write.

        Raises:
            BundlingFailure: If pass 1 output is missing or pass 2 fails.
        """
        if not (application.output_dir / INDEX_FILE).is_file():
            msg = "Runtime pass cannot start before the application pass has written its output"
            raise BundlingFailure(msg, pass_name=unit.name)
        if not unit.externals.issuperset(application.externals):
            msg = "Runtime pass rules must include every application pass rule"
            raise BundlingFailure(msg, pass_name=unit.name)
        return self.run_pass(unit)
