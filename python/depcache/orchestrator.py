"""Two-phase build orchestration.

Drives INIT -> STUB_COMPILED -> SOURCE_OVERLAID -> FINAL_COMPILED -> DONE:

1. Fingerprint the manifest. On a cache hit restore the dependency
   artifacts; on a miss compile a stub project and store the result.
2. Replace the stub with the real source tree, leaving the target
   directory alone.
3. Reconcile staleness and recompile; only the application unit rebuilds.
4. Copy the binary out.

Any failure moves the build to FAILED and raises; filesystem errors surface
as BuildIOError. A failed final compile never touches the cache entry from
step 1. Each build runs in its own workspace under work_dir, removed when
the build ends, so concurrent builds only meet in the cache.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from . import reconcile as reconciler
from .config import BuildConfig
from .dep_cache import DependencyCache, MaxAge, MaxEntries
from .diagnostics import parse_compiler_output
from .errors import (
    ApplicationCompileError,
    BuildIOError,
    DepcacheError,
    DependencyCompileError,
)
from .file_cache import sha256_file
from .fingerprint import cache_key
from .fingerprint import fingerprint as compute_fingerprint
from .ignore import iter_tree_files, load_ignore_patterns
from .protocols import BuildResult, BuildState, CompileResult, Manifest, StubSource, Toolchain
from .stub import remove_stub, write_stub

logger = logging.getLogger(__name__)


class BuildOrchestrator:
    """Runs one build at a time against a shared DependencyCache."""

    def __init__(
        self,
        toolchain: Toolchain,
        cache: DependencyCache,
        config: BuildConfig,
    ):
        self.toolchain = toolchain
        self.cache = cache
        self.config = config
        self.state = BuildState.INIT
        self.states: list[BuildState] = []

    def build(
        self,
        project_dir: str | os.PathLike[str],
        output_dir: str | os.PathLike[str] | None = None,
    ) -> BuildResult:
        """Build project_dir and copy the resulting binary to output_dir.

        Raises:
            MalformedManifest, DependencyCompileError, ReconciliationFailed,
            ApplicationCompileError, FingerprintCollision, BuildIOError
        """
        project = Path(project_dir).resolve()
        self.state = BuildState.INIT
        self.states = [BuildState.INIT]
        fingerprint: str | None = None
        workspace: Path | None = None
        try:
            manifest = self.toolchain.load_manifest(project)
            fingerprint = compute_fingerprint(manifest)
            key = cache_key(fingerprint, self.toolchain.cache_key_parts())
            workspace = self._prepare_workspace(project, manifest)
            target_dir = workspace / self.toolchain.target_dir_name

            stub, cache_hit = self._compile_dependencies(manifest, key, workspace, target_dir)
            self._transition(
                BuildState.STUB_COMPILED, fingerprint, cache_key=key, cache_hit=cache_hit,
            )

            self._overlay_source(project, workspace, stub)
            self._transition(BuildState.SOURCE_OVERLAID, fingerprint)

            self._compile_application(manifest, workspace, target_dir, stub)
            self._transition(BuildState.FINAL_COMPILED, fingerprint)

            result = self._emit(manifest, fingerprint, target_dir, output_dir, cache_hit)
            result.cache_key = key
            self._transition(BuildState.DONE, fingerprint)
            result.states = list(self.states)
            return result
        except DepcacheError as e:
            self._fail(e, project, fingerprint)
            raise
        except OSError as e:
            error = BuildIOError(f"{type(e).__name__}: {e}")
            self._fail(error, project, fingerprint)
            raise error from e
        finally:
            if workspace is not None:
                shutil.rmtree(workspace, ignore_errors=True)

    # -- phases -----------------------------------------------------------

    def _prepare_workspace(self, project: Path, manifest: Manifest) -> Path:
        # Private per build: concurrent builds of same-named packages share work_dir.
        self.config.work_dir.mkdir(parents=True, exist_ok=True)
        workspace = Path(tempfile.mkdtemp(prefix=f"{manifest.package}-", dir=self.config.work_dir))
        for name in self.toolchain.manifest_files:
            shutil.copy2(project / name, workspace / name)
        logger.debug(
            "orchestrator.workspace",
            extra={"project": str(project), "workspace": str(workspace)},
        )
        return workspace

    def _compile_dependencies(
        self,
        manifest: Manifest,
        key: str,
        workspace: Path,
        target_dir: Path,
    ) -> tuple[StubSource, bool]:
        # Synthesized on hits too: the hash reconciler compares against it.
        stub = self.toolchain.synthesize_stub(manifest)

        entry = self.cache.lookup(key)
        if entry is not None and self.cache.restore(entry, target_dir):
            return stub, True

        write_stub(stub, workspace)
        result = self.toolchain.compile(workspace, target_dir)
        if not result.ok:
            raise _compile_error(DependencyCompileError, "Dependency compile failed", result)

        self.cache.store(key, target_dir)
        self._auto_evict(key)
        return stub, False

    def _overlay_source(self, project: Path, workspace: Path, stub: StubSource) -> None:
        remove_stub(stub, workspace)
        spec = load_ignore_patterns(
            project,
            include_gitignore=self.config.include_gitignore,
            extra=[f"/{self.toolchain.target_dir_name}/"],
        )
        copied = 0
        for rel in iter_tree_files(project, spec):
            if rel in self.toolchain.manifest_files:
                continue
            dest = workspace / rel
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(project / rel, dest)
            copied += 1
        logger.debug(
            "orchestrator.overlay",
            extra={"project": str(project), "workspace": str(workspace), "files": copied},
        )

    def _compile_application(
        self,
        manifest: Manifest,
        workspace: Path,
        target_dir: Path,
        stub: StubSource,
    ) -> None:
        reconciler.reconcile(
            self.config.reconcile_mode,
            workspace,
            self.toolchain.application_units(manifest),
            target_dir,
            stub=stub,
            invalidate=lambda: self.toolchain.invalidate_application(manifest, target_dir),
        )
        result = self.toolchain.compile(workspace, target_dir)
        if not result.ok:
            raise _compile_error(ApplicationCompileError, "Application compile failed", result)

    def _emit(
        self,
        manifest: Manifest,
        fingerprint: str,
        target_dir: Path,
        output_dir: str | os.PathLike[str] | None,
        cache_hit: bool,
    ) -> BuildResult:
        binary = self.toolchain.binary_path(manifest, target_dir)
        if not binary.is_file():
            raise ApplicationCompileError(
                f"Compiler reported success but produced no binary at {binary}",
                returncode=0,
            )
        if output_dir:
            out_dir = Path(output_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
        else:
            out_dir = Path(tempfile.mkdtemp(prefix="out-", dir=self.config.work_dir))
        dest = out_dir / binary.name
        shutil.copy2(binary, dest)
        return BuildResult(
            binary=dest,
            binary_sha256=sha256_file(dest),
            fingerprint=fingerprint,
            cache_hit=cache_hit,
        )

    # -- helpers ------------------------------------------------------------

    def _auto_evict(self, keep: str) -> None:
        policies = []
        if self.config.max_entries:
            policies.append(MaxEntries(self.config.max_entries))
        if self.config.max_age_seconds:
            policies.append(MaxAge(self.config.max_age_seconds))
        for policy in policies:
            removed = self.cache.evict(policy)
            if keep in removed:
                logger.warning("orchestrator.evicted_current_entry", extra={"fingerprint": keep})

    def _fail(self, error: DepcacheError, project: Path, fingerprint: str | None) -> None:
        failed_in = self.state
        if not error.phase:
            error.phase = failed_in.value
        if error.fingerprint is None:
            error.fingerprint = fingerprint
        self._transition(BuildState.FAILED, fingerprint, failed_in=failed_in.value)
        logger.warning(
            "orchestrator.build_failed",
            extra={
                "project": str(project),
                "fingerprint": fingerprint,
                "phase": error.phase,
                "error_type": type(error).__name__,
                "error_message": error.message,
            },
        )

    def _transition(self, state: BuildState, fingerprint: str | None, **fields) -> None:
        previous = self.state
        self.state = state
        self.states.append(state)
        logger.info(
            "orchestrator.transition",
            extra={
                "from_state": previous.value,
                "to_state": state.value,
                "fingerprint": fingerprint,
                **fields,
            },
        )


def _compile_error(cls, message: str, result: CompileResult):
    diagnostics = parse_compiler_output(result.stdout, result.stderr)
    first = next((d for d in diagnostics if d.get("severity") == "error"), None)
    if first is not None:
        message = f"{message}: {first['message']}"
    return cls(
        message,
        returncode=result.returncode,
        stderr=result.stderr,
        diagnostics=diagnostics,
    )
