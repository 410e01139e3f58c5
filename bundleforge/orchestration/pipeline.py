"""
Pipeline coordination for bundleforge.

One build cycle runs:

    validate -> compile -> (bundle || copy assets) -> assemble -> promote

The bundler never starts before the compiler has written its artifact and the
fingerprint has been recorded for the same cycle. Everything is written into a
temporary sibling of the output directory that replaces the output directory
only after every stage succeeded, so a failed cycle leaves the previous output
exactly as it was.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import uuid
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..core.config import BuildTarget, Config, get_config
from ..core.exceptions import AssetIOError, BundleForgeError, PipelineError
from ..core.logging import bound_context, get_logger
from ..core.types import BuildCycle, CycleState, Stage, StageStatus
from ..models.artifacts import AssetCopyReport, BundleOutput, CompiledBinaryArtifact
from ..services.assets import AssetCopier
from ..services.bundler import ScriptBundler
from ..services.compiler import BinaryModuleCompiler, WasmPackCompiler
from ..storage import LocalCacheBackend
from .cache import ArtifactCache

logger = get_logger(__name__)

MANIFEST_FILENAME = "manifest.json"
SCRIPT_SUFFIXES = frozenset({".js", ".mjs"})

# one lock per staging directory, shared by every coordinator that builds into it
_STAGING_LOCKS: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def staging_lock(target: BuildTarget) -> asyncio.Lock:
    """Return the single-flight lock guarding ``target``'s staging directory."""
    key = os.path.normcase(str(target.staging_path))
    lock = _STAGING_LOCKS.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _STAGING_LOCKS[key] = lock
    return lock


class BuildScope(str, Enum):
    """Which inputs changed since the last successful cycle.

    ``FULL`` re-runs every stage (compile may still be served from the
    fingerprint cache in development mode). ``SCRIPTS`` reuses the compiled
    artifact. ``ASSETS`` reuses both the artifact and the last bundle.
    """

    FULL = "full"
    SCRIPTS = "scripts"
    ASSETS = "assets"

    def union(self, other: BuildScope) -> BuildScope:
        order = [BuildScope.ASSETS, BuildScope.SCRIPTS, BuildScope.FULL]
        return max(self, other, key=order.index)


@dataclass
class BuildResult:
    """Outcome of one build cycle."""

    cycle: BuildCycle
    output_dir: Path
    artifact: CompiledBinaryArtifact | None = None
    bundle: BundleOutput | None = None
    assets: AssetCopyReport | None = None
    error: BundleForgeError | None = None

    @property
    def success(self) -> bool:
        return self.cycle.state == CycleState.COMPLETE

    @property
    def discarded(self) -> bool:
        return self.cycle.state == CycleState.DISCARDED

    @property
    def failed_stage(self) -> Stage | None:
        return self.cycle.failed_stage

    def raise_for_status(self) -> None:
        """Raise a PipelineError wrapping the stage error if the cycle failed."""
        if self.error is not None:
            raise PipelineError(
                message=str(self.error),
                stage=self.failed_stage.value if self.failed_stage else "",
                cycle_id=self.cycle.cycle_id,
                cause=self.error,
            )


def _remove_tree(path: Path) -> None:
    # a symlinked dev output is unlinked, never followed
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
    elif path.is_dir():
        shutil.rmtree(path, ignore_errors=True)


class PipelineCoordinator:
    """Sequences the compiler, bundler and asset copier for one build target.

    Cycles are serialized per staging directory, across coordinators, so two
    compiler invocations never race on it.
    """

    def __init__(
        self,
        target: BuildTarget,
        compiler: BinaryModuleCompiler | None = None,
        bundler: ScriptBundler | None = None,
        copier: AssetCopier | None = None,
        cache: ArtifactCache | None = None,
        config: Config | None = None,
    ) -> None:
        self.target = target
        self.config = config or get_config()
        self.compiler = compiler or WasmPackCompiler(self.config.tools)
        self.bundler = bundler or ScriptBundler()
        self.copier = copier or AssetCopier()
        self.cache_dir = self._resolve_cache_dir()
        if cache is None:
            backend = LocalCacheBackend(self.cache_dir) if target.is_development else None
            cache = ArtifactCache(backend)
        self.cache = cache

        self._lock = staging_lock(target)
        self._last_artifact: CompiledBinaryArtifact | None = None
        self._last_bundle: BundleOutput | None = None
        self.history: list[BuildCycle] = []

    def _resolve_cache_dir(self) -> Path:
        cache_dir = self.config.cache_dir
        if not cache_dir.is_absolute():
            cache_dir = self.target.root / cache_dir
        return cache_dir.resolve()

    @property
    def output_dir(self) -> Path:
        return self.target.output_path

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def last_successful(self) -> BuildCycle | None:
        for cycle in reversed(self.history):
            if cycle.state == CycleState.COMPLETE:
                return cycle
        return None

    async def build(
        self,
        scope: BuildScope = BuildScope.FULL,
        should_promote: Callable[[], bool] | None = None,
    ) -> BuildResult:
        """Run one build cycle.

        Args:
            scope: Which stages must re-run (see ``BuildScope``).
            should_promote: Checked after every stage succeeded; returning
                False discards the cycle's output instead of promoting it.

        Returns:
            BuildResult. Stage errors are captured in ``result.error``,
            never retried.
        """
        cycle = BuildCycle(cycle_id=uuid.uuid4().hex[:8], mode=self.target.mode)
        async with self._lock:
            with bound_context(cycle_id=cycle.cycle_id):
                result = await self._run_cycle(cycle, scope, should_promote)
        self.history.append(cycle)
        return result

    async def _run_cycle(
        self,
        cycle: BuildCycle,
        scope: BuildScope,
        should_promote: Callable[[], bool] | None,
    ) -> BuildResult:
        output_dir = self.output_dir
        work_dir = output_dir.parent / f".{output_dir.name}.tmp-{cycle.cycle_id}"
        bundle_dir = self.cache_dir / "bundles" / cycle.cycle_id
        result = BuildResult(cycle=cycle, output_dir=output_dir)
        current = Stage.VALIDATE
        new_bundle = False

        logger.info("Build cycle started", scope=scope.value, mode=self.target.mode)
        try:
            stage = cycle.stage(Stage.VALIDATE)
            stage.mark_running()
            self.target.validate_inputs()
            stage.mark_completed()

            current = Stage.COMPILE
            cycle.transition(CycleState.COMPILING)
            result.artifact = await self._compile(cycle, scope)

            current = Stage.BUNDLE
            cycle.transition(CycleState.BUNDLING)
            reuse_bundle = scope == BuildScope.ASSETS and self._last_bundle is not None
            new_bundle = not reuse_bundle
            bundle, assets = await self._bundle_and_copy(cycle, reuse_bundle, bundle_dir, work_dir)
            result.bundle, result.assets = bundle, assets

            current = Stage.PROMOTE
            stage = cycle.stage(Stage.PROMOTE)
            stage.mark_running()
            self._assemble(work_dir, result.artifact, bundle)

            if should_promote is not None and not should_promote():
                stage.mark_completed(status=StageStatus.SKIPPED)
                cycle.transition(CycleState.DISCARDED)
                logger.info("Build cycle superseded, output discarded")
                _remove_tree(work_dir)
                if new_bundle:
                    _remove_tree(bundle_dir)
                return result

            self._promote(work_dir, output_dir, cycle.cycle_id)
            stage.mark_completed(artifacts=[output_dir])
            cycle.transition(CycleState.COMPLETE)
        except BundleForgeError as e:
            return self._fail(result, current, e, work_dir, bundle_dir if new_bundle else None)
        except BaseException:
            _remove_tree(work_dir)
            raise

        self._last_artifact = result.artifact
        if new_bundle:
            previous = self._last_bundle
            self._last_bundle = bundle
            if previous is not None and previous.output_dir != bundle.output_dir:
                _remove_tree(previous.output_dir)

        logger.info(
            "Build cycle complete",
            duration=f"{cycle.duration_seconds:.2f}s",
            output=str(output_dir),
        )
        return result

    def _fail(
        self,
        result: BuildResult,
        stage: Stage,
        error: BundleForgeError,
        work_dir: Path,
        bundle_dir: Path | None,
    ) -> BuildResult:
        cycle = result.cycle
        failed = [r for r in cycle.stages if r.status == StageStatus.FAILED]
        if failed:
            stage = failed[0].stage
        else:
            cycle.stage(stage).mark_failed(str(error))
        for record in cycle.stages:
            if record.status == StageStatus.RUNNING:
                record.mark_completed(status=StageStatus.SKIPPED)
        cycle.failed_stage = stage
        cycle.error = str(error)
        cycle.transition(CycleState.FAILED)
        result.error = error

        _remove_tree(work_dir)
        if bundle_dir is not None:
            _remove_tree(bundle_dir)
        logger.error("Build cycle failed", stage=stage.value, error=str(error))
        return result

    async def _compile(self, cycle: BuildCycle, scope: BuildScope) -> CompiledBinaryArtifact:
        """Compile stage. Returns only once the artifact and fingerprint are recorded."""
        stage = cycle.stage(Stage.COMPILE)
        stage.mark_running()
        target = self.target

        if scope == BuildScope.ASSETS and self._last_artifact is not None and self._last_artifact.files_present():
            artifact = self._last_artifact
            stage.mark_completed(artifact.fingerprint, artifact.all_files, status=StageStatus.REUSED)
            logger.info("Compile skipped: only static assets changed")
            return artifact

        fingerprint = self.compiler.fingerprint(target.crate_path, target.mode)
        if target.is_development:
            cached = await self.cache.lookup(target, fingerprint)
            if cached is not None:
                stage.mark_completed(cached.fingerprint, cached.all_files, status=StageStatus.REUSED)
                logger.info("Compile skipped: crate unchanged", fingerprint=fingerprint[:12])
                return cached

        try:
            artifact = await self.compiler.compile(target.crate_path, target.mode, target.staging_path)
        except BundleForgeError as e:
            await self.cache.invalidate(target)
            stage.mark_failed(str(e))
            raise

        if target.is_development:
            await self.cache.record(target, artifact)
        stage.mark_completed(artifact.fingerprint, artifact.all_files)
        return artifact

    async def _bundle_and_copy(
        self,
        cycle: BuildCycle,
        reuse_bundle: bool,
        bundle_dir: Path,
        work_dir: Path,
    ) -> tuple[BundleOutput, AssetCopyReport]:
        """Run the bundle and copy stages concurrently; the first failure cancels the other."""

        def bundle_ready() -> None:
            if not copy_task.done():
                cycle.transition(CycleState.COPYING)

        async def bundle_stage() -> BundleOutput:
            stage = cycle.stage(Stage.BUNDLE)
            stage.mark_running()
            if reuse_bundle:
                assert self._last_bundle is not None
                stage.mark_completed(status=StageStatus.REUSED)
                logger.info("Bundle skipped: scripts unchanged")
                bundle_ready()
                return self._last_bundle
            try:
                output = await self.bundler.bundle(self.target, bundle_dir)
            except BundleForgeError as e:
                stage.mark_failed(str(e))
                raise
            stage.mark_completed(artifacts=[bundle_dir / f for f in output.files])
            bundle_ready()
            return output

        async def copy_stage() -> AssetCopyReport:
            stage = cycle.stage(Stage.COPY)
            stage.mark_running()
            try:
                report = await self.copier.copy(self.target.asset_paths, work_dir)
            except BundleForgeError as e:
                stage.mark_failed(str(e))
                raise
            stage.mark_completed(artifacts=[work_dir / f.relative_path for f in report.files])
            return report

        bundle_task = asyncio.create_task(bundle_stage())
        copy_task = asyncio.create_task(copy_stage())
        done, pending = await asyncio.wait({bundle_task, copy_task}, return_when=asyncio.FIRST_EXCEPTION)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)

        for task in (bundle_task, copy_task):
            if task in done and not task.cancelled() and task.exception() is not None:
                raise task.exception()  # type: ignore[misc]
        return bundle_task.result(), copy_task.result()

    def _assemble(self, work_dir: Path, artifact: CompiledBinaryArtifact, bundle: BundleOutput) -> None:
        """Lay bundle, wasm payload, glue module and manifest over the copied assets."""
        try:
            work_dir.mkdir(parents=True, exist_ok=True)
            for relative in bundle.files:
                destination = work_dir / relative
                if destination.exists():
                    logger.warning("Generated file replaces static asset", path=str(relative))
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(bundle.output_dir / relative, destination)

            for path in artifact.all_files:
                shutil.copyfile(path, work_dir / path.name)
            # a glue module bundled into a nested chunk resolves the payload from there
            script_dirs = {
                (work_dir / relative).parent for relative in bundle.files if relative.suffix in SCRIPT_SUFFIXES
            }
            for directory in sorted(script_dirs - {work_dir}):
                shutil.copyfile(artifact.binary_path, directory / artifact.binary_path.name)

            manifest = bundle.manifest.model_copy(
                update={
                    "wasm": artifact.binary_path.name,
                    "glue": artifact.glue_module.name if artifact.glue_module else None,
                    "binary_fingerprint": artifact.fingerprint,
                    "mode": self.target.mode,
                }
            )
            (work_dir / MANIFEST_FILENAME).write_text(manifest.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            raise AssetIOError(
                message=f"Cannot assemble output: {e.strerror or e}",
                destination=str(work_dir),
                cause=e,
            ) from e

    def _promote(self, work_dir: Path, output_dir: Path, cycle_id: str) -> None:
        """Swap the fully written work directory into place."""
        try:
            if self.target.is_development:
                self._promote_versioned(work_dir, output_dir, cycle_id)
            else:
                self._promote_rename(work_dir, output_dir, cycle_id)
        except OSError as e:
            raise PipelineError(
                message=f"Cannot promote build output: {e.strerror or e}",
                stage=Stage.PROMOTE.value,
                cause=e,
            ) from e
        logger.debug("Output promoted", output=str(output_dir))

    @staticmethod
    def _promote_rename(work_dir: Path, output_dir: Path, cycle_id: str) -> None:
        backup = output_dir.parent / f".{output_dir.name}.old-{cycle_id}"
        if output_dir.exists() or output_dir.is_symlink():
            output_dir.rename(backup)
        try:
            work_dir.rename(output_dir)
        except OSError:
            if backup.exists() or backup.is_symlink():
                backup.rename(output_dir)
            raise
        _remove_tree(backup)
        # versions left by development builds are no longer reachable
        for stale in output_dir.parent.glob(f".{output_dir.name}.v-*"):
            _remove_tree(stale)

    @staticmethod
    def _promote_versioned(work_dir: Path, output_dir: Path, cycle_id: str) -> None:
        """Point ``output_dir`` at a new version directory with one rename.

        The dev server never sees a missing output: a request that resolved the
        previous version keeps reading it, so that version is kept until the
        next promotion.
        """
        parent = output_dir.parent
        version = parent / f".{output_dir.name}.v-{cycle_id}"
        link = parent / f".{output_dir.name}.link-{cycle_id}"
        previous = os.readlink(output_dir) if output_dir.is_symlink() else None
        backup = None

        work_dir.rename(version)
        try:
            link.symlink_to(version.name, target_is_directory=True)
            if output_dir.exists() and not output_dir.is_symlink():
                # first dev build over a plain directory left by a production build
                backup = parent / f".{output_dir.name}.old-{cycle_id}"
                output_dir.rename(backup)
            try:
                os.replace(link, output_dir)
            except OSError:
                if backup is not None:
                    backup.rename(output_dir)
                raise
        except OSError:
            _remove_tree(link)
            _remove_tree(version)
            raise

        if backup is not None:
            _remove_tree(backup)
        keep = {version.name, Path(previous).name if previous else None}
        for stale in parent.glob(f".{output_dir.name}.v-*"):
            if stale.name not in keep:
                _remove_tree(stale)

    async def clean(self) -> list[Path]:
        """Remove the output directory, staged artifacts and cache records."""
        removed = []
        output_dir = self.output_dir
        versions = sorted(output_dir.parent.glob(f".{output_dir.name}.v-*"))
        for path in (output_dir, *versions, self.cache_dir, self.target.staging_path):
            if path.exists() or path.is_symlink():
                _remove_tree(path)
                removed.append(path)
        await self.cache.invalidate(self.target)
        self._last_artifact = None
        self._last_bundle = None
        return removed
