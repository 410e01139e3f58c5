"""
Script Bundler Service.

Resolves the entry module's import graph (including the wasm glue module as an
ordinary dependency), type-checks the typed-script modules and emits the
bundle through the configured script engine.
"""

from __future__ import annotations

from pathlib import Path

from ...core.config import BuildTarget
from ...core.exceptions import ResolutionError
from ...core.logging import get_logger
from ...models.artifacts import BundleOutput
from ...models.graph import ModuleGraph
from .engine import EsbuildEngine, ScriptEngine
from .resolver import ModuleResolver, ResolutionPolicy

logger = get_logger(__name__)


def policy_for(target: BuildTarget) -> ResolutionPolicy:
    """The resolution policy a build target declares."""
    return ResolutionPolicy(
        extensions=target.resolve_extensions,
        root=target.root,
        glue_dir=target.staging_path,
    )


class ScriptBundler:
    """Drives module resolution, type checking and bundling for one target."""

    def __init__(self, engine: ScriptEngine | None = None) -> None:
        self.engine = engine or EsbuildEngine()

    def resolve(self, target: BuildTarget) -> ModuleGraph:
        """Resolve the module graph reachable from the target's entry.

        Raises:
            ResolutionError: If the entry or any import cannot be resolved.
        """
        entry = target.entry_path
        if not entry.is_file():
            raise ResolutionError(
                message="Entry module not found",
                file_path=str(entry),
                specifier=str(target.entry),
            )
        return ModuleResolver(policy_for(target)).build_graph(entry)

    async def bundle(self, target: BuildTarget, out_dir: Path) -> BundleOutput:
        """Resolve, check and emit the bundle into ``out_dir``.

        Args:
            target: Build target (entry, mode, resolution policy).
            out_dir: Directory the engine writes scripts into.

        Returns:
            BundleOutput with the manifest and emitted files.

        Raises:
            ResolutionError: Unresolvable import.
            TypeCheckError: Static type violation.
            TranspileError: Syntax error.
        """
        graph = self.resolve(target)
        logger.info(
            "Module graph resolved",
            modules=len(graph.nodes),
            typed=len(graph.typed_files),
            glue=len(graph.glue_files),
        )
        await self.engine.check(graph, target)
        output = await self.engine.bundle(graph, target, out_dir)
        if not graph.glue_files:
            logger.warning("Entry does not import the wasm glue module", staging=str(target.staging_path))
            output.warnings.append(f"{target.entry} does not import the glue module from {target.staging_path}")
        if output.module_count == 0:
            output.module_count = len(graph.nodes)
        logger.info(
            "Bundle emitted",
            files=len(output.files),
            outputs=output.manifest.outputs,
        )
        return output
