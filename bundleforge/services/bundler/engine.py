"""
Script engines.

The bundler does not type-check or transpile anything itself; it hands the
resolved module graph to a ``ScriptEngine``. The default engine runs ``tsc``
for type checking and ``esbuild`` for transpiling and bundling.
"""

from __future__ import annotations

import json
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from ...core.config import BuildTarget, ToolsConfig
from ...core.exceptions import ResolutionError, ScriptError, TranspileError, TypeCheckError
from ...core.logging import get_logger
from ...models.artifacts import BundleManifest, BundleOutput
from ...models.graph import ModuleGraph
from ..process import find_tool, run_command

logger = get_logger(__name__)

# path(line,col): error TS2322: message
_TSC_DIAGNOSTIC = re.compile(
    r"^(?P<file>.+?)\((?P<line>\d+),(?P<col>\d+)\): error TS(?P<code>\d+): (?P<message>.+)$"
)
# ✘ [ERROR] message
_ESBUILD_ERROR = re.compile(r"^\s*(?:✘|X)\s+\[ERROR\]\s+(?P<message>.+?)\s*$")
#     path:line:col:
_ESBUILD_LOCATION = re.compile(r"^\s+(?P<file>[^\s].*?):(?P<line>\d+):(?P<col>\d+):\s*$")

# TS1xxx diagnostics are syntax errors
_SYNTAX_CODE_RANGE = range(1000, 2000)


class ScriptEngine(ABC):
    """Type checker + bundler driven by the script bundler stage."""

    @abstractmethod
    async def check(self, graph: ModuleGraph, target: BuildTarget) -> None:
        """Type-check every typed-script module in the graph.

        Raises:
            TypeCheckError: On a static type violation.
            TranspileError: On a syntax error.
        """
        ...

    @abstractmethod
    async def bundle(self, graph: ModuleGraph, target: BuildTarget, out_dir: Path) -> BundleOutput:
        """Transpile and bundle the graph into ``out_dir``.

        Raises:
            ResolutionError: If the engine cannot resolve an import.
            TranspileError: On a syntax or transform error.
        """
        ...


def parse_tsc_output(output: str, root: Path) -> list[ScriptError]:
    """Turn tsc ``--pretty false`` diagnostics into typed errors."""
    errors: list[ScriptError] = []
    for line in output.splitlines():
        match = _TSC_DIAGNOSTIC.match(line.strip())
        if not match:
            continue
        file_path = Path(match.group("file"))
        if not file_path.is_absolute():
            file_path = root / file_path
        code = int(match.group("code"))
        kwargs = dict(
            message=match.group("message"),
            file_path=str(file_path),
            line=int(match.group("line")),
            column=int(match.group("col")),
        )
        if code in _SYNTAX_CODE_RANGE:
            errors.append(TranspileError(**kwargs))
        else:
            errors.append(TypeCheckError(code=f"TS{code}", **kwargs))
    return errors


def parse_esbuild_output(output: str, root: Path) -> list[ScriptError]:
    """Turn esbuild's error report into typed errors."""
    errors: list[ScriptError] = []
    pending: str | None = None
    for line in output.splitlines():
        message = _ESBUILD_ERROR.match(line)
        if message:
            if pending is not None:
                errors.append(TranspileError(message=pending))
            pending = message.group("message")
            continue
        location = _ESBUILD_LOCATION.match(line)
        if location and pending is not None:
            file_path = Path(location.group("file"))
            if not file_path.is_absolute():
                file_path = root / file_path
            kwargs = dict(
                message=pending,
                file_path=str(file_path),
                line=int(location.group("line")),
                column=int(location.group("col")),
            )
            if pending.startswith("Could not resolve"):
                errors.append(ResolutionError(**kwargs))
            else:
                errors.append(TranspileError(**kwargs))
            pending = None
    if pending is not None:
        errors.append(TranspileError(message=pending))
    return errors


def entry_display_name(entry: Path, root: Path) -> str:
    try:
        return entry.relative_to(root.resolve()).as_posix()
    except ValueError:
        return entry.name


def _raise_first(errors: list[ScriptError], fallback: ScriptError) -> None:
    if not errors:
        raise fallback
    first = errors[0]
    first.context.setdefault("error_count", len(errors))
    if len(errors) > 1:
        first.context.setdefault("more", [str(e) for e in errors[1:5]])
    raise first


def manifest_from_metafile(
    metafile: dict,
    out_dir: Path,
    cwd: Path,
    entry_name: str,
    mode: str,
) -> tuple[BundleManifest, list[Path]]:
    """Build the entry-to-output manifest from an esbuild metafile."""
    outputs: dict[str, list[str]] = {}
    chunks: list[str] = []
    files: list[Path] = []
    for output_path, info in sorted(metafile.get("outputs", {}).items()):
        relative = (cwd / output_path).resolve().relative_to(out_dir.resolve())
        files.append(relative)
        if relative.suffix == ".map":
            continue
        if info.get("entryPoint"):
            outputs.setdefault(entry_name, []).append(relative.as_posix())
        else:
            chunks.append(relative.as_posix())
    return BundleManifest(entry=entry_name, outputs=outputs, chunks=chunks, mode=mode), files


class EsbuildEngine(ScriptEngine):
    """``tsc --noEmit`` for checking, ``esbuild --bundle`` for emitting."""

    def __init__(self, tools: ToolsConfig | None = None) -> None:
        self.tools = tools or ToolsConfig()

    def _tsc_command(self, tsc: Path, graph: ModuleGraph, target: BuildTarget) -> list[str]:
        cmd = [str(tsc), "--noEmit", "--pretty", "false"]
        tsconfig = target.root / "tsconfig.json"
        if tsconfig.is_file():
            return cmd + ["-p", str(tsconfig)]
        return cmd + [
            "--strict",
            "--target", "es2020",
            "--module", "esnext",
            "--moduleResolution", "bundler",
            "--lib", "es2020,dom",
            "--jsx", "react-jsx",
            "--skipLibCheck",
            *[str(p) for p in graph.typed_files],
        ]

    async def check(self, graph: ModuleGraph, target: BuildTarget) -> None:
        if not graph.typed_files:
            logger.debug("No typed-script modules to check")
            return
        tsc = find_tool(
            "tsc",
            configured=self.tools.tsc_path,
            project_root=target.root,
            install_hint="npm install --save-dev typescript",
        )
        result = await run_command(
            self._tsc_command(tsc, graph, target),
            cwd=target.root,
            tool="tsc",
            timeout=self.tools.bundle_timeout_seconds,
        )
        if result.timed_out:
            raise TranspileError(message="tsc timed out", file_path=str(graph.entry))
        if result.ok:
            logger.info("Type check passed", modules=len(graph.typed_files))
            return
        errors = parse_tsc_output(result.stdout + "\n" + result.stderr, target.root)
        _raise_first(
            errors,
            TranspileError(
                message=f"tsc failed (exit {result.returncode}): {result.stderr or result.stdout}",
                file_path=str(graph.entry),
            ),
        )

    def _esbuild_command(self, esbuild: Path, graph: ModuleGraph, target: BuildTarget, out_dir: Path, metafile: Path) -> list[str]:
        entry_stem = Path(target.output_filename).stem
        cmd = [
            str(esbuild),
            str(graph.entry),
            "--bundle",
            "--format=esm",
            "--splitting",
            "--platform=browser",
            f"--outdir={out_dir}",
            f"--entry-names={entry_stem}",
            # chunks sit beside the wasm payload; the glue fetches it relative to itself
            "--chunk-names=[name]-[hash]",
            f"--resolve-extensions={','.join(target.resolve_extensions)}",
            "--loader:.wasm=file",
            f"--metafile={metafile}",
            "--log-level=error",
            "--color=false",
            f"--define:process.env.NODE_ENV=\"{target.mode}\"",
        ]
        if target.is_development:
            cmd.append("--sourcemap")
        else:
            cmd.append("--minify")
        return cmd

    async def bundle(self, graph: ModuleGraph, target: BuildTarget, out_dir: Path) -> BundleOutput:
        esbuild = find_tool(
            "esbuild",
            configured=self.tools.esbuild_path,
            project_root=target.root,
            install_hint="npm install --save-dev esbuild",
        )
        out_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="bundleforge-meta-") as tmp:
            metafile = Path(tmp) / "meta.json"
            result = await run_command(
                self._esbuild_command(esbuild, graph, target, out_dir, metafile),
                cwd=target.root,
                tool="esbuild",
                timeout=self.tools.bundle_timeout_seconds,
            )
            if result.timed_out:
                raise TranspileError(message="esbuild timed out", file_path=str(graph.entry))
            if not result.ok:
                errors = parse_esbuild_output(result.stderr, target.root)
                _raise_first(
                    errors,
                    TranspileError(
                        message=f"esbuild failed (exit {result.returncode}): {result.stderr}",
                        file_path=str(graph.entry),
                    ),
                )
            meta = json.loads(metafile.read_text(encoding="utf-8"))

        entry_name = entry_display_name(graph.entry, target.root)
        manifest, files = manifest_from_metafile(meta, out_dir, target.root, entry_name, target.mode)
        return BundleOutput(
            output_dir=out_dir,
            files=files,
            manifest=manifest,
            module_count=len(graph.nodes),
        )
