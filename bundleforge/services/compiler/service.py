"""
Binary Module Compiler Service.

Cross-compiles a Rust crate into a WebAssembly module plus the JavaScript/
TypeScript glue bindings the front-end imports. The toolchain is driven as an
opaque process behind the narrow ``BinaryModuleCompiler`` interface so the
coordinator can be exercised with a fake.
"""

from __future__ import annotations

import hashlib
import re
import shutil
import tomllib
from abc import ABC, abstractmethod
from pathlib import Path

from ...core.config import ToolsConfig
from ...core.exceptions import ToolchainError, ToolNotFoundError
from ...core.logging import get_logger
from ...core.types import Fingerprint
from ...models.artifacts import CompiledBinaryArtifact
from ..process import find_tool, run_command

logger = get_logger(__name__)

# Files outside src/ that change what the crate compiles to
CRATE_MANIFEST_FILES = ("Cargo.toml", "Cargo.lock", "build.rs")
CRATE_SOURCE_DIRS = ("src",)

_RUST_ERROR = re.compile(r"^error(\[E\d+\])?: (?P<message>.+)$")


def crate_source_files(crate_dir: Path) -> list[Path]:
    """Every file whose contents feed the crate fingerprint, sorted."""
    files = [crate_dir / name for name in CRATE_MANIFEST_FILES if (crate_dir / name).is_file()]
    for dirname in CRATE_SOURCE_DIRS:
        source_root = crate_dir / dirname
        if source_root.is_dir():
            files.extend(p for p in source_root.rglob("*") if p.is_file())
    return sorted(files, key=lambda p: p.relative_to(crate_dir).as_posix())


def compute_crate_fingerprint(crate_dir: Path, mode: str) -> Fingerprint:
    """SHA-256 over the crate's relative paths, file contents and the build mode.

    Changes if and only if a crate source file (or the mode) changed. Files
    that disappear while hashing (editor swap and backup files) are skipped.

    Raises:
        ToolchainError: A crate file exists but cannot be read.
    """
    digest = hashlib.sha256()
    digest.update(f"mode={mode}\0".encode())
    for path in crate_source_files(crate_dir):
        try:
            content = path.read_bytes()
        except FileNotFoundError:
            logger.debug("Crate file vanished while fingerprinting", path=str(path))
            continue
        except OSError as e:
            raise ToolchainError(
                message=f"Cannot read crate file {path}: {e.strerror or e}",
                crate_dir=str(crate_dir),
                cause=e,
            ) from e
        digest.update(path.relative_to(crate_dir).as_posix().encode("utf-8"))
        digest.update(b"\0")
        digest.update(content)
        digest.update(b"\0")
    return digest.hexdigest()


def read_crate_manifest(crate_dir: Path) -> dict:
    """Parse Cargo.toml.

    Raises:
        ToolchainError: If the manifest is missing or malformed.
    """
    manifest = crate_dir / "Cargo.toml"
    try:
        with open(manifest, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise ToolchainError(
            message="Cargo.toml not found",
            crate_dir=str(crate_dir),
            cause=e,
        ) from e
    except tomllib.TOMLDecodeError as e:
        raise ToolchainError(
            message=f"Malformed Cargo.toml: {e}",
            crate_dir=str(crate_dir),
            cause=e,
        ) from e


def glue_module_name(crate_name: str) -> str:
    """Module name the toolchain derives from a crate name."""
    return crate_name.replace("-", "_")


class BinaryModuleCompiler(ABC):
    """Interface for turning a crate into a CompiledBinaryArtifact."""

    @abstractmethod
    async def compile(self, crate_dir: Path, mode: str, staging_dir: Path) -> CompiledBinaryArtifact:
        """Compile the crate into the staging directory.

        Args:
            crate_dir: Directory holding Cargo.toml.
            mode: ``development`` or ``production``.
            staging_dir: Directory the artifact files are written into.

        Returns:
            The compiled artifact, with its fingerprint recorded.

        Raises:
            ToolchainError: Missing toolchain, crate compile error or
                unsupported target.
        """
        ...

    def fingerprint(self, crate_dir: Path, mode: str) -> Fingerprint:
        return compute_crate_fingerprint(crate_dir, mode)


class WasmPackCompiler(BinaryModuleCompiler):
    """Compiles crates with ``wasm-pack build --target web``.

    The ``web`` target emits an ES module that fetches the ``_bg.wasm`` file
    relative to itself, so glue and payload must end up side by side in the
    output directory.
    """

    def __init__(self, tools: ToolsConfig | None = None) -> None:
        self.tools = tools or ToolsConfig()

    def _check_target(self, crate_dir: Path, manifest: dict) -> str:
        package = manifest.get("package") or {}
        name = package.get("name")
        if not name:
            raise ToolchainError(
                message="Cargo.toml has no [package] name",
                crate_dir=str(crate_dir),
            )
        crate_types = (manifest.get("lib") or {}).get("crate-type", [])
        if "cdylib" not in crate_types:
            raise ToolchainError(
                message=(
                    "Unsupported target: the crate must declare "
                    "crate-type = [\"cdylib\"] under [lib] to build a WebAssembly module"
                ),
                crate_dir=str(crate_dir),
            )
        return name

    @staticmethod
    def _prepare_staging(crate_dir: Path, staging_dir: Path) -> None:
        crate_dir = crate_dir.resolve()
        staging_dir = staging_dir.resolve()
        if staging_dir == crate_dir or staging_dir in crate_dir.parents:
            raise ToolchainError(
                message=f"Staging directory {staging_dir} would overwrite the crate",
                crate_dir=str(crate_dir),
            )
        if staging_dir.exists():
            shutil.rmtree(staging_dir)
        staging_dir.mkdir(parents=True)

    @staticmethod
    def _summarize_failure(stderr: str) -> str:
        errors = []
        for line in stderr.splitlines():
            match = _RUST_ERROR.match(line.strip())
            if match:
                errors.append(match.group("message"))
        if errors:
            return "; ".join(errors[:5])
        tail = [line for line in stderr.splitlines() if line.strip()][-3:]
        return " | ".join(tail) or "wasm-pack exited with an error"

    async def compile(self, crate_dir: Path, mode: str, staging_dir: Path) -> CompiledBinaryArtifact:
        manifest = read_crate_manifest(crate_dir)
        crate_name = self._check_target(crate_dir, manifest)
        out_name = glue_module_name(crate_name)

        try:
            wasm_pack = find_tool(
                "wasm-pack",
                configured=self.tools.wasm_pack_path,
                install_hint="cargo install wasm-pack",
            )
        except ToolNotFoundError as e:
            raise ToolchainError(
                message="Missing toolchain: wasm-pack is not installed",
                crate_dir=str(crate_dir),
                cause=e,
            ) from e

        fingerprint = self.fingerprint(crate_dir, mode)
        self._prepare_staging(crate_dir, staging_dir)

        profile = "--dev" if mode == "development" else "--release"
        cmd = [
            str(wasm_pack),
            "build",
            str(crate_dir),
            "--target",
            "web",
            "--out-dir",
            str(staging_dir.resolve()),
            "--out-name",
            out_name,
            "--no-pack",
            profile,
        ]
        logger.info("Compiling crate", crate=crate_name, mode=mode, staging=str(staging_dir))
        result = await run_command(
            cmd,
            cwd=crate_dir,
            tool="wasm-pack",
            timeout=self.tools.compile_timeout_seconds,
        )

        if result.timed_out:
            raise ToolchainError(
                message=f"wasm-pack timed out after {self.tools.compile_timeout_seconds}s",
                crate_dir=str(crate_dir),
                stderr=result.stderr,
            )
        if not result.ok:
            raise ToolchainError(
                message=self._summarize_failure(result.stderr),
                crate_dir=str(crate_dir),
                returncode=result.returncode,
                stderr=result.stderr,
            )

        return collect_artifact(crate_name, mode, fingerprint, staging_dir)


def collect_artifact(
    crate_name: str,
    mode: str,
    fingerprint: Fingerprint,
    staging_dir: Path,
) -> CompiledBinaryArtifact:
    """Build the artifact record from the files a toolchain left in staging.

    Raises:
        ToolchainError: If the expected payload or glue module is missing.
    """
    out_name = glue_module_name(crate_name)
    binary_path = staging_dir / f"{out_name}_bg.wasm"
    glue_js = staging_dir / f"{out_name}.js"
    missing = [p.name for p in (binary_path, glue_js) if not p.is_file()]
    if missing:
        raise ToolchainError(
            message=f"Toolchain did not produce {', '.join(missing)}",
            crate_dir=str(staging_dir),
        )

    glue_files = [glue_js]
    for candidate in (f"{out_name}.d.ts", f"{out_name}_bg.wasm.d.ts", f"{out_name}_bg.js"):
        if (staging_dir / candidate).is_file():
            glue_files.append(staging_dir / candidate)

    artifact = CompiledBinaryArtifact(
        crate_name=crate_name,
        mode=mode,
        fingerprint=fingerprint,
        staging_dir=staging_dir,
        binary_path=binary_path,
        glue_files=glue_files,
        binary_hash=hashlib.sha256(binary_path.read_bytes()).hexdigest(),
    )
    logger.info(
        "Crate compiled",
        crate=crate_name,
        fingerprint=fingerprint[:12],
        wasm_bytes=binary_path.stat().st_size,
    )
    return artifact
