"""
Build artifact models.

These models describe what each stage hands to the next: the compiled
WebAssembly module with its glue bindings, the emitted script bundle, and the
report of copied static assets.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from ..core.types import Fingerprint, utcnow


class CompiledBinaryArtifact(BaseModel):
    """Output of the binary module compiler.

    The fingerprint is derived from the crate sources and the build mode only,
    so it changes if and only if the crate source (or mode) changed.
    """

    crate_name: str = Field(description="Crate name from Cargo.toml")
    mode: str = Field(description="Build mode the artifact was compiled for")
    fingerprint: Fingerprint = Field(description="Content fingerprint of the crate sources")
    staging_dir: Path = Field(description="Directory the toolchain wrote into")
    binary_path: Path = Field(description="The .wasm payload")
    glue_files: list[Path] = Field(default_factory=list, description="Typed glue binding files")
    binary_hash: Fingerprint = Field(default="", description="SHA-256 of the .wasm payload")
    compiled_at: datetime = Field(default_factory=utcnow)

    @property
    def glue_module(self) -> Path | None:
        """The JavaScript glue module the front-end imports."""
        for path in self.glue_files:
            if path.suffix == ".js":
                return path
        return None

    @property
    def all_files(self) -> list[Path]:
        return [self.binary_path, *self.glue_files]

    def files_present(self) -> bool:
        """Whether every staged file still exists on disk."""
        return all(path.is_file() for path in self.all_files)


class BundleManifest(BaseModel):
    """Entry-to-output mapping written next to the bundle as manifest.json."""

    entry: str = Field(description="Entry module, relative to the project root")
    outputs: dict[str, list[str]] = Field(
        default_factory=dict, description="Entry name -> emitted files (relative to output dir)"
    )
    chunks: list[str] = Field(default_factory=list, description="Shared chunks")
    wasm: str | None = Field(default=None, description="Binary payload file name")
    glue: str | None = Field(default=None, description="Glue module file name")
    binary_fingerprint: Fingerprint | None = Field(default=None)
    mode: str = Field(default="production")


class BundleOutput(BaseModel):
    """Result of the script bundler stage."""

    output_dir: Path = Field(description="Directory holding the emitted scripts")
    files: list[Path] = Field(default_factory=list, description="Emitted files, relative")
    manifest: BundleManifest
    module_count: int = Field(default=0, description="Nodes in the resolved module graph")
    warnings: list[str] = Field(default_factory=list)


class CopiedFile(BaseModel):
    """One static asset copied into the output directory."""

    relative_path: Path
    source: Path
    size_bytes: int = 0


class AssetCopyReport(BaseModel):
    """Result of the asset copier stage."""

    files: list[CopiedFile] = Field(default_factory=list)
    source_dirs: list[Path] = Field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(f.size_bytes for f in self.files)

    @property
    def relative_paths(self) -> list[Path]:
        return [f.relative_path for f in self.files]
