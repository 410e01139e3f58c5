"""Unit tests for the binary module compiler service."""

import pytest

from bundleforge.core.config import ToolsConfig
from bundleforge.core.exceptions import ToolchainError
from bundleforge.services.compiler import (
    WasmPackCompiler,
    collect_artifact,
    compute_crate_fingerprint,
    glue_module_name,
)
from bundleforge.services.compiler import service as compiler_service
from bundleforge.services.compiler.service import crate_source_files, read_crate_manifest


class TestFingerprint:
    """Tests for the crate fingerprint."""

    def test_deterministic(self, project):
        """Test an unchanged crate always yields the same fingerprint."""
        first = compute_crate_fingerprint(project, "development")
        second = compute_crate_fingerprint(project, "development")

        assert first == second
        assert len(first) == 64

    def test_changes_on_source_edit(self, project):
        """Test editing a Rust source file changes the fingerprint."""
        before = compute_crate_fingerprint(project, "development")
        (project / "src" / "lib.rs").write_text("pub fn sub(a: i32, b: i32) -> i32 { a - b }\n")

        assert compute_crate_fingerprint(project, "development") != before

    def test_changes_on_new_source_file(self, project):
        """Test adding a module file changes the fingerprint."""
        before = compute_crate_fingerprint(project, "development")
        (project / "src" / "util.rs").write_text("pub fn noop() {}\n")

        assert compute_crate_fingerprint(project, "development") != before

    def test_changes_with_mode(self, project):
        """Test the build mode is part of the fingerprint."""
        assert compute_crate_fingerprint(project, "development") != compute_crate_fingerprint(project, "production")

    def test_ignores_non_crate_files(self, project):
        """Test front-end and output files do not affect the fingerprint."""
        before = compute_crate_fingerprint(project, "production")
        (project / "js" / "index.ts").write_text("console.log(1);\n")
        (project / "pkg").mkdir()
        (project / "pkg" / "hello_wasm.js").write_text("export {};\n")

        assert compute_crate_fingerprint(project, "production") == before

    def test_source_files_sorted(self, project):
        """Test fingerprint inputs are listed in a stable order."""
        (project / "src" / "a.rs").write_text("")
        names = [p.relative_to(project).as_posix() for p in crate_source_files(project)]

        assert names == sorted(names)
        assert "Cargo.toml" in names
        assert "src/lib.rs" in names

    def test_skips_file_deleted_while_hashing(self, project, monkeypatch):
        """Test an editor temp file vanishing mid-scan does not abort the fingerprint."""
        expected = compute_crate_fingerprint(project, "development")
        listed = crate_source_files(project) + [project / "src" / "4913"]
        monkeypatch.setattr(compiler_service, "crate_source_files", lambda crate_dir: listed)

        assert compute_crate_fingerprint(project, "development") == expected

    def test_unreadable_file_is_toolchain_error(self, project, monkeypatch):
        """Test read failures other than a missing file surface as ToolchainError."""
        listed = [project / "src"]
        monkeypatch.setattr(compiler_service, "crate_source_files", lambda crate_dir: listed)

        with pytest.raises(ToolchainError):
            compute_crate_fingerprint(project, "development")


class TestCrateManifest:
    """Tests for Cargo.toml handling."""

    def test_reads_package_name(self, project):
        """Test the manifest is parsed."""
        assert read_crate_manifest(project)["package"]["name"] == "hello-wasm"

    def test_malformed_manifest(self, project):
        """Test a malformed manifest is a toolchain error."""
        (project / "Cargo.toml").write_text("[package\nname=")

        with pytest.raises(ToolchainError):
            read_crate_manifest(project)

    def test_glue_module_name(self):
        """Test hyphens become underscores."""
        assert glue_module_name("hello-wasm") == "hello_wasm"


@pytest.mark.asyncio
class TestWasmPackCompiler:
    """Tests for the wasm-pack driver that do not need the toolchain."""

    async def test_unsupported_target(self, project):
        """Test a crate that is not a cdylib cannot be compiled."""
        (project / "Cargo.toml").write_text('[package]\nname = "hello-wasm"\nversion = "0.1.0"\n')
        compiler = WasmPackCompiler(ToolsConfig())

        with pytest.raises(ToolchainError) as exc_info:
            await compiler.compile(project, "production", project / "pkg")

        assert "Unsupported target" in exc_info.value.message

    async def test_missing_toolchain(self, project, temp_dir):
        """Test a missing wasm-pack binary is reported as a toolchain error."""
        compiler = WasmPackCompiler(ToolsConfig(wasm_pack_path=temp_dir / "no-such-wasm-pack"))

        with pytest.raises(ToolchainError) as exc_info:
            await compiler.compile(project, "production", project / "pkg")

        assert "Missing toolchain" in exc_info.value.message
        assert not (project / "pkg").exists()

    async def test_staging_cannot_be_crate(self, project):
        """Test the staging directory may not overwrite the crate."""
        with pytest.raises(ToolchainError):
            WasmPackCompiler._prepare_staging(project, project)


class TestFailureSummary:
    """Tests for condensing rustc output."""

    def test_extracts_error_lines(self):
        """Test rustc error headlines are kept."""
        stderr = (
            "   Compiling hello-wasm v0.1.0\n"
            "error[E0425]: cannot find value `b` in this scope\n"
            " --> src/lib.rs:5:9\n"
            "error: aborting due to previous error\n"
        )

        summary = WasmPackCompiler._summarize_failure(stderr)

        assert summary == "cannot find value `b` in this scope; aborting due to previous error"

    def test_falls_back_to_tail(self):
        """Test output without error lines keeps the last lines."""
        assert WasmPackCompiler._summarize_failure("a\nb\n") == "a | b"
        assert WasmPackCompiler._summarize_failure("") == "wasm-pack exited with an error"


class TestCollectArtifact:
    """Tests for reading the toolchain's output."""

    def test_collects_files(self, temp_dir):
        """Test payload, glue module and typings are collected."""
        (temp_dir / "hello_wasm_bg.wasm").write_bytes(b"\0asm")
        (temp_dir / "hello_wasm.js").write_text("export {};")
        (temp_dir / "hello_wasm.d.ts").write_text("export {};")

        artifact = collect_artifact("hello-wasm", "production", "f" * 64, temp_dir)

        assert artifact.binary_path == temp_dir / "hello_wasm_bg.wasm"
        assert artifact.glue_module == temp_dir / "hello_wasm.js"
        assert temp_dir / "hello_wasm.d.ts" in artifact.glue_files
        assert artifact.binary_hash
        assert artifact.files_present()

    def test_missing_payload(self, temp_dir):
        """Test missing outputs are a toolchain error."""
        (temp_dir / "hello_wasm.js").write_text("export {};")

        with pytest.raises(ToolchainError) as exc_info:
            collect_artifact("hello-wasm", "production", "f" * 64, temp_dir)

        assert "hello_wasm_bg.wasm" in exc_info.value.message
