"""Unit tests for the exception hierarchy."""

from bundleforge.core.exceptions import (
    AssetIOError,
    BundleForgeError,
    ConfigError,
    PipelineError,
    ResolutionError,
    ScriptError,
    ToolchainError,
    ToolNotFoundError,
    TranspileError,
    TypeCheckError,
)


class TestExceptions:
    """Tests for error formatting and hierarchy."""

    def test_hierarchy(self):
        """Test every error shares the common base."""
        for cls in (ConfigError, ToolchainError, AssetIOError, ToolNotFoundError, PipelineError):
            assert issubclass(cls, BundleForgeError)
        for cls in (ResolutionError, TypeCheckError, TranspileError):
            assert issubclass(cls, ScriptError)

    def test_config_error_names_option(self):
        """Test ConfigError mentions the option."""
        error = ConfigError(message="Entry module not found", option="entry")

        assert "'entry'" in str(error)
        assert "Entry module not found" in str(error)

    def test_toolchain_error(self):
        """Test ToolchainError includes the exit code and crate."""
        error = ToolchainError(message="mismatched types", crate_dir="/app", returncode=101)

        assert str(error) == "[toolchain (exit 101)] /app: mismatched types"

    def test_script_error_location(self):
        """Test script errors carry file, line and column."""
        error = TypeCheckError(
            message="Type 'string' is not assignable to type 'number'.",
            file_path="js/index.ts",
            line=4,
            column=7,
            code="TS2322",
        )

        assert error.location == "js/index.ts:4:7"
        assert str(error).startswith("[typecheck] js/index.ts:4:7:")

    def test_script_error_without_line(self):
        """Test a location without a line falls back to the file."""
        assert TranspileError(message="x", file_path="a.ts").location == "a.ts"
        assert TranspileError(message="x").location == "<unknown>"

    def test_resolution_error(self):
        """Test ResolutionError keeps the specifier."""
        error = ResolutionError(message="Cannot resolve", file_path="a.ts", line=1, column=20, specifier="./b")

        assert error.specifier == "./b"
        assert error.kind == "resolve"

    def test_pipeline_error_wraps_cause(self):
        """Test PipelineError reports the stage and the wrapped error verbatim."""
        cause = AssetIOError(message="Copy failed", source="static/a.png")
        error = PipelineError(message="failed", stage="copy", cycle_id="abc123", cause=cause)

        assert "stage 'copy'" in str(error)
        assert "abc123" in str(error)
        assert str(cause) in str(error)

    def test_tool_not_found_hint(self):
        """Test the install hint is shown."""
        error = ToolNotFoundError(message="missing", tool_name="esbuild", install_hint="npm i -D esbuild")

        assert "esbuild" in str(error)
        assert "npm i -D esbuild" in str(error)

    def test_context_in_message(self):
        """Test context is appended to the base message."""
        error = BundleForgeError(message="boom", context={"stage": "bundle"})

        assert str(error) == "boom | context: {'stage': 'bundle'}"
