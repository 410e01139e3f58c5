"""
Custom exception hierarchy for bundleforge.

All exceptions inherit from BundleForgeError so the CLI and the development
server can report any stage failure the same way. Each exception type carries
context for debugging and logging.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class BundleForgeError(Exception):
    """Base exception for all bundleforge errors."""

    message: str
    context: dict[str, Any] = field(default_factory=dict)
    cause: Exception | None = None

    def __str__(self) -> str:
        ctx = f" | context: {self.context}" if self.context else ""
        cause = f" | caused by: {self.cause}" if self.cause else ""
        return f"{self.message}{ctx}{cause}"


@dataclass
class ConfigError(BundleForgeError):
    """Raised when the build target is invalid or its inputs are missing.

    No stage runs when this is raised.
    """

    option: str | None = None
    path: str | None = None

    def __str__(self) -> str:
        base = super().__str__()
        if self.option:
            return f"Invalid configuration for '{self.option}': {base}"
        return f"Invalid configuration: {base}"


@dataclass
class ToolNotFoundError(BundleForgeError):
    """Raised when a required external tool is not available."""

    tool_name: str = ""
    expected_path: str = ""
    install_hint: str = ""

    def __str__(self) -> str:
        hint = f" Install hint: {self.install_hint}" if self.install_hint else ""
        return f"Tool '{self.tool_name}' not found at '{self.expected_path}'.{hint}"


@dataclass
class ToolchainError(BundleForgeError):
    """Raised when the crate could not be cross-compiled.

    Covers a missing toolchain, a compile error in the crate and an
    unsupported target.
    """

    crate_dir: str = ""
    returncode: int | None = None
    stderr: str = ""

    def __str__(self) -> str:
        base = super().__str__()
        code = f" (exit {self.returncode})" if self.returncode is not None else ""
        return f"[toolchain{code}] {self.crate_dir}: {base}"


@dataclass
class ScriptError(BundleForgeError):
    """Base for script bundling failures. Always carries a source location."""

    file_path: str = ""
    line: int = 0
    column: int = 0

    kind: str = "script"

    @property
    def location(self) -> str:
        if not self.file_path:
            return "<unknown>"
        if self.line:
            return f"{self.file_path}:{self.line}:{self.column}"
        return self.file_path

    def __str__(self) -> str:
        return f"[{self.kind}] {self.location}: {super().__str__()}"


@dataclass
class ResolutionError(ScriptError):
    """Raised when an import cannot be resolved to a file."""

    specifier: str = ""
    kind: str = "resolve"


@dataclass
class TypeCheckError(ScriptError):
    """Raised on a static type violation in a typed-script source file."""

    code: str = ""
    kind: str = "typecheck"


@dataclass
class TranspileError(ScriptError):
    """Raised on a syntax error or any other transpilation failure."""

    kind: str = "transpile"


@dataclass
class AssetIOError(BundleForgeError):
    """Raised when a static asset cannot be read or written."""

    source: str = ""
    destination: str = ""

    def __str__(self) -> str:
        base = super().__str__()
        target = self.destination or self.source
        return f"[assets] {target}: {base}"


@dataclass
class PipelineError(BundleForgeError):
    """Raised when a build cycle fails. Wraps the stage error verbatim."""

    stage: str = ""
    cycle_id: str = ""

    def __str__(self) -> str:
        inner = str(self.cause) if self.cause else self.message
        return f"Build failed at stage '{self.stage}' (cycle: {self.cycle_id}): {inner}"
