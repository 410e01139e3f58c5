"""Core infrastructure components for bundleforge."""

from .config import BuildTarget, Config, get_config, load_build_target
from .exceptions import (
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
from .logging import get_logger, setup_logging
from .types import BuildCycle, CycleState, Fingerprint, Stage, StageResult, StageStatus

__all__ = [
    "BuildTarget",
    "Config",
    "get_config",
    "load_build_target",
    "AssetIOError",
    "BundleForgeError",
    "ConfigError",
    "PipelineError",
    "ResolutionError",
    "ScriptError",
    "ToolchainError",
    "ToolNotFoundError",
    "TranspileError",
    "TypeCheckError",
    "get_logger",
    "setup_logging",
    "BuildCycle",
    "CycleState",
    "Fingerprint",
    "Stage",
    "StageResult",
    "StageStatus",
]
