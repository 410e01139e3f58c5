"""Script bundler service."""

from .engine import EsbuildEngine, ScriptEngine, parse_esbuild_output, parse_tsc_output
from .resolver import ModuleResolver, ResolutionPolicy, scan_imports
from .service import ScriptBundler, policy_for

__all__ = [
    "EsbuildEngine",
    "ScriptEngine",
    "parse_esbuild_output",
    "parse_tsc_output",
    "ModuleResolver",
    "ResolutionPolicy",
    "scan_imports",
    "ScriptBundler",
    "policy_for",
]
