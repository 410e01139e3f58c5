"""Services package for bundleforge."""

from .assets import AssetCopier
from .bundler import EsbuildEngine, ScriptBundler, ScriptEngine
from .compiler import BinaryModuleCompiler, WasmPackCompiler

__all__ = [
    "AssetCopier",
    "EsbuildEngine",
    "ScriptBundler",
    "ScriptEngine",
    "BinaryModuleCompiler",
    "WasmPackCompiler",
]
