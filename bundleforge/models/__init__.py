"""
bundleforge data models.

Pydantic models handed between pipeline stages.
"""

from .artifacts import (
    AssetCopyReport,
    BundleManifest,
    BundleOutput,
    CompiledBinaryArtifact,
    CopiedFile,
)
from .graph import ImportEdge, ModuleGraph, ModuleKind, ModuleNode

__all__ = [
    "AssetCopyReport",
    "BundleManifest",
    "BundleOutput",
    "CompiledBinaryArtifact",
    "CopiedFile",
    "ImportEdge",
    "ModuleGraph",
    "ModuleKind",
    "ModuleNode",
]
