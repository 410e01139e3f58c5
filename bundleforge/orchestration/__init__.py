"""Orchestration module for bundleforge."""

from .cache import ArtifactCache
from .flows import build_flow, make_coordinator, run_build
from .pipeline import BuildResult, BuildScope, PipelineCoordinator

__all__ = [
    "ArtifactCache",
    "build_flow",
    "make_coordinator",
    "run_build",
    "BuildResult",
    "BuildScope",
    "PipelineCoordinator",
]
