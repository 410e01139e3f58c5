"""Binary module compiler service."""

from .service import (
    BinaryModuleCompiler,
    WasmPackCompiler,
    collect_artifact,
    compute_crate_fingerprint,
    glue_module_name,
)

__all__ = [
    "BinaryModuleCompiler",
    "WasmPackCompiler",
    "collect_artifact",
    "compute_crate_fingerprint",
    "glue_module_name",
]
