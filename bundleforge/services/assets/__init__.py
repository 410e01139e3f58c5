"""Static asset copier service."""

from .service import AssetCopier

__all__ = ["AssetCopier"]
