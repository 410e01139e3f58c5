"""Cache storage backends."""

from .interface import CacheBackend
from .local import LocalCacheBackend

__all__ = ["CacheBackend", "LocalCacheBackend"]
