"""
Compiled artifact cache.

Remembers the last successful compile per build target, keyed by the crate
fingerprint. Only development builds consult it; a hit requires the same
fingerprint and staged files that are still present and unmodified.
"""

from __future__ import annotations

import hashlib

from ..core.config import BuildTarget
from ..core.logging import get_logger
from ..core.types import Fingerprint
from ..models.artifacts import CompiledBinaryArtifact
from ..storage import CacheBackend

logger = get_logger(__name__)


def cache_key(target: BuildTarget) -> str:
    """Stable key for a target's crate + staging location."""
    raw = f"{target.crate_path}\0{target.staging_path}\0{target.mode}".encode("utf-8")
    return f"artifacts/{hashlib.sha1(raw).hexdigest()[:16]}"


class ArtifactCache:
    """In-memory artifact cache with optional persistence."""

    def __init__(self, backend: CacheBackend | None = None) -> None:
        self.backend = backend
        self._memory: dict[str, CompiledBinaryArtifact] = {}

    async def lookup(self, target: BuildTarget, fingerprint: Fingerprint) -> CompiledBinaryArtifact | None:
        """Return the cached artifact if it is still valid for ``fingerprint``."""
        key = cache_key(target)
        artifact = self._memory.get(key)
        if artifact is None and self.backend is not None:
            artifact = await self.backend.load_model(key, CompiledBinaryArtifact)
        if artifact is None:
            return None

        if artifact.fingerprint != fingerprint:
            logger.debug("Artifact cache miss: fingerprint changed", key=key)
            return None
        if not artifact.files_present():
            logger.debug("Artifact cache miss: staged files missing", key=key)
            return None
        if artifact.binary_hash and CacheBackend.compute_hash(artifact.binary_path.read_bytes()) != artifact.binary_hash:
            logger.debug("Artifact cache miss: staged binary modified", key=key)
            return None

        self._memory[key] = artifact
        return artifact

    async def record(self, target: BuildTarget, artifact: CompiledBinaryArtifact) -> None:
        key = cache_key(target)
        self._memory[key] = artifact
        if self.backend is not None:
            await self.backend.store_model(key, artifact)

    async def invalidate(self, target: BuildTarget) -> None:
        key = cache_key(target)
        self._memory.pop(key, None)
        if self.backend is not None:
            await self.backend.delete(key)
