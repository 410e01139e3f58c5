"""
Local filesystem cache backend.

Records are JSON files under the project's cache directory. Writes go to a
temporary sibling and are renamed into place so a crashed session never
leaves a half-written record behind.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TypeVar

import aiofiles
import aiofiles.os
from pydantic import BaseModel, ValidationError

from ..core.logging import get_logger
from .interface import CacheBackend

T = TypeVar("T", bound=BaseModel)

logger = get_logger(__name__)


class LocalCacheBackend(CacheBackend):
    """Local filesystem cache backend."""

    def __init__(self, base_path: Path) -> None:
        """Initialize local storage.

        Args:
            base_path: Base directory for all cache records
        """
        self.base_path = base_path.resolve()
        self._suffix = ".json"

    def _get_full_path(self, key: str) -> Path:
        """Get full filesystem path for a key.

        Normalizes the key so the resulting path stays within the base
        directory.
        """
        clean_key = key.lstrip("/\\").replace("..", "").replace(":", "")
        full_path = (self.base_path / f"{clean_key}{self._suffix}").resolve()
        try:
            full_path.relative_to(self.base_path)
        except ValueError:
            flat = clean_key.replace("/", "_").replace("\\", "_")
            full_path = self.base_path / f"{flat}{self._suffix}"
        return full_path

    async def store_model(self, key: str, model: BaseModel) -> str:
        full_path = self._get_full_path(key)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = full_path.with_name(f".{full_path.name}.{os.getpid()}.tmp")

        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(model.model_dump_json(indent=2))
        await aiofiles.os.replace(tmp_path, full_path)
        return key

    async def load_model(self, key: str, model_type: type[T]) -> T | None:
        full_path = self._get_full_path(key)
        if not full_path.exists():
            return None

        async with aiofiles.open(full_path, "r", encoding="utf-8") as f:
            content = await f.read()
        try:
            return model_type.model_validate_json(content)
        except ValidationError:
            logger.warning("Ignoring unreadable cache record", key=key, path=str(full_path))
            return None

    async def delete(self, key: str) -> bool:
        full_path = self._get_full_path(key)
        if full_path.exists():
            await aiofiles.os.remove(full_path)
            return True
        return False
