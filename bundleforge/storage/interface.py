"""
Cache storage interface.

Defines the abstract interface for persisting build records between
development sessions, keeping the coordinator independent of where they live.
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from typing import TypeVar

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


class CacheBackend(ABC):
    """Abstract key/value store for pydantic records."""

    @abstractmethod
    async def store_model(self, key: str, model: BaseModel) -> str:
        """Store a Pydantic model as JSON.

        Args:
            key: Storage key/path.
            model: Pydantic model instance to store.

        Returns:
            The final storage key.
        """
        ...

    @abstractmethod
    async def load_model(self, key: str, model_type: type[T]) -> T | None:
        """Load a Pydantic model, or None if the key is absent or unreadable.

        Args:
            key: Storage key/path to load from.
            model_type: The Pydantic model class to deserialize into.
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if something was deleted."""
        ...

    @staticmethod
    def compute_hash(data: bytes) -> str:
        """Compute SHA-256 hash of data.

        Args:
            data: Raw bytes to hash.

        Returns:
            Hexadecimal string representation of the SHA-256 hash.
        """
        return hashlib.sha256(data).hexdigest()
