"""Interface for result caching.

Defines the contract for storing and retrieving upstream results with a
time-to-live, used by graceful degradation to serve stale-but-valid data.
"""

import abc
from typing import Any, Optional

# Import relevant domain models
from ..models.common import CacheKey

class CacheService(abc.ABC):
    """Abstract Base Class for caching operations."""

    @abc.abstractmethod
    def get(self, key: CacheKey) -> Optional[Any]:
        """Retrieves an item from the cache.

        Args:
            key: The cache key to retrieve.

        Returns:
            The cached item if found and not expired, otherwise None.
        """
        pass

    @abc.abstractmethod
    def set(self, key: CacheKey, value: Any, ttl: Optional[float] = None) -> None:
        """Stores an item in the cache.

        Args:
            key: The cache key to store the item under.
            value: The item to store.
            ttl: Time-to-live in seconds (uses the cache default if None).
        """
        pass

    @abc.abstractmethod
    def delete(self, key: CacheKey) -> None:
        """Deletes an item from the cache."""
        pass

    @abc.abstractmethod
    def clear(self) -> None:
        """Clears all items from the cache."""
        pass

    @abc.abstractmethod
    def __len__(self) -> int:
        """Number of stored entries, expired ones included until evicted."""
        pass
