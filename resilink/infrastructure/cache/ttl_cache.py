"""In-memory TTL cache.

Entries expire after a per-entry time-to-live. Expired entries are evicted
lazily, on the read that finds them expired; nothing sweeps the cache in
the background.
"""

import logging
import time
from threading import Lock
from typing import Any, Callable, Dict, Optional

# Domain Layer Imports
from resilink.domain.exceptions import ConfigurationError
from resilink.domain.interfaces.cache import CacheService
from resilink.domain.models.common import CacheKey
from resilink.domain.models.resilience import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60  # 5 minutes

class TtlCache(CacheService):
    """Dictionary-backed cache with lazy expiry."""

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """Initializes the cache.

        Args:
            default_ttl: Time-to-live in seconds for entries stored without one.
            clock: Source of the current Unix time (injectable for tests).
        """
        if default_ttl <= 0:
            raise ConfigurationError("Cache TTL must be positive.")
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = Lock()
        logger.debug(f"TtlCache initialized: default_ttl={default_ttl}s")

    def get(self, key: CacheKey) -> Optional[Any]:
        """Returns the value for key, or None when missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() < entry.expires_at:
                logger.debug(f"Cache hit for key: {key}")
                return entry.data
            # Expired or missing: drop whatever is there
            self._entries.pop(key, None)
        logger.debug(f"Cache miss for key: {key}")
        return None

    def set(self, key: CacheKey, value: Any, ttl: Optional[float] = None) -> None:
        effective_ttl = self.default_ttl if ttl is None else ttl
        if effective_ttl <= 0:
            raise ConfigurationError(f"Cache TTL must be positive, got {effective_ttl}.")
        with self._lock:
            self._entries[key] = CacheEntry(data=value, expires_at=self._clock() + effective_ttl)
        logger.debug(f"Stored item in cache: key={key}, ttl={effective_ttl}s")

    def delete(self, key: CacheKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Cleared result cache.")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
