"""State types owned by the resilience components."""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from resilink.domain.models.common import CacheKey

# A zero-argument coroutine function, e.g. ``lambda: client.fetch()``
AsyncOperation = Callable[[], Awaitable[Any]]


class CircuitState(str, enum.Enum):
    """States of a circuit breaker."""
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class DegradationLevel(enum.IntEnum):
    """Ordered degradation levels; higher means less functionality."""
    NORMAL = 0
    REDUCED = 1
    MINIMAL = 2
    EMERGENCY = 3


@dataclass
class Quota:
    """Daily usage counter for one metered resource."""
    limit: int
    reset_at: datetime  # next local midnight
    used: int = 0


@dataclass
class CacheEntry:
    """Internal representation of a cache entry with expiry."""
    data: Any
    expires_at: float  # Unix timestamp when the entry expires


@dataclass
class OperationSet:
    """Variants of one upstream operation, picked by degradation level.

    ``full`` is mandatory. ``reduced`` and ``minimal`` are optional cheaper
    variants; when missing the controller falls back to ``full`` (reduced)
    or to the cache (minimal).
    """
    cache_key: CacheKey
    full: AsyncOperation
    reduced: Optional[AsyncOperation] = None
    minimal: Optional[AsyncOperation] = None
