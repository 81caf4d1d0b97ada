"""Defines common Value Objects used across the resilience layer.

These objects represent simple values or snapshots like resource names,
cache keys and the health-check structures returned by each component.
"""

from typing import NewType, Any, Dict, TypedDict

# === Core Value Objects ===

ResourceName = NewType("ResourceName", str)    # Metered resource, e.g. 'd1_reads'
CacheKey = NewType("CacheKey", str)            # Unique key for a cached upstream result
Endpoint = NewType("Endpoint", str)            # Upstream path, e.g. '/api/users/query'

# === Query Criteria ===
Criteria = NewType("Criteria", Dict[str, Any])  # Filtering criteria passed by callers

# --- Observability Snapshots ---
class BreakerStats(TypedDict):
    """Snapshot returned by CircuitBreaker.get_stats()."""
    name: str
    state: str
    failure_count: int
    total_requests: int
    total_failures: int
    total_fallbacks: int
    success_rate: float
    fallback_rate: float

class QuotaUsage(TypedDict):
    """Per-resource entry returned by QuotaLimiter.get_usage_stats()."""
    used: int
    limit: int
    percentage: float
    remaining: int
    reset_in_ms: int

class DegradationStatus(TypedDict):
    """Snapshot returned by DegradationController.get_status()."""
    level: str
    cache_size: int
    description: str

class HealthSnapshot(TypedDict):
    """Combined snapshot suitable for a health-check endpoint."""
    breaker: BreakerStats
    quotas: Dict[str, QuotaUsage]
    degradation: DegradationStatus
