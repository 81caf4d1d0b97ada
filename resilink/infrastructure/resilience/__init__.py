"""API Resilience Implementations.

Contains the circuit breaker, the daily quota limiter, the graceful
degradation controller and the exponential-backoff retry helper.
Bounded Context: API Resilience
"""

from resilink.infrastructure.resilience.backoff import BackoffPolicy, compute_backoff_delay, retry_with_backoff
from resilink.infrastructure.resilience.circuit_breaker import CircuitBreaker
from resilink.infrastructure.resilience.degradation import DegradationController
from resilink.infrastructure.resilience.quota_limiter import DEFAULT_QUOTA_LIMITS, QuotaLimiter

__all__ = [
    'BackoffPolicy',
    'CircuitBreaker',
    'DEFAULT_QUOTA_LIMITS',
    'DegradationController',
    'QuotaLimiter',
    'compute_backoff_delay',
    'retry_with_backoff',
]
