"""Daily quota tracking for metered upstream resources.

Free-tier upstreams enforce hard per-day ceilings (database reads, writes,
worker invocations). The limiter counts usage per named resource, warns as
usage approaches the ceiling and refuses calls once it reaches the critical
threshold, well before the upstream starts rejecting them. Counters reset
at local midnight, checked lazily on each call.
"""

import logging
import math
from datetime import datetime, time as dt_time, timedelta
from threading import Lock
from typing import Callable, Dict, Iterable, List, Mapping, Optional

# Domain Layer Imports
from resilink.domain.events.resilience_events import (
    DomainEvent, EventHandler, QuotaReset, QuotaWarningIssued, dispatch_event
)
from resilink.domain.exceptions import ConfigurationError, QuotaExhaustedError
from resilink.domain.models.common import QuotaUsage, ResourceName
from resilink.domain.models.resilience import Quota

logger = logging.getLogger(__name__)

# Free-tier daily ceilings of the data service and its hosts
DEFAULT_QUOTA_LIMITS: Dict[str, int] = {
    'd1_reads': 90000,
    'd1_writes': 90000,
    'worker_requests': 90000,
    'railway_requests': 100000,
}
DEFAULT_WARNING_THRESHOLD = 0.80
DEFAULT_CRITICAL_THRESHOLD = 0.95


def next_local_midnight(now: datetime) -> datetime:
    """Returns the first midnight strictly after ``now`` (naive local time)."""
    return datetime.combine(now.date() + timedelta(days=1), dt_time.min)


class QuotaLimiter:
    """Tracks per-resource daily usage against fixed ceilings."""

    def __init__(
        self,
        limits: Optional[Mapping[str, int]] = None,
        warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
        critical_threshold: float = DEFAULT_CRITICAL_THRESHOLD,
        now: Callable[[], datetime] = datetime.now,
        event_handler: Optional[EventHandler] = None,
    ):
        """Initializes the quota limiter.

        Args:
            limits: Daily ceiling per resource name (defaults to the free-tier limits).
            warning_threshold: Usage fraction at which a warning is emitted.
            critical_threshold: Usage fraction at which checks start failing.
            now: Source of the current local time (injectable for tests).
            event_handler: Optional receiver for quota events.
        """
        limits = DEFAULT_QUOTA_LIMITS if limits is None else limits
        if not limits:
            raise ConfigurationError("QuotaLimiter requires at least one resource limit.")
        if not 0 < warning_threshold <= critical_threshold <= 1:
            raise ConfigurationError(
                f"Thresholds must satisfy 0 < warning <= critical <= 1, "
                f"got warning={warning_threshold}, critical={critical_threshold}"
            )
        for resource, limit in limits.items():
            if not isinstance(limit, int) or limit <= 0:
                raise ConfigurationError(f"Quota limit for '{resource}' must be a positive integer, got {limit!r}")

        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold
        self._now = now
        self._event_handler = event_handler
        self._lock = Lock()

        reset_at = next_local_midnight(self._now())
        self.quotas: Dict[str, Quota] = {
            resource: Quota(limit=limit, reset_at=reset_at) for resource, limit in limits.items()
        }
        logger.info(
            f"QuotaLimiter initialized for {len(self.quotas)} resources "
            f"(warning={warning_threshold:.0%}, critical={critical_threshold:.0%})"
        )

    def _critical_ceiling(self, quota: Quota) -> int:
        # Usage at which checks start failing. Rounded before flooring since
        # limit * threshold can carry float noise (94.99999... for 95).
        return math.floor(round(quota.limit * self.critical_threshold, 6))

    def _reset_quotas_if_needed(self, now: datetime) -> List[QuotaReset]:
        """Zeroes every quota whose reset boundary has passed. Caller holds the lock."""
        resets = []
        for resource, quota in self.quotas.items():
            if now >= quota.reset_at:
                quota.used = 0
                while quota.reset_at <= now:
                    quota.reset_at += timedelta(days=1)
                logger.info(f"Quota reset for {resource}; next reset at {quota.reset_at.isoformat()}")
                resets.append(QuotaReset(resource=resource, next_reset_at=quota.reset_at.timestamp()))
        return resets

    def _dispatch_all(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            dispatch_event(self._event_handler, event)

    def check_quota(self, resource: ResourceName) -> None:
        """Records one unit of usage for ``resource``.

        Raises:
            ConfigurationError: If the resource is not configured.
            QuotaExhaustedError: If usage has reached the critical threshold.
                Usage is not incremented in that case.
        """
        events: List[DomainEvent] = []
        try:
            with self._lock:
                events.extend(self._reset_quotas_if_needed(self._now()))

                quota = self.quotas.get(resource)
                if quota is None:
                    raise ConfigurationError(f"Unknown quota resource: {resource}")

                usage_percent = quota.used / quota.limit
                if quota.used >= self._critical_ceiling(quota):
                    raise QuotaExhaustedError(
                        f"Quota exceeded for {resource}: {usage_percent * 100:.1f}% of {quota.limit} used",
                        resource=resource,
                        used=quota.used,
                        limit=quota.limit,
                    )

                if usage_percent >= self.warning_threshold:
                    logger.warning(f"High quota usage for {resource}: {usage_percent * 100:.1f}%")
                    events.append(QuotaWarningIssued(
                        resource=resource,
                        used=quota.used,
                        limit=quota.limit,
                        percentage=round(usage_percent * 100, 1),
                    ))

                quota.used += 1
        finally:
            self._dispatch_all(events)

    def get_usage_stats(self) -> Dict[str, QuotaUsage]:
        """Returns a usage snapshot per resource, after applying any due reset."""
        with self._lock:
            now = self._now()
            events = self._reset_quotas_if_needed(now)
            stats = {
                resource: QuotaUsage(
                    used=quota.used,
                    limit=quota.limit,
                    percentage=round(quota.used / quota.limit * 100, 1),
                    remaining=quota.limit - quota.used,
                    reset_in_ms=max(0, int((quota.reset_at - now).total_seconds() * 1000)),
                )
                for resource, quota in self.quotas.items()
            }
        self._dispatch_all(events)
        return stats
