"""Domain Events related to the resilience components.

Examples include events for circuit state changes, fallbacks, quota
warnings, degradation changes and scheduled retries.
"""

from dataclasses import dataclass, field, asdict
import logging
import time
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

# Base Event Class
@dataclass
class DomainEvent:
    """Base class for domain events."""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['event'] = type(self).__name__
        return data

# Callable that receives events; components accept one optionally.
EventHandler = Callable[[DomainEvent], None]

# --- Specific Resilience Events ---

@dataclass
class CircuitStateChanged(DomainEvent):
    """Event triggered when a breaker moves between states."""
    breaker: str
    previous_state: str
    new_state: str
    failure_count: int = 0
    timestamp: float = field(default_factory=time.time)

@dataclass
class FallbackServed(DomainEvent):
    """Event triggered when a breaker returns its fallback value."""
    breaker: str
    reason: str # 'circuit_open' or the error kind
    timestamp: float = field(default_factory=time.time)

@dataclass
class QuotaWarningIssued(DomainEvent):
    """Event triggered when a resource crosses the warning threshold."""
    resource: str
    used: int
    limit: int
    percentage: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class QuotaReset(DomainEvent):
    """Event triggered when a daily quota rolls over."""
    resource: str
    next_reset_at: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class DegradationLevelChanged(DomainEvent):
    """Event triggered when the process-wide degradation level changes."""
    previous_level: str
    new_level: str
    reason: str
    timestamp: float = field(default_factory=time.time)

@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a failed call."""
    attempt_number: int
    delay_seconds: float
    error_type: str
    operation: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class SideEffectFailed(DomainEvent):
    """Event triggered when a fire-and-forget call fails and is swallowed."""
    operation: str
    error_type: str
    error_message: str
    timestamp: float = field(default_factory=time.time)


def dispatch_event(handler: Optional[EventHandler], event: DomainEvent) -> None:
    """Delivers an event to an optional handler. Handler errors are logged and dropped."""
    if handler is None:
        return
    try:
        handler(event)
    except Exception as e:
        logger.error(f"Event handler failed for {type(event).__name__}: {e}", exc_info=True)
