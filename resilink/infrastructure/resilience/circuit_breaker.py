"""Circuit breaker for calls to an unreliable upstream.

Counts consecutive failures and, once they reach the threshold, stops
invoking the upstream for a cooldown period, serving a fallback value
instead. After the cooldown a half-open probe phase lets calls through
again; three consecutive successes close the circuit, any failure
reopens it.
"""

import inspect
import logging
import time
from threading import Lock
from typing import Any, Callable, List, Optional

# Domain Layer Imports
from resilink.domain.events.resilience_events import (
    CircuitStateChanged, DomainEvent, EventHandler, FallbackServed, dispatch_event
)
from resilink.domain.exceptions import ConfigurationError, error_kind, is_fallback_eligible
from resilink.domain.models.common import BreakerStats
from resilink.domain.models.resilience import AsyncOperation, CircuitState

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RESET_TIMEOUT_S = 30.0
HALF_OPEN_SUCCESS_THRESHOLD = 3

Fallback = Callable[[], Any]


def _none_fallback() -> None:
    return None


class CircuitBreaker:
    """Three-state circuit breaker guarding one upstream dependency."""

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT_S,
        fallback: Fallback = _none_fallback,
        success_threshold: int = HALF_OPEN_SUCCESS_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
        event_handler: Optional[EventHandler] = None,
    ):
        """Initializes the breaker in the CLOSED state.

        Args:
            name: Upstream name used in logs, events and stats.
            failure_threshold: Consecutive failures that open the circuit.
            reset_timeout: Seconds after the last failure before a probe is allowed.
            fallback: No-argument callable (sync or async) producing the default value.
            success_threshold: Consecutive half-open successes that close the circuit.
            clock: Monotonic time source in seconds (injectable for tests).
            event_handler: Optional receiver for breaker events.
        """
        if failure_threshold < 1 or success_threshold < 1:
            raise ConfigurationError("Breaker thresholds must be at least 1.")
        if reset_timeout < 0:
            raise ConfigurationError(f"reset_timeout must be non-negative, got {reset_timeout}")

        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.fallback = fallback
        self.success_threshold = success_threshold
        self._clock = clock
        self._event_handler = event_handler
        self._lock = Lock()

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None

        self.total_requests = 0
        self.total_failures = 0
        self.total_fallbacks = 0

        logger.info(
            f"CircuitBreaker '{name}' initialized: failure_threshold={failure_threshold}, "
            f"reset_timeout={reset_timeout}s"
        )

    # --- State handling (callers hold the lock) ---

    def _set_state(self, new_state: CircuitState, events: List[DomainEvent]) -> None:
        if new_state is self.state:
            return
        previous = self.state
        self.state = new_state
        events.append(CircuitStateChanged(
            breaker=self.name,
            previous_state=previous.value,
            new_state=new_state.value,
            failure_count=self.failure_count,
        ))
        if new_state is CircuitState.OPEN:
            logger.warning(f"Circuit breaker '{self.name}': state changed to OPEN after {self.failure_count} failures")
        else:
            logger.info(f"Circuit breaker '{self.name}': state changed to {new_state.value}")

    def _on_success(self, events: List[DomainEvent]) -> None:
        self.failure_count = 0
        if self.state is CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state(CircuitState.CLOSED, events)

    def _on_failure(self, events: List[DomainEvent]) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()
        self.total_failures += 1
        if self.state is CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self._set_state(CircuitState.OPEN, events)

    def _dispatch_all(self, events: List[DomainEvent]) -> None:
        for event in events:
            dispatch_event(self._event_handler, event)

    async def _invoke_fallback(self, fallback: Fallback, reason: str) -> Any:
        dispatch_event(self._event_handler, FallbackServed(breaker=self.name, reason=reason))
        result = fallback()
        if inspect.isawaitable(result):
            result = await result
        return result

    # --- Public API ---

    async def fire(self, operation: AsyncOperation, fallback: Optional[Fallback] = None) -> Any:
        """Runs ``operation`` through the breaker.

        Args:
            operation: Zero-argument coroutine function calling the upstream.
            fallback: Overrides the breaker's default fallback for this call.

        Returns:
            The operation's result, or the fallback value when the circuit is
            open or the operation failed with a fallback-eligible error.

        Raises:
            Exception: Errors that are not fallback-eligible, unchanged.
        """
        fallback = fallback or self.fallback
        events: List[DomainEvent] = []
        short_circuit = False

        with self._lock:
            self.total_requests += 1
            if self.state is CircuitState.OPEN:
                elapsed = self._clock() - (self.last_failure_time or 0.0)
                if elapsed >= self.reset_timeout:
                    self._set_state(CircuitState.HALF_OPEN, events)
                    self.success_count = 0
                else:
                    self.total_fallbacks += 1
                    short_circuit = True
        self._dispatch_all(events)

        if short_circuit:
            logger.debug(f"Circuit '{self.name}' is OPEN, serving fallback without calling upstream")
            return await self._invoke_fallback(fallback, "circuit_open")

        try:
            result = await operation()
        except Exception as e:
            events = []
            eligible = is_fallback_eligible(e)
            with self._lock:
                self._on_failure(events)
                if eligible:
                    self.total_fallbacks += 1
            self._dispatch_all(events)

            if eligible:
                kind = error_kind(e)
                logger.warning(f"Circuit '{self.name}': {type(e).__name__} ({kind.value}), serving fallback: {e}")
                return await self._invoke_fallback(fallback, kind.value)
            raise

        events = []
        with self._lock:
            self._on_success(events)
        self._dispatch_all(events)
        return result

    def get_stats(self) -> BreakerStats:
        """Returns state, counters and derived rates (percentages, 2 decimals)."""
        with self._lock:
            total = self.total_requests
            return BreakerStats(
                name=self.name,
                state=self.state.value,
                failure_count=self.failure_count,
                total_requests=total,
                total_failures=self.total_failures,
                total_fallbacks=self.total_fallbacks,
                success_rate=round((total - self.total_failures) / total * 100, 2) if total else 100.0,
                fallback_rate=round(self.total_fallbacks / total * 100, 2) if total else 0.0,
            )

    def reset(self) -> None:
        """Forces the breaker back to CLOSED and zeroes every counter."""
        events: List[DomainEvent] = []
        with self._lock:
            self._set_state(CircuitState.CLOSED, events)
            self.failure_count = 0
            self.success_count = 0
            self.last_failure_time = None
            self.total_requests = 0
            self.total_failures = 0
            self.total_fallbacks = 0
        self._dispatch_all(events)
        logger.info(f"Circuit breaker '{self.name}' reset")
