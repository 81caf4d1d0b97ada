"""Executes async calls with bounded exponential-backoff retries.

Implements exponential backoff with jitter for transient errors such as
timeouts, throttling (429) or temporary server issues (5xx). The error
itself is never wrapped: once retries are exhausted, or the retry
condition refuses another attempt, the last exception propagates as is.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Optional

# Domain Layer Imports
from resilink.domain.events.resilience_events import EventHandler, RetryScheduled, dispatch_event
from resilink.domain.exceptions import ConfigurationError
from resilink.domain.models.resilience import AsyncOperation

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_S = 1.0
DEFAULT_MAX_DELAY_S = 10.0
DEFAULT_BACKOFF_FACTOR = 2.0
JITTER_RATIO = 0.1  # up to 10% of the computed delay

RetryCondition = Callable[[BaseException], bool]


@dataclass(frozen=True)
class BackoffPolicy:
    """Retry backoff configuration."""
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY_S
    max_delay: float = DEFAULT_MAX_DELAY_S
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("Backoff delays must be non-negative.")
        if self.backoff_factor < 1:
            raise ConfigurationError(f"backoff_factor must be >= 1, got {self.backoff_factor}")


def _always_retry(error: BaseException) -> bool:
    return True


def compute_backoff_delay(attempt: int, policy: BackoffPolicy) -> float:
    """Delay before the retry that follows failed attempt ``attempt`` (0-based), without jitter."""
    return min(policy.base_delay * (policy.backoff_factor ** attempt), policy.max_delay)


async def retry_with_backoff(
    operation: AsyncOperation,
    policy: Optional[BackoffPolicy] = None,
    retry_condition: Optional[RetryCondition] = None,
    operation_name: Optional[str] = None,
    event_handler: Optional[EventHandler] = None,
) -> Any:
    """Awaits ``operation()`` until it succeeds or retries run out.

    Args:
        operation: Zero-argument coroutine function to execute.
        policy: Backoff configuration (defaults: 3 retries, 1s base, 10s cap, factor 2).
        retry_condition: Called with each error; returning False stops retrying.
        operation_name: Name used in logs and events.
        event_handler: Optional receiver for RetryScheduled events.

    Returns:
        The result of the first successful attempt.

    Raises:
        Exception: The exception from the last failed attempt, unchanged.
    """
    policy = policy or BackoffPolicy()
    should_retry = retry_condition or _always_retry
    name = operation_name or getattr(operation, '__name__', 'operation')

    for attempt in range(policy.max_retries + 1):
        try:
            return await operation()
        except Exception as e:
            if attempt == policy.max_retries or not should_retry(e):
                logger.debug(f"Giving up on {name} after attempt {attempt + 1}: {type(e).__name__}")
                raise

            delay = compute_backoff_delay(attempt, policy)
            total_delay = delay + random.uniform(0, JITTER_RATIO * delay)

            logger.warning(
                f"Retry attempt {attempt + 1}/{policy.max_retries} for {name} "
                f"after {total_delay:.2f}s: {e}"
            )
            dispatch_event(event_handler, RetryScheduled(
                attempt_number=attempt + 1,
                delay_seconds=total_delay,
                error_type=type(e).__name__,
                operation=name,
            ))
            await asyncio.sleep(total_delay)
