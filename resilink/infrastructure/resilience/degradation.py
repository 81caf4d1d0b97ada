"""Graceful degradation controller.

Holds the process-wide degradation level and the result cache that backs
it. Each upstream operation is described by an ``OperationSet`` of
variants; the controller picks the variant matching the current level,
and escalates the level one step whenever the picked variant fails.

One instance is created by the composition root and injected into every
client that needs it, so all call sites share the same level and cache.
"""

import logging
from threading import Lock
from typing import Any, Dict, Optional, Tuple, Union

# Domain Layer Imports
from resilink.domain.events.resilience_events import (
    DegradationLevelChanged, EventHandler, dispatch_event
)
from resilink.domain.exceptions import ConfigurationError
from resilink.domain.interfaces.cache import CacheService
from resilink.domain.models.common import CacheKey, DegradationStatus
from resilink.domain.models.resilience import DegradationLevel, OperationSet

# Infrastructure Layer Imports
from resilink.infrastructure.cache.ttl_cache import DEFAULT_TTL_SECONDS, TtlCache

logger = logging.getLogger(__name__)

LEVEL_DESCRIPTIONS: Dict[DegradationLevel, str] = {
    DegradationLevel.NORMAL: "All features operating normally",
    DegradationLevel.REDUCED: "Some advanced features disabled to preserve core functionality",
    DegradationLevel.MINIMAL: "Only essential features available, using cached data where possible",
    DegradationLevel.EMERGENCY: "Emergency mode - cached responses only",
}


class DegradationController:
    """Selects operation variants by degradation level and caches results."""

    def __init__(
        self,
        cache: Optional[CacheService] = None,
        initial_level: DegradationLevel = DegradationLevel.NORMAL,
        recovery_threshold: Optional[int] = None,
        event_handler: Optional[EventHandler] = None,
    ):
        """Initializes the controller.

        Args:
            cache: Result cache (a fresh in-memory TtlCache if None).
            initial_level: Starting degradation level.
            recovery_threshold: Consecutive successful upstream calls at an
                elevated level needed to step down one level. None disables
                automatic recovery; the level then only drops via
                ``reset_level`` or ``set_degradation_level``.
            event_handler: Optional receiver for level-change events.
        """
        if recovery_threshold is not None and recovery_threshold < 1:
            raise ConfigurationError(f"recovery_threshold must be >= 1, got {recovery_threshold}")
        self.cache: CacheService = cache if cache is not None else TtlCache()
        self.recovery_threshold = recovery_threshold
        self._event_handler = event_handler
        self._lock = Lock()
        self._current_level = self._coerce_level(initial_level)
        self._recovery_successes = 0
        logger.info(
            f"DegradationController initialized at {self._current_level.name} "
            f"(recovery_threshold={recovery_threshold})"
        )

    @staticmethod
    def _coerce_level(level: Union[DegradationLevel, int]) -> DegradationLevel:
        try:
            return DegradationLevel(level)
        except ValueError:
            raise ConfigurationError(f"Unknown degradation level: {level!r}") from None

    @property
    def current_level(self) -> DegradationLevel:
        return self._current_level

    # --- Level management ---

    def set_degradation_level(self, level: Union[DegradationLevel, int], reason: str) -> None:
        """Moves to ``level``. Does nothing (and logs nothing) when already there."""
        new_level = self._coerce_level(level)
        with self._lock:
            previous = self._current_level
            if previous is new_level:
                return
            self._current_level = new_level
            self._recovery_successes = 0

        logger.warning(f"Degradation level changed to {new_level.name}: {reason}")
        dispatch_event(self._event_handler, DegradationLevelChanged(
            previous_level=previous.name,
            new_level=new_level.name,
            reason=reason,
        ))

    def escalate(self, level: Union[DegradationLevel, int], reason: str) -> None:
        """Raises the level to ``level`` unless it is already at or above it."""
        target = self._coerce_level(level)
        if target > self._current_level:
            self.set_degradation_level(target, reason)

    def reset_level(self, reason: str = "manual reset") -> None:
        """Returns to NORMAL."""
        self.set_degradation_level(DegradationLevel.NORMAL, reason)

    def _record_upstream_success(self, level: DegradationLevel) -> None:
        if self.recovery_threshold is None or level is DegradationLevel.NORMAL:
            return
        with self._lock:
            if level is not self._current_level:
                return
            self._recovery_successes += 1
            if self._recovery_successes < self.recovery_threshold:
                return
        self.set_degradation_level(
            DegradationLevel(level - 1),
            f"{self.recovery_threshold} consecutive successful calls at {level.name}",
        )

    # --- Execution ---

    async def _dispatch(
        self, level: DegradationLevel, operations: OperationSet, emergency: Any
    ) -> Tuple[Any, bool]:
        """Runs the variant for ``level``. Returns (result, upstream_was_called)."""
        if level is DegradationLevel.NORMAL:
            return await operations.full(), True

        if level is DegradationLevel.REDUCED:
            variant = operations.reduced or operations.full
            return await variant(), True

        if level is DegradationLevel.MINIMAL:
            if operations.minimal is not None:
                return await operations.minimal(), True
            return self.get_cached_result(operations.cache_key), False

        cached = self.get_cached_result(operations.cache_key)
        return (cached if cached is not None else emergency), False

    async def execute_with_degradation(self, operations: OperationSet, emergency: Any = None) -> Any:
        """Runs the variant of ``operations`` that fits the current level.

        On failure below EMERGENCY the level is escalated one step and the
        call is retried at the new level. At EMERGENCY no operation runs:
        the cached value for ``operations.cache_key`` is returned, or
        ``emergency`` when nothing is cached.

        Raises:
            ConfigurationError: Propagated immediately, without escalation.
        """
        floor = DegradationLevel.NORMAL
        while True:
            level = max(self._current_level, floor)
            try:
                result, upstream_called = await self._dispatch(level, operations, emergency)
            except ConfigurationError:
                raise
            except Exception as e:
                if level >= DegradationLevel.EMERGENCY:
                    raise
                floor = DegradationLevel(level + 1)
                logger.debug(f"Variant at {level.name} failed for '{operations.cache_key}': {type(e).__name__}")
                self.escalate(floor, f"Error: {e}")
                continue

            if upstream_called:
                self._record_upstream_success(level)
            return result

    # --- Cache ---

    def set_cached_result(self, key: CacheKey, data: Any, ttl: float = DEFAULT_TTL_SECONDS) -> None:
        self.cache.set(key, data, ttl)

    def get_cached_result(self, key: CacheKey) -> Optional[Any]:
        return self.cache.get(key)

    # --- Observability ---

    def get_degradation_description(self) -> str:
        return LEVEL_DESCRIPTIONS[self._current_level]

    def get_status(self) -> DegradationStatus:
        return DegradationStatus(
            level=self._current_level.name,
            cache_size=len(self.cache),
            description=self.get_degradation_description(),
        )
