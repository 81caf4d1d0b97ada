"""Interface for presenting results to the user.

Defines the contract for displaying information, errors, warnings,
results and health snapshots, allowing different UI implementations
(e.g., console, JSON output for scripts).
"""

import abc
from typing import Any, Dict, List, Optional

# Import relevant domain models
from resilink.domain.models.common import HealthSnapshot

class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_result(self, result: Any, **kwargs: Any) -> None:
        """Displays the result of an upstream operation.

        Args:
            result: The value returned by the resilient client.
            **kwargs: Additional arguments for formatting (e.g., title).
        """
        pass

    @abc.abstractmethod
    def display_health(self, snapshot: HealthSnapshot, recent_events: Optional[List[Dict[str, Any]]] = None) -> None:
        """Displays breaker, quota and degradation state, and optionally recent events."""
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user."""
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass
