"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py), runs them against
the resilient data-service client and reports results or failures
through the user interface.
"""

import logging
from typing import Any, Dict, Optional

# Domain Layer Imports
from resilink.domain.exceptions import ResilienceError
from resilink.domain.interfaces.user_interface import UserInterface
from resilink.domain.models.common import Criteria

# Infrastructure Layer Imports
from resilink.infrastructure.http.data_service_client import DataServiceClient
from resilink.infrastructure.monitoring.event_recorder import EventRecorder

logger = logging.getLogger(__name__)

class CommandHandler:
    """Handles incoming commands and delegates to the data-service client."""

    def __init__(
        self,
        client: DataServiceClient,
        ui: UserInterface,
        event_recorder: Optional[EventRecorder] = None,
    ):
        """Initializes the CommandHandler with the client and UI."""
        self.client = client
        self.ui = ui
        self.event_recorder = event_recorder

    def _report_degradation(self) -> None:
        status = self.client.degradation.get_status()
        if status['level'] != 'NORMAL':
            self.ui.display_warning(f"Service degraded ({status['level']}): {status['description']}")

    async def handle_status(self, event_limit: int = 10) -> None:
        """Handles the 'status' command: prints the health snapshot."""
        logger.info("Handling 'status' command")
        recent = self.event_recorder.recent(event_limit) if self.event_recorder is not None else None
        self.ui.display_health(self.client.get_health(), recent_events=recent)

    async def handle_health(self) -> bool:
        """Handles the 'health' command: pings the data service."""
        logger.info("Handling 'health' command")
        healthy = await self.client.health_check()
        if healthy:
            self.ui.display_info(f"Data service at {self.client.base_url} is healthy.")
        else:
            self.ui.display_error(f"Data service at {self.client.base_url} is unreachable or unhealthy.")
        return healthy

    async def handle_query_users(self, criteria: Dict[str, Any]) -> None:
        """Handles the 'users' command."""
        logger.info(f"Handling 'users' command with criteria: {criteria}")
        try:
            users = await self.client.get_users_for_campaign(Criteria(criteria))
        except ResilienceError as e:
            logger.error(f"User query failed: {e}", exc_info=True)
            self.ui.display_error(f"User query failed: {e}")
            return
        self._report_degradation()
        self.ui.display_result(users, title="Campaign users")

    async def handle_query_products(self, criteria: Dict[str, Any]) -> None:
        """Handles the 'products' command."""
        logger.info(f"Handling 'products' command with criteria: {criteria}")
        try:
            products = await self.client.get_products_for_campaign(Criteria(criteria))
        except ResilienceError as e:
            logger.error(f"Product query failed: {e}", exc_info=True)
            self.ui.display_error(f"Product query failed: {e}")
            return
        self._report_degradation()
        self.ui.display_result(products, title="Campaign products")
