"""Main entry point for the resilink application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
import sys
from typing import Any, Coroutine, Dict, List, Optional

import typer
from typing_extensions import Annotated

# --- Setup Logging Early ---
# Use basic config until setup_logging is called with configured settings
logging.basicConfig(level=logging.WARNING, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# --- Core Layer ---
from resilink.core.command_handler import CommandHandler

# --- Infrastructure Layer ---
# Config
from resilink.infrastructure.config.settings import (
    load_configuration, get_config, get_data_service_url, get_service_api_key, get_request_timeout,
    get_breaker_settings, get_quota_limits, get_backoff_policy, get_degradation_settings, get_cache_ttl,
)
# UI
from resilink.infrastructure.cli.display import ConsoleDisplay
# Cache
from resilink.infrastructure.cache.ttl_cache import TtlCache
# Resilience
from resilink.infrastructure.resilience.circuit_breaker import CircuitBreaker
from resilink.infrastructure.resilience.degradation import DegradationController
from resilink.infrastructure.resilience.quota_limiter import QuotaLimiter
# HTTP
from resilink.infrastructure.http.data_service_client import DataServiceClient
# Monitoring
from resilink.infrastructure.monitoring.logger_setup import LOG_FORMAT, setup_logging, resolve_log_level
from resilink.infrastructure.monitoring.event_recorder import EventRecorder

# --- Dependency Injection Container (Manual) ---

def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root: the only place that reads
    configuration and hands plain values to the resilience components.
    """
    dependencies: Dict[str, Any] = {}
    dependencies['ui'] = ConsoleDisplay()
    try:
        # 1. Load Configuration First
        load_configuration()
        setup_logging(
            log_level=resolve_log_level(get_config('logging.level'), default=logging.WARNING),
            log_file=get_config('logging.file'),
            log_format=get_config('logging.format', LOG_FORMAT),
        )
        logger.info("Configuration and logging initialized.")

        # 2. Observability
        recorder = EventRecorder()
        dependencies['event_recorder'] = recorder

        # 3. Resilience components (degradation is shared process-wide)
        dependencies['degradation'] = DegradationController(
            cache=TtlCache(default_ttl=get_cache_ttl()),
            event_handler=recorder,
            **get_degradation_settings(),
        )
        dependencies['quota_limiter'] = QuotaLimiter(limits=get_quota_limits(), event_handler=recorder)
        dependencies['breaker'] = CircuitBreaker(
            name="data-service",
            event_handler=recorder,
            **get_breaker_settings(),
        )

        # 4. Upstream clients
        dependencies['client'] = DataServiceClient(
            base_url=get_data_service_url(),
            api_key=get_service_api_key(),
            timeout=get_request_timeout(),
            degradation=dependencies['degradation'],
            breaker=dependencies['breaker'],
            quota_limiter=dependencies['quota_limiter'],
            backoff_policy=get_backoff_policy(),
            cache_ttl=get_cache_ttl(),
            event_handler=recorder,
        )

        # 5. Command Handler
        dependencies['command_handler'] = CommandHandler(
            client=dependencies['client'],
            ui=dependencies['ui'],
            event_recorder=recorder,
        )
        logger.info("All dependencies initialized successfully.")
        return dependencies

    except Exception as e:
        logger.error(f"Fatal Error during application initialization: {e}", exc_info=True)
        dependencies['ui'].display_error(f"Application Initialization Failed: {e}")
        sys.exit(1)

_dependencies: Optional[Dict[str, Any]] = None

def get_dependencies() -> Dict[str, Any]:
    """Builds the dependency container on first use."""
    global _dependencies
    if _dependencies is None:
        _dependencies = create_dependencies()
    return _dependencies

# --- Typer App Definition ---
app = typer.Typer(
    name="resilink",
    help="resilink: resilient access to the campaign data service (circuit breaker, quotas, graceful degradation).",
    add_completion=False,
)

# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Runs a command coroutine, then releases the HTTP client."""
    async def runner() -> Any:
        try:
            return await coro
        finally:
            await get_dependencies()['client'].aclose()

    try:
        return asyncio.run(runner())
    except Exception as e:
        logger.error(f"Error executing async command: {e}", exc_info=True)
        get_dependencies()['ui'].display_error(f"Command execution failed: {e}")
        raise typer.Exit(code=1)

# --- CLI Commands ---

LocationOption = Annotated[Optional[str], typer.Option("--location", "-l", help="Location filter.")]
LimitOption = Annotated[Optional[int], typer.Option("--limit", "-n", min=1, help="Maximum number of results.")]

@app.command()
def status():
    """Show circuit breaker, quota and degradation state.

    State lives in memory for this process only, so a fresh invocation
    reports a CLOSED breaker, NORMAL level and zero quota usage.
    """
    handler: CommandHandler = get_dependencies()['command_handler']
    run_async(handler.handle_status())

@app.command()
def health():
    """Ping the data service health endpoint."""
    handler: CommandHandler = get_dependencies()['command_handler']
    if not run_async(handler.handle_health()):
        raise typer.Exit(code=1)

@app.command()
def users(
    location: LocationOption = None,
    trader_type: Annotated[Optional[str], typer.Option("--trader-type", "-t", help="Trader type filter.")] = None,
    interest: Annotated[Optional[List[str]], typer.Option("--interest", "-i", help="Interest filter (repeatable).")] = None,
    limit: LimitOption = None,
    offset: Annotated[int, typer.Option("--offset", min=0, help="Result offset.")] = 0,
):
    """Query users for campaign targeting."""
    criteria = {
        'location': location,
        'traderType': trader_type,
        'interests': interest or None,
        'limit': limit,
        'offset': offset,
    }
    handler: CommandHandler = get_dependencies()['command_handler']
    run_async(handler.handle_query_users({k: v for k, v in criteria.items() if v is not None}))

@app.command()
def products(
    category: Annotated[Optional[str], typer.Option("--category", "-c", help="Product category.")] = None,
    location: LocationOption = None,
    trader_id: Annotated[Optional[str], typer.Option("--trader-id", help="Only products of this trader.")] = None,
    limit: LimitOption = None,
):
    """Query products for campaign content."""
    criteria = {'category': category, 'location': location, 'traderId': trader_id, 'limit': limit}
    handler: CommandHandler = get_dependencies()['command_handler']
    run_async(handler.handle_query_products({k: v for k, v in criteria.items() if v is not None}))

# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()

if __name__ == "__main__":
    cli_entry_point()
