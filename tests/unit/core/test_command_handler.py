import pytest
from unittest.mock import AsyncMock, MagicMock

from resilink.core.command_handler import CommandHandler
from resilink.domain.exceptions import ConfigurationError
from resilink.domain.interfaces.user_interface import UserInterface
from resilink.infrastructure.http.data_service_client import DataServiceClient
from resilink.infrastructure.monitoring.event_recorder import EventRecorder

@pytest.fixture
def mock_client():
    client = MagicMock(spec=DataServiceClient)
    client.base_url = "https://data.example.test"
    client.degradation = MagicMock()
    client.degradation.get_status.return_value = {
        'level': 'NORMAL', 'cache_size': 0, 'description': "All features operating normally",
    }
    client.get_users_for_campaign = AsyncMock(return_value=[{'id': 'u1'}])
    client.get_products_for_campaign = AsyncMock(return_value=[{'id': 'p1'}])
    client.health_check = AsyncMock(return_value=True)
    return client

@pytest.fixture
def mock_ui():
    return MagicMock(spec=UserInterface)

@pytest.fixture
def command_handler(mock_client, mock_ui, recorder):
    """Fixture to create CommandHandler with a mocked client and UI."""
    return CommandHandler(client=mock_client, ui=mock_ui, event_recorder=recorder)

@pytest.mark.asyncio
async def test_handle_query_users(command_handler: CommandHandler, mock_client: MagicMock, mock_ui: MagicMock):
    """Test that handle_query_users passes criteria through and displays the result."""
    await command_handler.handle_query_users({'location': 'Jakarta'})

    mock_client.get_users_for_campaign.assert_awaited_once_with({'location': 'Jakarta'})
    mock_ui.display_result.assert_called_once_with([{'id': 'u1'}], title="Campaign users")
    mock_ui.display_warning.assert_not_called()

@pytest.mark.asyncio
async def test_handle_query_users_reports_degradation(command_handler: CommandHandler, mock_client: MagicMock, mock_ui: MagicMock):
    mock_client.degradation.get_status.return_value = {
        'level': 'MINIMAL', 'cache_size': 3, 'description': "Only essential features available",
    }
    await command_handler.handle_query_users({})
    mock_ui.display_warning.assert_called_once_with("Service degraded (MINIMAL): Only essential features available")
    mock_ui.display_result.assert_called_once()

@pytest.mark.asyncio
async def test_handle_query_users_error(command_handler: CommandHandler, mock_client: MagicMock, mock_ui: MagicMock):
    """Test that errors during the user query are displayed, not raised."""
    mock_client.get_users_for_campaign.side_effect = ConfigurationError("Unknown quota resource: d1_reads")

    await command_handler.handle_query_users({})

    mock_ui.display_error.assert_called_once_with("User query failed: Unknown quota resource: d1_reads")
    mock_ui.display_result.assert_not_called()

@pytest.mark.asyncio
async def test_handle_query_products(command_handler: CommandHandler, mock_client: MagicMock, mock_ui: MagicMock):
    await command_handler.handle_query_products({'category': 'rice'})
    mock_client.get_products_for_campaign.assert_awaited_once_with({'category': 'rice'})
    mock_ui.display_result.assert_called_once_with([{'id': 'p1'}], title="Campaign products")

@pytest.mark.asyncio
async def test_handle_query_products_error(command_handler: CommandHandler, mock_client: MagicMock, mock_ui: MagicMock):
    mock_client.get_products_for_campaign.side_effect = ConfigurationError("bad limits")
    await command_handler.handle_query_products({})
    mock_ui.display_error.assert_called_once_with("Product query failed: bad limits")

@pytest.mark.asyncio
async def test_handle_health(command_handler: CommandHandler, mock_client: MagicMock, mock_ui: MagicMock):
    assert await command_handler.handle_health() is True
    mock_ui.display_info.assert_called_once_with("Data service at https://data.example.test is healthy.")

    mock_client.health_check.return_value = False
    assert await command_handler.handle_health() is False
    mock_ui.display_error.assert_called_once_with(
        "Data service at https://data.example.test is unreachable or unhealthy."
    )

@pytest.mark.asyncio
async def test_handle_status_includes_recent_events(
    command_handler: CommandHandler, mock_client: MagicMock, mock_ui: MagicMock, recorder: EventRecorder
):
    snapshot = {'breaker': {}, 'quotas': {}, 'degradation': {}}
    mock_client.get_health.return_value = snapshot

    await command_handler.handle_status()

    mock_ui.display_health.assert_called_once_with(snapshot, recent_events=[])

@pytest.mark.asyncio
async def test_handle_status_without_recorder(mock_client: MagicMock, mock_ui: MagicMock):
    handler = CommandHandler(client=mock_client, ui=mock_ui)
    mock_client.get_health.return_value = {}
    await handler.handle_status()
    mock_ui.display_health.assert_called_once_with({}, recent_events=None)
