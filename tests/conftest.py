import pytest
from datetime import datetime, timedelta
from typer.testing import CliRunner

from resilink.infrastructure.config import settings
from resilink.infrastructure.monitoring.event_recorder import EventRecorder


class ManualClock:
    """Monotonic clock that only moves when a test advances it."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualDateTime:
    """Local wall clock for quota tests (naive datetimes)."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()

@pytest.fixture
def clock():
    """A manually driven monotonic clock starting at t=1000s."""
    return ManualClock()

@pytest.fixture
def wall_clock():
    """A manually driven local datetime, mid-afternoon on a fixed day."""
    return ManualDateTime(datetime(2024, 3, 15, 14, 30, 0))

@pytest.fixture
def recorder():
    """Collects events emitted by the component under test."""
    return EventRecorder()

@pytest.fixture
def no_sleep(mocker):
    """Makes retry delays instantaneous and returns the sleep mock."""
    return mocker.patch(
        'resilink.infrastructure.resilience.backoff.asyncio.sleep',
        new=mocker.AsyncMock(),
    )

@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keeps tests independent of the developer's environment and config files."""
    for name in ("DATA_SERVICE_URL", "SERVICE_API_KEY", "DATA_SERVICE_API_KEY", "DATA_SERVICE_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    settings.clear_test_config()
    yield
    settings.clear_test_config()
