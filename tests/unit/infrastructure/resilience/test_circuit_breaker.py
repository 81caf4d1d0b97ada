import pytest
from unittest.mock import AsyncMock

from resilink.domain.exceptions import (
    ConfigurationError, ErrorKind, QuotaExhaustedError, TransientUpstreamError,
    UpstreamRequestError, UpstreamTimeoutError,
)
from resilink.domain.models.resilience import CircuitState
from resilink.infrastructure.resilience.circuit_breaker import CircuitBreaker

@pytest.fixture
def breaker(clock, recorder):
    """Breaker with a small threshold and a manual clock."""
    return CircuitBreaker(
        name="test-upstream",
        failure_threshold=2,
        reset_timeout=30.0,
        fallback=lambda: "fallback",
        clock=clock,
        event_handler=recorder,
    )

def failing(error):
    return AsyncMock(side_effect=error)

async def open_breaker(breaker: CircuitBreaker) -> None:
    op = failing(UpstreamTimeoutError("Request timeout after 30.0s"))
    for _ in range(breaker.failure_threshold):
        await breaker.fire(op)
    assert breaker.state is CircuitState.OPEN

@pytest.mark.asyncio
async def test_success_passes_result_through(breaker: CircuitBreaker):
    op = AsyncMock(return_value={"users": []})
    assert await breaker.fire(op) == {"users": []}
    op.assert_awaited_once()
    assert breaker.state is CircuitState.CLOSED
    assert breaker.get_stats()['total_requests'] == 1

@pytest.mark.asyncio
async def test_timeout_scenario_opens_then_short_circuits(breaker: CircuitBreaker):
    """Two timeouts serve the fallback and open the circuit; the third call never reaches the operation."""
    op = failing(UpstreamTimeoutError("Request timeout after 30.0s"))

    assert await breaker.fire(op) == "fallback"
    assert breaker.state is CircuitState.CLOSED
    assert await breaker.fire(op) == "fallback"
    assert breaker.state is CircuitState.OPEN
    assert await breaker.fire(op) == "fallback"

    assert op.await_count == 2
    stats = breaker.get_stats()
    assert stats['total_requests'] == 3
    assert stats['total_failures'] == 2
    assert stats['total_fallbacks'] == 3

@pytest.mark.asyncio
async def test_open_circuit_short_circuits_until_timeout(breaker: CircuitBreaker, clock):
    await open_breaker(breaker)
    op = AsyncMock(return_value="ok")

    clock.advance(29.9)
    assert await breaker.fire(op) == "fallback"
    op.assert_not_awaited()

    clock.advance(0.1)
    assert await breaker.fire(op) == "ok"
    op.assert_awaited_once()
    assert breaker.state is CircuitState.HALF_OPEN

@pytest.mark.asyncio
async def test_half_open_closes_after_three_successes(breaker: CircuitBreaker, clock):
    await open_breaker(breaker)
    clock.advance(30)
    op = AsyncMock(return_value="ok")

    await breaker.fire(op)
    await breaker.fire(op)
    assert breaker.state is CircuitState.HALF_OPEN
    await breaker.fire(op)
    assert breaker.state is CircuitState.CLOSED
    assert breaker.failure_count == 0

@pytest.mark.asyncio
async def test_half_open_failure_reopens_and_restarts_timer(breaker: CircuitBreaker, clock):
    await open_breaker(breaker)
    clock.advance(30)
    await breaker.fire(AsyncMock(return_value="ok"))
    assert breaker.state is CircuitState.HALF_OPEN

    result = await breaker.fire(failing(TransientUpstreamError("HTTP 502", ErrorKind.UPSTREAM_FAILURE, 502)))

    assert result == "fallback"
    assert breaker.state is CircuitState.OPEN
    assert breaker.last_failure_time == clock.now

    probe = AsyncMock(return_value="ok")
    clock.advance(10)
    assert await breaker.fire(probe) == "fallback"
    probe.assert_not_awaited()

@pytest.mark.asyncio
async def test_success_resets_consecutive_failures(breaker: CircuitBreaker):
    await breaker.fire(failing(UpstreamTimeoutError("timeout")))
    assert breaker.failure_count == 1
    await breaker.fire(AsyncMock(return_value="ok"))
    assert breaker.failure_count == 0
    await breaker.fire(failing(UpstreamTimeoutError("timeout")))
    assert breaker.state is CircuitState.CLOSED

@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    QuotaExhaustedError("Quota exceeded for d1_reads"),
    TransientUpstreamError("HTTP 429", ErrorKind.RATE_LIMITED, 429),
    TransientUpstreamError("HTTP 503", ErrorKind.SERVICE_UNAVAILABLE, 503),
    UpstreamTimeoutError("timeout"),
    TransientUpstreamError("connection refused"),
])
async def test_fallback_eligible_errors_serve_fallback(breaker: CircuitBreaker, error):
    assert await breaker.fire(failing(error)) == "fallback"
    assert breaker.get_stats()['total_fallbacks'] == 1

@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    UpstreamRequestError("HTTP 400: bad filter", 400),
    ConfigurationError("Unknown quota resource: nope"),
    ValueError("boom"),
])
async def test_other_errors_are_reraised_unchanged(breaker: CircuitBreaker, error):
    with pytest.raises(type(error)) as exc_info:
        await breaker.fire(failing(error))
    assert exc_info.value is error
    stats = breaker.get_stats()
    assert stats['total_failures'] == 1
    assert stats['total_fallbacks'] == 0

@pytest.mark.asyncio
async def test_non_eligible_errors_still_count_towards_opening(breaker: CircuitBreaker):
    for _ in range(2):
        with pytest.raises(ValueError):
            await breaker.fire(failing(ValueError("boom")))
    assert breaker.state is CircuitState.OPEN

@pytest.mark.asyncio
async def test_per_call_fallback_overrides_default(breaker: CircuitBreaker):
    result = await breaker.fire(failing(UpstreamTimeoutError("timeout")), fallback=list)
    assert result == []

@pytest.mark.asyncio
async def test_async_fallback_is_awaited(breaker: CircuitBreaker):
    async def cached_users():
        return [{"id": "u1"}]

    result = await breaker.fire(failing(UpstreamTimeoutError("timeout")), fallback=cached_users)
    assert result == [{"id": "u1"}]

@pytest.mark.asyncio
async def test_default_fallback_returns_none(clock):
    breaker = CircuitBreaker(clock=clock)
    assert await breaker.fire(failing(UpstreamTimeoutError("timeout"))) is None

@pytest.mark.asyncio
async def test_events_are_emitted_for_transitions_and_fallbacks(breaker: CircuitBreaker, recorder):
    await open_breaker(breaker)
    await breaker.fire(AsyncMock(return_value="ok"))

    names = [e['event'] for e in recorder.recent(limit=10)]
    assert names.count('FallbackServed') == 3
    transitions = [e for e in recorder.recent(limit=10) if e['event'] == 'CircuitStateChanged']
    assert transitions == [{
        'event': 'CircuitStateChanged',
        'breaker': 'test-upstream',
        'previous_state': 'CLOSED',
        'new_state': 'OPEN',
        'failure_count': 2,
        'timestamp': transitions[0]['timestamp'],
    }]
    last = recorder.recent(limit=1)[0]
    assert last['event'] == 'FallbackServed'
    assert last['reason'] == 'circuit_open'

def test_stats_with_no_requests(breaker: CircuitBreaker):
    stats = breaker.get_stats()
    assert stats['state'] == 'CLOSED'
    assert stats['success_rate'] == 100.0
    assert stats['fallback_rate'] == 0.0

@pytest.mark.asyncio
async def test_stats_rates_are_rounded_percentages(breaker: CircuitBreaker):
    await breaker.fire(AsyncMock(return_value="ok"))
    await breaker.fire(AsyncMock(return_value="ok"))
    await breaker.fire(failing(UpstreamTimeoutError("timeout")))

    stats = breaker.get_stats()
    assert stats['success_rate'] == 66.67
    assert stats['fallback_rate'] == 33.33

@pytest.mark.asyncio
async def test_reset_closes_and_zeroes_counters(breaker: CircuitBreaker):
    await open_breaker(breaker)
    breaker.reset()

    stats = breaker.get_stats()
    assert stats['state'] == 'CLOSED'
    assert stats['failure_count'] == 0
    assert stats['total_requests'] == 0
    assert stats['total_failures'] == 0
    assert stats['total_fallbacks'] == 0

@pytest.mark.parametrize("kwargs", [
    {"failure_threshold": 0},
    {"success_threshold": 0},
    {"reset_timeout": -1},
])
def test_invalid_options_raise_configuration_error(kwargs):
    with pytest.raises(ConfigurationError):
        CircuitBreaker(**kwargs)
