import pytest
from unittest.mock import AsyncMock

from resilink.domain.exceptions import (
    ConfigurationError, QuotaExhaustedError, UpstreamTimeoutError, is_retryable
)
from resilink.infrastructure.resilience.backoff import (
    BackoffPolicy, compute_backoff_delay, retry_with_backoff
)

@pytest.fixture
def policy():
    return BackoffPolicy(max_retries=3, base_delay=1.0, max_delay=10.0, backoff_factor=2.0)

def test_delay_grows_exponentially_and_is_capped(policy: BackoffPolicy):
    delays = [compute_backoff_delay(attempt, policy) for attempt in range(6)]
    assert delays == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]

@pytest.mark.asyncio
async def test_first_success_is_returned_without_sleeping(policy, no_sleep):
    op = AsyncMock(return_value="ok")
    assert await retry_with_backoff(op, policy) == "ok"
    op.assert_awaited_once()
    no_sleep.assert_not_awaited()

@pytest.mark.asyncio
async def test_retries_until_success(policy, no_sleep, mocker):
    mocker.patch('resilink.infrastructure.resilience.backoff.random.uniform', return_value=0.0)
    op = AsyncMock(side_effect=[UpstreamTimeoutError("timeout"), UpstreamTimeoutError("timeout"), "ok"])

    assert await retry_with_backoff(op, policy) == "ok"

    assert op.await_count == 3
    assert [c.args[0] for c in no_sleep.await_args_list] == [1.0, 2.0]

@pytest.mark.asyncio
async def test_reraises_last_error_after_max_retries(policy, no_sleep):
    errors = [UpstreamTimeoutError(f"timeout {i}") for i in range(4)]
    op = AsyncMock(side_effect=errors)

    with pytest.raises(UpstreamTimeoutError) as exc_info:
        await retry_with_backoff(op, policy)

    assert exc_info.value is errors[-1]
    assert op.await_count == policy.max_retries + 1
    assert no_sleep.await_count == policy.max_retries

@pytest.mark.asyncio
async def test_retry_condition_stops_immediately(policy, no_sleep):
    error = QuotaExhaustedError("Quota exceeded for d1_reads")
    op = AsyncMock(side_effect=error)

    with pytest.raises(QuotaExhaustedError) as exc_info:
        await retry_with_backoff(op, policy, retry_condition=is_retryable)

    assert exc_info.value is error
    op.assert_awaited_once()
    no_sleep.assert_not_awaited()

@pytest.mark.asyncio
async def test_zero_retries_runs_once(no_sleep):
    op = AsyncMock(side_effect=UpstreamTimeoutError("timeout"))
    with pytest.raises(UpstreamTimeoutError):
        await retry_with_backoff(op, BackoffPolicy(max_retries=0))
    op.assert_awaited_once()

@pytest.mark.asyncio
async def test_jitter_stays_within_ten_percent(policy, no_sleep):
    op = AsyncMock(side_effect=[UpstreamTimeoutError("timeout")] * 3 + ["ok"])
    await retry_with_backoff(op, policy)

    for attempt, call in enumerate(no_sleep.await_args_list):
        delay = compute_backoff_delay(attempt, policy)
        assert delay <= call.args[0] <= delay + 0.1 * delay

@pytest.mark.asyncio
async def test_retry_events_are_emitted(policy, no_sleep, recorder):
    op = AsyncMock(side_effect=[UpstreamTimeoutError("timeout"), "ok"])
    await retry_with_backoff(op, policy, operation_name="POST /api/users/query", event_handler=recorder)

    events = recorder.recent()
    assert len(events) == 1
    assert events[0]['event'] == 'RetryScheduled'
    assert events[0]['attempt_number'] == 1
    assert events[0]['error_type'] == 'UpstreamTimeoutError'
    assert events[0]['operation'] == "POST /api/users/query"

@pytest.mark.parametrize("kwargs", [
    {"max_retries": -1},
    {"base_delay": -0.5},
    {"max_delay": -1},
    {"backoff_factor": 0.5},
])
def test_invalid_policy(kwargs):
    with pytest.raises(ConfigurationError):
        BackoffPolicy(**kwargs)
