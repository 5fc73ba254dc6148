# tests/unit/services/test_batch_runner.py
import asyncio

import pytest
from unittest.mock import AsyncMock

from syncbridge.core.exceptions import PlatformAPIError, RateLimitExceededError
from syncbridge.services.batch_runner import run_batched, with_retry


# --- with_retry ---

@pytest.mark.asyncio
async def test_with_retry_retries_transient_errors_with_backoff():
    operation = AsyncMock(side_effect=[
        PlatformAPIError("Service unavailable", status_code=503),
        asyncio.TimeoutError(),
        "done",
    ])
    sleep = AsyncMock()

    result = await with_retry(operation, max_retries=3, base_delay=1.0, backoff_factor=2.0, jitter_ms=0, sleep=sleep)

    assert result == "done"
    assert operation.await_count == 3
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_permanent_errors():
    operation = AsyncMock(side_effect=PlatformAPIError("Bad request", status_code=400))
    sleep = AsyncMock()

    with pytest.raises(PlatformAPIError):
        await with_retry(operation, jitter_ms=0, sleep=sleep)

    operation.assert_awaited_once()
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_with_retry_leaves_exhausted_rate_limits_alone():
    operation = AsyncMock(side_effect=RateLimitExceededError("still throttled", platform="shopify"))
    sleep = AsyncMock()

    with pytest.raises(RateLimitExceededError):
        await with_retry(operation, jitter_ms=0, sleep=sleep)

    operation.assert_awaited_once()


@pytest.mark.asyncio
async def test_with_retry_reraises_last_error_when_exhausted():
    operation = AsyncMock(side_effect=ConnectionError("connection reset"))
    sleep = AsyncMock()

    with pytest.raises(ConnectionError):
        await with_retry(operation, max_retries=2, base_delay=0.5, jitter_ms=0, sleep=sleep)

    assert operation.await_count == 3
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_with_retry_jitter_stays_within_bound():
    operation = AsyncMock(side_effect=[ConnectionError("reset"), "ok"])
    sleep = AsyncMock()

    await with_retry(operation, base_delay=1.0, jitter_ms=500, sleep=sleep)

    delay = sleep.await_args.args[0]
    assert 1.0 <= delay <= 1.5


# --- run_batched ---

@pytest.mark.asyncio
async def test_run_batched_isolates_failures_and_keeps_order():
    async def operation(item):
        if item == 4:
            raise ValueError("bad item")
        return item * 10

    results = await run_batched(list(range(7)), operation, concurrency_limit=3)

    assert [r.index for r in results] == list(range(7))
    assert [r.success for r in results] == [True, True, True, True, False, True, True]
    assert results[4].error_message == "bad item"
    assert results[6].value == 60


@pytest.mark.asyncio
async def test_run_batched_settles_each_chunk_before_the_next():
    active = 0
    peak = 0
    started = []

    async def operation(item):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        started.append((item, active))
        await asyncio.sleep(0)
        active -= 1
        return item

    await run_batched(list(range(5)), operation, concurrency_limit=2)

    assert peak == 2
    # Item 2 starts only after items 0 and 1 have both finished
    assert dict(started)[2] == 1


@pytest.mark.asyncio
async def test_run_batched_empty_input():
    operation = AsyncMock()

    assert await run_batched([], operation) == []
    operation.assert_not_awaited()


@pytest.mark.asyncio
async def test_run_batched_rejects_zero_concurrency():
    with pytest.raises(ValueError):
        await run_batched([1], AsyncMock(), concurrency_limit=0)
