# tests/unit/services/test_rate_gate.py
import asyncio
from collections import Counter

import pytest
from unittest.mock import AsyncMock

from syncbridge.core.enums import AlertSeverity, AlertType, PlatformName
from syncbridge.core.exceptions import PlatformAPIError, RateLimitExceededError, ValidationError
from syncbridge.services.alert_service import AlertService
from syncbridge.services.rate_gate import RateGate

USER = "user-1"


@pytest.fixture
def alert_service(session_factory):
    return AlertService(session_factory)


@pytest.fixture
def gate(session_factory, settings, alert_service, clock):
    return RateGate(session_factory, settings, alert_service=alert_service, clock=clock, sleep=clock.sleep)


def throttled_error(retry_after=None):
    return PlatformAPIError("Too many requests", status_code=429, retry_after=retry_after, platform="shopify")


@pytest.mark.asyncio
async def test_fresh_user_can_proceed(gate):
    decision = await gate.can_proceed(USER, PlatformName.SHOPIFY)

    assert decision.allowed is True
    assert decision.wait_seconds == 0.0


@pytest.mark.asyncio
async def test_failure_throttles_with_exponential_backoff(gate, clock):
    # Shopify backs off 30s * 1.5 ** consecutive_errors
    failure = await gate.record_failure(USER, PlatformName.SHOPIFY, status_code=429)

    assert failure.consecutive_errors == 1
    assert failure.wait_seconds == pytest.approx(45.0)
    assert failure.should_retry is True

    decision = await gate.can_proceed(USER, PlatformName.SHOPIFY)
    assert decision.allowed is False
    assert decision.wait_seconds == pytest.approx(45.0)

    clock.advance(44)
    assert (await gate.can_proceed(USER, PlatformName.SHOPIFY)).allowed is False

    clock.advance(1)
    assert (await gate.can_proceed(USER, PlatformName.SHOPIFY)).allowed is True


@pytest.mark.asyncio
async def test_throttle_window_never_moves_backwards(gate, clock):
    first = await gate.record_failure(USER, PlatformName.SHOPIFY, retry_after=100)
    second = await gate.record_failure(USER, PlatformName.SHOPIFY, retry_after=5)

    assert second.throttle_until == first.throttle_until
    assert second.wait_seconds == pytest.approx(100.0)


@pytest.mark.asyncio
async def test_throttle_is_per_user_and_platform(gate):
    await gate.record_failure(USER, PlatformName.SHOPIFY, retry_after=60)

    assert (await gate.can_proceed(USER, PlatformName.NETSUITE)).allowed is True
    assert (await gate.can_proceed("user-2", PlatformName.SHOPIFY)).allowed is True


@pytest.mark.asyncio
async def test_success_resets_consecutive_errors(gate, clock):
    await gate.record_failure(USER, PlatformName.NETSUITE, retry_after=1)
    clock.advance(1)
    await gate.record_success(USER, PlatformName.NETSUITE)

    status = await gate.get_status(USER, PlatformName.NETSUITE)
    assert status["consecutive_errors"] == 0
    assert status["is_throttled"] is False
    assert status["requests_this_minute"] == 1


@pytest.mark.asyncio
async def test_minute_window_limit(gate, clock):
    await gate.update_config(PlatformName.SHOPIFY, {"max_requests_per_minute": 2})
    await gate.record_success(USER, PlatformName.SHOPIFY)
    await gate.record_success(USER, PlatformName.SHOPIFY)

    decision = await gate.can_proceed(USER, PlatformName.SHOPIFY)
    assert decision.allowed is False
    assert decision.wait_seconds == pytest.approx(60.0)

    clock.advance(60)
    assert (await gate.can_proceed(USER, PlatformName.SHOPIFY)).allowed is True


@pytest.mark.asyncio
async def test_update_config_overrides_defaults(gate):
    config = await gate.update_config(PlatformName.NETSUITE, {"burst_limit": 2})

    assert config.burst_limit == 2
    assert (await gate.get_config(PlatformName.NETSUITE)).burst_limit == 2
    assert (await gate.get_config(PlatformName.SHOPIFY)).burst_limit == 4


@pytest.mark.asyncio
async def test_update_config_rejects_unknown_keys(gate):
    with pytest.raises(ValidationError):
        await gate.update_config(PlatformName.SHOPIFY, {"requests_per_fortnight": 3})


@pytest.mark.asyncio
async def test_backoff_is_capped(gate):
    await gate.update_config(PlatformName.NETSUITE, {"max_backoff_seconds": 50})

    failure = await gate.record_failure(USER, PlatformName.NETSUITE)

    # 30 * 2.0 ** 1 = 60, capped at 50
    assert failure.wait_seconds == pytest.approx(50.0)


@pytest.mark.asyncio
async def test_alert_raised_after_third_consecutive_failure(gate, alert_service):
    for _ in range(2):
        await gate.record_failure(USER, PlatformName.SHOPIFY, retry_after=1)
    assert await alert_service.list_alerts(USER) == []

    await gate.record_failure(USER, PlatformName.SHOPIFY, retry_after=1)

    alerts = await alert_service.list_alerts(USER, AlertType.RATE_LIMIT)
    assert len(alerts) == 1
    assert alerts[0].severity == AlertSeverity.HIGH.value
    assert alerts[0].alert_metadata["consecutive_errors"] == 3


@pytest.mark.asyncio
async def test_failure_publishes_rate_limited_event(session_factory, settings, clock):
    publisher = AsyncMock()
    gate = RateGate(session_factory, settings, event_publisher=publisher, clock=clock, sleep=clock.sleep)

    await gate.record_failure(USER, PlatformName.SHOPIFY, retry_after=12)

    publisher.assert_awaited_once()
    kwargs = publisher.await_args.kwargs
    assert kwargs["platform"] == PlatformName.SHOPIFY
    assert kwargs["wait_seconds"] == pytest.approx(12.0)
    assert kwargs["consecutive_errors"] == 1


@pytest.mark.asyncio
async def test_publisher_errors_do_not_break_failure_recording(session_factory, settings, clock):
    publisher = AsyncMock(side_effect=RuntimeError("bus down"))
    gate = RateGate(session_factory, settings, event_publisher=publisher, clock=clock, sleep=clock.sleep)

    failure = await gate.record_failure(USER, PlatformName.SHOPIFY, retry_after=3)

    assert failure.consecutive_errors == 1


@pytest.mark.asyncio
async def test_call_waits_out_rate_limit_and_retries(gate, clock):
    operation = AsyncMock(side_effect=[throttled_error(retry_after=2), {"ok": True}])

    result = await gate.call(USER, PlatformName.SHOPIFY, operation, "get_product")

    assert result == {"ok": True}
    assert operation.await_count == 2
    assert clock.sleeps == [pytest.approx(2.0)]

    status = await gate.get_status(USER, PlatformName.SHOPIFY)
    assert status["consecutive_errors"] == 0


@pytest.mark.asyncio
async def test_call_waits_for_existing_throttle_before_calling(gate, clock):
    await gate.record_failure(USER, PlatformName.SHOPIFY, retry_after=30)
    operation = AsyncMock(return_value=1)

    await gate.call(USER, PlatformName.SHOPIFY, operation)

    assert clock.sleeps == [pytest.approx(30.0)]
    operation.assert_awaited_once()


@pytest.mark.asyncio
async def test_call_gives_up_after_max_consecutive_errors(gate, alert_service):
    operation = AsyncMock(side_effect=throttled_error())

    with pytest.raises(RateLimitExceededError):
        await gate.call(USER, PlatformName.SHOPIFY, operation, "list_products")

    assert operation.await_count == 5
    alerts = await alert_service.list_alerts(USER, AlertType.RATE_LIMIT)
    assert len(alerts) == 3
    assert {a.severity for a in alerts} == {AlertSeverity.HIGH.value, AlertSeverity.CRITICAL.value}


@pytest.mark.asyncio
async def test_call_propagates_other_errors_untouched(gate):
    operation = AsyncMock(side_effect=PlatformAPIError("Not found", status_code=404))

    with pytest.raises(PlatformAPIError):
        await gate.call(USER, PlatformName.NETSUITE, operation)

    status = await gate.get_status(USER, PlatformName.NETSUITE)
    assert status["consecutive_errors"] == 0
    assert status["is_throttled"] is False


@pytest.mark.asyncio
async def test_state_survives_a_new_gate_instance(session_factory, settings, clock):
    first = RateGate(session_factory, settings, clock=clock, sleep=clock.sleep)
    await first.record_failure(USER, PlatformName.SHOPIFY, retry_after=90)

    second = RateGate(session_factory, settings, clock=clock, sleep=clock.sleep)
    decision = await second.can_proceed(USER, PlatformName.SHOPIFY)

    assert decision.allowed is False
    assert decision.wait_seconds == pytest.approx(90.0)


@pytest.mark.asyncio
async def test_concurrent_calls_respect_minute_limit(gate, clock):
    await gate.update_config(PlatformName.SHOPIFY, {"max_requests_per_minute": 2})
    started = clock()
    sent_at = []

    async def operation():
        sent_at.append(clock())
        return len(sent_at)

    results = await asyncio.gather(*(gate.call(USER, PlatformName.SHOPIFY, operation) for _ in range(4)))

    assert sorted(results) == [1, 2, 3, 4]
    assert sent_at.count(started) == 2
    assert max(Counter(sent_at).values()) <= 2
    assert clock.sleeps and min(clock.sleeps) >= 1.0


@pytest.mark.asyncio
async def test_reserve_counts_the_admitted_call(gate):
    await gate.update_config(PlatformName.NETSUITE, {"max_requests_per_minute": 1})

    assert (await gate.reserve(USER, PlatformName.NETSUITE)).allowed is True
    second = await gate.reserve(USER, PlatformName.NETSUITE)

    assert second.allowed is False
    assert second.reason == "per-minute limit reached"
    status = await gate.get_status(USER, PlatformName.NETSUITE)
    assert status["requests_this_minute"] == 1
