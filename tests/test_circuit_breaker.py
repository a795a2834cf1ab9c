import pytest

from lirax.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
)
from lirax.services.errors import CircuitOpenError, NetworkError


def reset_error():
    return NetworkError("Connection to LiraX was reset.", code="ECONNRESET")


class Operation:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.fail:
            raise reset_error()
        return "ok"


async def trip(breaker, times=5):
    failing = Operation(fail=True)
    for _ in range(times):
        with pytest.raises(NetworkError):
            await breaker.call(failing)
    return failing


@pytest.mark.asyncio
async def test_opens_after_five_failures_and_rejects_without_calling(clock):
    breaker = CircuitBreaker("default", clock=clock)

    failing = await trip(breaker)
    assert breaker.state == CircuitState.OPEN
    assert failing.calls == 5

    with pytest.raises(CircuitOpenError) as exc_info:
        await breaker.call(failing)

    assert failing.calls == 5
    assert 0 < exc_info.value.reset_after_seconds <= 60


@pytest.mark.asyncio
async def test_success_resets_failure_count(clock):
    breaker = CircuitBreaker("default", clock=clock)

    await trip(breaker, times=4)
    await breaker.call(Operation())
    await trip(breaker, times=4)

    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_after_timeout_then_closes_after_three_successes(clock):
    breaker = CircuitBreaker("default", clock=clock)
    await trip(breaker)

    clock.advance(61)
    ok = Operation()

    assert await breaker.call(ok) == "ok"
    assert breaker.state == CircuitState.HALF_OPEN

    await breaker.call(ok)
    await breaker.call(ok)
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_half_open_failure_reopens(clock):
    breaker = CircuitBreaker("default", clock=clock)
    await trip(breaker)

    clock.advance(61)
    await breaker.call(Operation())

    with pytest.raises(NetworkError):
        await breaker.call(Operation(fail=True))

    assert breaker.state == CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        await breaker.call(Operation())


@pytest.mark.asyncio
async def test_still_open_before_timeout(clock):
    breaker = CircuitBreaker("default", clock=clock)
    await trip(breaker)

    clock.advance(30)
    with pytest.raises(CircuitOpenError):
        await breaker.call(Operation())
    assert breaker.get_time_until_reset() == pytest.approx(30)


def test_exhausted_probe_budget_reopens(clock):
    breaker = CircuitBreaker("default", clock=clock)
    for _ in range(5):
        breaker.before_request()
        breaker.record_failure()

    clock.advance(61)
    for _ in range(3):
        breaker.before_request()

    with pytest.raises(CircuitOpenError):
        breaker.before_request()
    assert breaker.state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_manual_reset(clock):
    breaker = CircuitBreaker("default", clock=clock)
    await trip(breaker)

    breaker.reset()

    assert breaker.state == CircuitState.CLOSED
    assert await breaker.call(Operation()) == "ok"


def test_registry_creates_breakers_lazily_per_tenant(clock):
    registry = CircuitBreakerRegistry(clock=clock)

    assert "tenant-1" not in registry
    first = registry.get("tenant-1")

    assert registry.get("tenant-1") is first
    assert registry.get("tenant-2") is not first
    assert len(registry) == 2


@pytest.mark.asyncio
async def test_registry_reports_open_circuits(clock):
    registry = CircuitBreakerRegistry(clock=clock)
    await trip(registry.get("tenant-1"))
    registry.get("tenant-2")

    assert registry.get_open_circuits() == ["tenant-1"]
    assert registry.get_all_status()["tenant-1"]["state"] == "OPEN"

    registry.reset_all()
    assert registry.get_open_circuits() == []


@pytest.mark.asyncio
async def test_registry_cleanup_keeps_failing_and_recent_breakers(clock):
    registry = CircuitBreakerRegistry(clock=clock)
    registry.get("idle")
    await trip(registry.get("failing"), times=2)

    clock.advance(3000)
    registry.get("recent").before_request()
    clock.advance(700)

    assert registry.cleanup_idle(3600) == 1
    assert "idle" not in registry
    assert "failing" in registry
    assert "recent" in registry
