"""
Tests for the per-provider circuit breaker.
"""
import pytest

from donormatch.services.emergency_matching.providers.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def _fail():
    raise RuntimeError("boom")


async def _ok():
    return "ranked"


@pytest.mark.asyncio
async def test_opens_then_recovers_after_timeout():
    clock = FakeClock()
    breaker = CircuitBreaker("gemini", failure_threshold=2, recovery_s=60, clock=clock)

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await breaker.call_async(_fail)
    assert breaker.state == CircuitState.OPEN

    with pytest.raises(CircuitBreakerOpenError):
        await breaker.call_async(_ok)

    clock.now += 60
    assert await breaker.call_async(_ok) == "ranked"
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


@pytest.mark.asyncio
async def test_failure_in_half_open_reopens():
    clock = FakeClock()
    breaker = CircuitBreaker("openai", failure_threshold=1, recovery_s=10, clock=clock)

    with pytest.raises(RuntimeError):
        await breaker.call_async(_fail)
    clock.now += 10
    with pytest.raises(RuntimeError):
        await breaker.call_async(_fail)

    assert breaker.state == CircuitState.OPEN
    assert breaker.get_state()["failure_count"] == 2


@pytest.mark.asyncio
async def test_success_resets_consecutive_failures():
    breaker = CircuitBreaker("ollama", failure_threshold=3)

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await breaker.call_async(_fail)
    await breaker.call_async(_ok)

    assert breaker.failure_count == 0
    assert breaker.state == CircuitState.CLOSED
