"""Tests for the upstream circuit breaker."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from error_handling.circuit_breaker import BreakerRegistry, CircuitBreaker, CircuitBreakerError
from gateway.exceptions import UpstreamError


@pytest.fixture
def circuit_breaker(clock):
    """Create a circuit breaker for testing."""
    return CircuitBreaker(
        name="seed1.example:11898",
        failure_threshold=3,
        recovery_timeout=1,
        half_open_success_threshold=2,
        clock=clock
    )


def test_circuit_breaker_functionality(circuit_breaker, clock):
    """Test circuit breaker protecting against a failing node."""
    failing_func = AsyncMock(side_effect=UpstreamError("seed1.example:11898", "timed out"))
    protected_func = circuit_breaker(failing_func)

    # Circuit should initially be closed
    assert circuit_breaker.state == CircuitBreaker.STATE_CLOSED

    # Call until circuit opens
    for _ in range(3):
        with pytest.raises(UpstreamError):
            asyncio.run(protected_func())

    assert circuit_breaker.state == CircuitBreaker.STATE_OPEN

    # Further calls are rejected without calling the function
    with pytest.raises(CircuitBreakerError) as excinfo:
        asyncio.run(protected_func())
    assert excinfo.value.name == "seed1.example:11898"
    assert failing_func.await_count == 3

    # Wait for recovery timeout
    clock.advance(1.1)
    assert circuit_breaker.state == CircuitBreaker.STATE_HALF_OPEN

    failing_func.side_effect = None
    failing_func.return_value = "success"

    # Two successes are needed to close the circuit
    assert asyncio.run(protected_func()) == "success"
    assert circuit_breaker.state == CircuitBreaker.STATE_HALF_OPEN
    assert asyncio.run(protected_func()) == "success"
    assert circuit_breaker.state == CircuitBreaker.STATE_CLOSED


def test_failure_in_half_open_reopens(circuit_breaker, clock):
    circuit_breaker.force_open()
    clock.advance(2)
    assert circuit_breaker.state == CircuitBreaker.STATE_HALF_OPEN

    failing = AsyncMock(side_effect=UpstreamError("node", "refused"))
    with pytest.raises(UpstreamError):
        asyncio.run(circuit_breaker.call(failing))
    assert circuit_breaker.state == CircuitBreaker.STATE_OPEN


def test_success_resets_failure_count(circuit_breaker):
    failing = AsyncMock(side_effect=UpstreamError("node", "refused"))
    working = AsyncMock(return_value={"height": 1})

    for _ in range(2):
        with pytest.raises(UpstreamError):
            asyncio.run(circuit_breaker.call(failing))
    asyncio.run(circuit_breaker.call(working))

    assert circuit_breaker.failure_count == 0
    assert circuit_breaker.state == CircuitBreaker.STATE_CLOSED


def test_reset_and_state_snapshot(circuit_breaker):
    circuit_breaker.force_open()
    assert circuit_breaker.get_state()["state"] == CircuitBreaker.STATE_OPEN

    circuit_breaker.reset()
    state = circuit_breaker.get_state()
    assert state["state"] == CircuitBreaker.STATE_CLOSED
    assert state["failure_count"] == 0


def test_registry_hands_out_one_breaker_per_node(clock):
    registry = BreakerRegistry(failure_threshold=2, recovery_timeout=30, clock=clock)

    first = registry.get("seed1.example:11898")
    assert registry.get("seed1.example:11898") is first
    assert registry.get("seed2.example:11898") is not first
    assert first.failure_threshold == 2
    assert first.recovery_timeout == 30

    first.force_open()
    snapshot = registry.snapshot()
    assert snapshot["seed1.example:11898"]["state"] == CircuitBreaker.STATE_OPEN
    assert snapshot["seed2.example:11898"]["state"] == CircuitBreaker.STATE_CLOSED


def test_registry_is_bounded(clock):
    registry = BreakerRegistry(max_size=50, clock=clock)

    for i in range(1000):
        registry.get(f"h{i}.example:11898")

    assert len(registry) == 50
    assert "h999.example:11898" in registry.snapshot()
    assert "h0.example:11898" not in registry.snapshot()


def test_registry_evicts_closed_breakers_first(clock):
    registry = BreakerRegistry(max_size=3, clock=clock)
    tripped = registry.get("seed1.example:11898")
    tripped.force_open()
    registry.get("seed2.example:11898")
    registry.get("seed3.example:11898")

    registry.get("seed4.example:11898")

    names = set(registry.snapshot())
    assert names == {"seed1.example:11898", "seed3.example:11898", "seed4.example:11898"}
    assert registry.get("seed1.example:11898") is tripped


def test_registry_reuse_refreshes_recency(clock):
    registry = BreakerRegistry(max_size=2, clock=clock)
    first = registry.get("seed1.example:11898")
    registry.get("seed2.example:11898")
    registry.get("seed1.example:11898")

    registry.get("seed3.example:11898")

    assert set(registry.snapshot()) == {"seed1.example:11898", "seed3.example:11898"}
    assert registry.get("seed1.example:11898") is first
