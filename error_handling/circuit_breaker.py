"""Circuit breaker pattern for upstream daemon calls."""
import time
import functools
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict

import structlog

logger = structlog.get_logger()


class CircuitBreakerError(Exception):
    """Raised when a call is rejected because the circuit is open."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"circuit open for {name}")


class CircuitBreaker:
    """
    Implements the Circuit Breaker pattern to prevent cascading failures.

    A daemon that keeps timing out would otherwise cost every aggregation
    round a full timeout. Once it exceeds the failure threshold its breaker
    opens and calls are rejected immediately until the recovery timeout has
    passed.

    Circuit states:
    - CLOSED: Normal operation, calls pass through to the node
    - OPEN: Calls are rejected without touching the network
    - HALF-OPEN: Trial calls decide whether the node has recovered
    """

    STATE_CLOSED = 'closed'
    STATE_OPEN = 'open'
    STATE_HALF_OPEN = 'half-open'

    def __init__(self, name: str = "", failure_threshold: int = 5,
                 recovery_timeout: float = 60, half_open_success_threshold: int = 1,
                 clock: Callable[[], float] = time.time):
        """
        Initialize a new Circuit Breaker.

        Args:
            name: Label used in logs, usually the node identity
            failure_threshold: Number of failures before opening the circuit
            recovery_timeout: Time in seconds to wait before attempting recovery
            half_open_success_threshold: Number of successful calls needed to close circuit
            clock: Time source, replaceable in tests
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_success_threshold = half_open_success_threshold
        self._clock = clock

        # Internal state
        self._state = self.STATE_CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = 0.0

    @property
    def state(self) -> str:
        """Current state; an open circuit past its recovery timeout reads as half-open."""
        if (self._state == self.STATE_OPEN
                and self._clock() - self.last_failure_time >= self.recovery_timeout):
            logger.info("circuit_breaker_half_open",
                        breaker=self.name,
                        recovery_timeout=self.recovery_timeout)
            self._state = self.STATE_HALF_OPEN
            self.success_count = 0
        return self._state

    def __call__(self, func):
        """Use as a decorator on coroutine functions that might fail."""
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            return await self.call(func, *args, **kwargs)
        return wrapper

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Await the protected coroutine function with circuit breaker protection.

        Raises:
            CircuitBreakerError: If the circuit is open
            Exception: Any exception raised by the function
        """
        if self.state == self.STATE_OPEN:
            logger.debug("circuit_breaker_open",
                         breaker=self.name,
                         seconds_remaining=self.recovery_timeout - (self._clock() - self.last_failure_time))
            raise CircuitBreakerError(self.name)

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self._record_failure(e)
            raise

        self._record_success()
        return result

    def _record_success(self) -> None:
        if self._state == self.STATE_HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.half_open_success_threshold:
                logger.info("circuit_breaker_closed",
                            breaker=self.name,
                            success_count=self.success_count)
                self._state = self.STATE_CLOSED
                self.failure_count = 0
        elif self._state == self.STATE_CLOSED:
            self.failure_count = 0

    def _record_failure(self, error: Exception) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self._state == self.STATE_CLOSED and self.failure_count >= self.failure_threshold:
            logger.warning("circuit_breaker_tripped",
                           breaker=self.name,
                           failure_count=self.failure_count,
                           exception=str(error))
            self._state = self.STATE_OPEN
        elif self._state == self.STATE_HALF_OPEN:
            logger.warning("circuit_breaker_recovery_failed",
                           breaker=self.name,
                           exception=str(error))
            self._state = self.STATE_OPEN

    def reset(self):
        """Reset the circuit breaker to closed state."""
        self._state = self.STATE_CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = 0.0
        logger.info("circuit_breaker_reset", breaker=self.name)

    def force_open(self):
        """Manually force the circuit into open state."""
        self._state = self.STATE_OPEN
        self.last_failure_time = self._clock()
        logger.warning("circuit_breaker_forced_open", breaker=self.name)

    def get_state(self) -> Dict[str, Any]:
        """Get the current state of the circuit breaker."""
        return {
            'state': self.state,
            'failure_count': self.failure_count,
            'success_count': self.success_count,
            'last_failure_time': self.last_failure_time
        }


class BreakerRegistry:
    """
    One lazily created :class:`CircuitBreaker` per upstream identity.

    Clients may name arbitrary hosts, so the registry holds at most
    ``max_size`` breakers. When full, the least recently used closed breaker
    is dropped; open and half-open breakers are only dropped when no closed
    one is left.
    """

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60,
                 max_size: int = 1000, clock: Callable[[], float] = time.time):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.max_size = max_size
        self._clock = clock
        self._breakers: "OrderedDict[str, CircuitBreaker]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._breakers)

    def get(self, name: str) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is not None:
            self._breakers.move_to_end(name)
            return breaker

        if len(self._breakers) >= self.max_size:
            self._evict()
        breaker = CircuitBreaker(
            name=name,
            failure_threshold=self.failure_threshold,
            recovery_timeout=self.recovery_timeout,
            clock=self._clock
        )
        self._breakers[name] = breaker
        return breaker

    def _evict(self) -> None:
        for name, breaker in self._breakers.items():
            if breaker.state == CircuitBreaker.STATE_CLOSED:
                break
        else:
            name = next(iter(self._breakers))
        del self._breakers[name]
        logger.debug("circuit_breaker_evicted", breaker=name, size=len(self._breakers))

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.get_state() for name, breaker in self._breakers.items()}
