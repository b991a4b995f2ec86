"""
Circuit Breaker for ranking provider calls.

Skips a provider that keeps failing so an unreachable service does not cost
every emergency request a full timeout.
"""
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional
import logging

from ..errors import ProviderUnavailable

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "CLOSED"  # Normal operation
    OPEN = "OPEN"  # Failing, reject calls
    HALF_OPEN = "HALF_OPEN"  # Testing if provider recovered


class CircuitBreakerOpenError(ProviderUnavailable):
    """Raised when circuit breaker is OPEN."""
    pass


class CircuitBreaker:
    """
    Circuit breaker for a single ranking provider.

    Opens after `failure_threshold` consecutive failures, lets one trial call
    through after `recovery_s`, and closes again after `success_threshold`
    successes in HALF_OPEN.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        recovery_s: float = 60,
        success_threshold: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_s = recovery_s
        self.success_threshold = success_threshold
        self._clock = clock
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitState.CLOSED

    def _check_state(self) -> None:
        if self.state != CircuitState.OPEN:
            return
        if self.last_failure_time is not None and (self._clock() - self.last_failure_time) >= self.recovery_s:
            logger.info(f"Circuit breaker [{self.name}] transitioning to HALF_OPEN after {self.recovery_s}s")
            self.state = CircuitState.HALF_OPEN
            self.success_count = 0
            return
        raise CircuitBreakerOpenError(
            f"Circuit breaker [{self.name}] is OPEN (failed {self.failure_count} times)"
        )

    def record_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                logger.info(f"Circuit breaker [{self.name}] CLOSED after {self.success_count} successes")
                self.state = CircuitState.CLOSED
                self.failure_count = 0
                self.success_count = 0
        else:
            self.failure_count = 0

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == CircuitState.HALF_OPEN:
            logger.warning(f"Circuit breaker [{self.name}] back to OPEN after failure in HALF_OPEN state")
            self.state = CircuitState.OPEN
            self.success_count = 0
        elif self.failure_count >= self.failure_threshold:
            logger.error(
                f"Circuit breaker [{self.name}] OPENED after {self.failure_count} failures "
                f"(threshold: {self.failure_threshold})"
            )
            self.state = CircuitState.OPEN

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Execute async function with circuit breaker protection.

        Raises:
            CircuitBreakerOpenError: If circuit is OPEN
            Exception: If func raises exception
        """
        self._check_state()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self):
        """Manually reset circuit breaker to CLOSED state."""
        logger.info(f"Circuit breaker [{self.name}] manually reset to CLOSED")
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = None

    def get_state(self) -> dict:
        """Get current circuit breaker state."""
        return {
            'state': self.state.value,
            'failure_count': self.failure_count,
            'failure_threshold': self.failure_threshold,
            'success_count': self.success_count,
            'last_failure_time': self.last_failure_time,
            'recovery_s': self.recovery_s,
        }
