"""
Circuit breaker guarding calls to flaky collaborators.

The flag cache uses it around invalidation publishing so that a dead
broadcast channel costs one fast rejection per write instead of one
network timeout per write.
"""

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict

from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"  # One probe call allowed through


class CircuitBreakerOpenException(Exception):
    """Raised instead of calling through while the breaker is open."""


class CircuitBreaker:
    """Opens after ``failure_threshold`` consecutive failures.

    While open, calls are rejected until ``recovery_timeout`` seconds
    have passed; the next call is then a probe whose outcome closes or
    reopens the breaker.
    """

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 name: str = "default",
                 clock: Callable[[], float] = time.monotonic):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.clock = clock
        self.logger = get_logger(f"flags.circuit_breaker.{name}")

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    def _allow(self) -> bool:
        if self._state != CircuitBreakerState.OPEN:
            return True
        if self.clock() - self._opened_at < self.recovery_timeout:
            return False
        self._state = CircuitBreakerState.HALF_OPEN
        self.logger.info("Circuit breaker half-open, probing", breaker=self.name)
        return True

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run ``func`` unless the breaker is open."""
        if not self._allow():
            raise CircuitBreakerOpenException(f"Circuit breaker '{self.name}' is open")

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise

        self._on_success()
        return result

    def _on_success(self):
        if self._state == CircuitBreakerState.HALF_OPEN:
            self.logger.info("Circuit breaker closed after successful probe", breaker=self.name)
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0

    def _on_failure(self):
        self._failure_count += 1
        probing = self._state == CircuitBreakerState.HALF_OPEN
        if probing or self._failure_count >= self.failure_threshold:
            self._state = CircuitBreakerState.OPEN
            self._opened_at = self.clock()
            self.logger.warning(
                "Circuit breaker opened",
                breaker=self.name,
                failure_count=self._failure_count,
                threshold=self.failure_threshold
            )

    def reset(self):
        """Force the breaker closed."""
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "opened_at": self._opened_at,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }

    def is_open(self) -> bool:
        return self._state == CircuitBreakerState.OPEN
