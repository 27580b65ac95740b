"""Circuit breaker guarding the analyzer endpoint."""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Calls pass through
    OPEN = "open"  # Calls fail fast
    HALF_OPEN = "half_open"  # Probing whether the service recovered


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""

    failure_threshold: int = 5  # Consecutive failures before opening
    timeout_seconds: float = 60  # Open duration before probing
    half_open_max_calls: int = 1  # Concurrent probes while half-open
    success_threshold: int = 1  # Probe successes needed to close


class CircuitBreakerOpen(Exception):
    """Raised when a call is rejected because the circuit is open."""

    def __init__(self, service_name: str, retry_after: float):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker open for {service_name}, retry after {retry_after:.0f}s"
        )


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    CLOSED -> OPEN after `failure_threshold` failures in a row.
    OPEN -> HALF_OPEN once `timeout_seconds` have elapsed.
    HALF_OPEN -> CLOSED after `success_threshold` successes, back to OPEN on any failure.

    Only failures the caller marks as counting (see `call(counts=...)`) move
    the breaker; input errors such as an unsupported language must not.
    """

    def __init__(self, name: str, config: Optional[CircuitBreakerConfig] = None):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._half_open_calls = 0
        self._opened_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        counts: Callable[[BaseException], bool] = lambda e: True,
        **kwargs: Any,
    ) -> T:
        """
        Run `func` through the breaker.

        Raises:
            CircuitBreakerOpen: if the circuit rejects the call
            Exception: whatever `func` raised, after recording it
        """
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if self._seconds_until_half_open() > 0:
                    raise CircuitBreakerOpen(self.name, self._seconds_until_half_open())
                self._transition(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    raise CircuitBreakerOpen(self.name, self.config.timeout_seconds)
                self._half_open_calls += 1

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            async with self._lock:
                if self._state == CircuitState.HALF_OPEN:
                    self._half_open_calls = max(0, self._half_open_calls - 1)
                if counts(e):
                    self._record_failure(e)
                elif self._state == CircuitState.HALF_OPEN:
                    # The service answered; only the input was bad.
                    self._record_success()
            raise

        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_calls = max(0, self._half_open_calls - 1)
            self._record_success()
        return result

    def _record_success(self) -> None:
        self._failures = 0
        self._successes += 1
        if self._state == CircuitState.HALF_OPEN and self._successes >= self.config.success_threshold:
            self._transition(CircuitState.CLOSED)

    def _record_failure(self, error: BaseException) -> None:
        self._failures += 1
        self._successes = 0
        logger.warning(
            f"Circuit {self.name} failure ({self._failures}/{self.config.failure_threshold}): {error}"
        )
        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif self._state == CircuitState.CLOSED and self._failures >= self.config.failure_threshold:
            self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        self._state = new_state
        self._successes = 0
        self._half_open_calls = 0
        if new_state == CircuitState.OPEN:
            self._opened_at = time.monotonic()
            logger.error(f"Circuit {self.name} opened after {self._failures} failures")
        elif new_state == CircuitState.HALF_OPEN:
            self._failures = 0
            logger.info(f"Circuit {self.name} entering half-open state")
        else:
            self._failures = 0
            self._opened_at = None
            logger.info(f"Circuit {self.name} closed after recovery")

    def _seconds_until_half_open(self) -> float:
        if self._opened_at is None:
            return 0.0
        elapsed = time.monotonic() - self._opened_at
        return max(0.0, self.config.timeout_seconds - elapsed)

    async def reset(self) -> None:
        """Manually reset circuit to CLOSED state."""
        async with self._lock:
            logger.info(f"Circuit {self.name} manually reset")
            self._transition(CircuitState.CLOSED)
