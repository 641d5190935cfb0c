"""
Circuit breaker for hazard data sources
Stops calling a dependency after repeated consecutive failures and lets a
single trial call through once the reset window has passed
"""

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

from compound_risk.exceptions import CircuitOpenError, SourceDataNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"  # calls pass through
    OPEN = "open"  # calls rejected without being attempted
    HALF_OPEN = "half_open"  # one trial call in flight


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker guarding one named operation

    Closed: failures increment ``consecutive_failures``, a success resets it.
    Open once ``failure_threshold`` consecutive failures are seen; calls then
    raise CircuitOpenError. After ``reset_timeout`` seconds the next call is a
    trial: success closes the breaker, failure reopens it and restarts the
    window. Calls arriving while the trial is in flight are rejected.

    Exceptions listed in ``excluded_exceptions`` are answers from a healthy
    dependency: they propagate but count as a success.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        excluded_exceptions: Tuple[Type[Exception], ...] = (SourceDataNotFoundError,),
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.excluded_exceptions = excluded_exceptions
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_time: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    def reset(self) -> None:
        """Force the breaker closed"""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0
            self._last_failure_time = None

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run an operation through the breaker

        Args:
            operation: Zero-argument coroutine function

        Returns:
            Result of the operation

        Raises:
            CircuitOpenError: If the breaker rejects the call
        """
        self._before_call()
        try:
            result = await operation()
        except asyncio.CancelledError:
            self._on_cancel()
            raise
        except self.excluded_exceptions:
            self._on_success()
            raise
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def wrap(self, operation: Callable[[], Awaitable[T]]) -> Callable[[], Awaitable[T]]:
        """Return a zero-argument coroutine function guarded by this breaker"""

        async def guarded() -> T:
            return await self.call(operation)

        return guarded

    def _before_call(self) -> None:
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return

            now = self._clock()
            if self._last_failure_time is None:
                elapsed = 0.0
            else:
                elapsed = now - self._last_failure_time

            if self._state == CircuitState.OPEN and elapsed > self.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._consecutive_failures = 0
                logger.info(f"Circuit breaker {self.name} half-open, allowing trial call")
                return

            if self._state == CircuitState.HALF_OPEN:
                recovery_time = 0.0
            else:
                recovery_time = max(0.0, self.reset_timeout - elapsed)
            raise CircuitOpenError(self.name, recovery_time)

    def _on_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.info(f"Circuit breaker {self.name} closed after successful trial")
            self._state = CircuitState.CLOSED
            self._consecutive_failures = 0

    def _on_cancel(self) -> None:
        # Cancelled trial: back to OPEN without counting a failure
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN

    def _on_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning(f"Circuit breaker {self.name} reopened after failed trial")
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self.failure_threshold
            ):
                self._state = CircuitState.OPEN
                logger.warning(
                    f"Circuit breaker {self.name} opened after "
                    f"{self._consecutive_failures} consecutive failures"
                )


class CircuitBreakerRegistry:
    """One independent breaker per operation name, created on first use"""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name,
                    failure_threshold=self.failure_threshold,
                    reset_timeout=self.reset_timeout,
                    clock=self._clock,
                )
                self._breakers[name] = breaker
            return breaker

    def states(self) -> Dict[str, CircuitState]:
        with self._lock:
            breakers = dict(self._breakers)
        return {name: breaker.state for name, breaker in breakers.items()}
