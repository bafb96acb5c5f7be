"""
Reliability patterns for RoomLedger.

Provides an asyncio circuit breaker, opt-in retry logic and performance
tracking for calls across the network boundary.
"""

import logging
import time
from enum import Enum
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Optional, Type

import structlog
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from roomledger.core.exceptions import CircuitBreakerError

logger = structlog.get_logger(__name__)


class CircuitBreakerState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for coroutine calls.

    Prevents hammering a failing backend by opening the circuit when the
    failure threshold is exceeded. Everything runs on one event loop, so no
    locking is needed.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        expected_exception: Type[Exception] = Exception,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitBreakerState.CLOSED

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await ``func`` with circuit breaker protection."""
        if self.state == CircuitBreakerState.OPEN:
            if self._should_attempt_reset():
                self.state = CircuitBreakerState.HALF_OPEN
                logger.info("Circuit breaker half-open", name=self.name)
            else:
                raise CircuitBreakerError(
                    f"Circuit breaker '{self.name}' is open. "
                    f"Next attempt allowed at {self.last_failure_time + self.recovery_timeout}"
                )

        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _should_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt reset."""
        return (
            self.last_failure_time is not None
            and time.time() >= self.last_failure_time + self.recovery_timeout
        )

    def _on_success(self):
        self.failure_count = 0
        if self.state == CircuitBreakerState.HALF_OPEN:
            self.state = CircuitBreakerState.CLOSED
            logger.info("Circuit breaker closed", name=self.name)

    def _on_failure(self):
        self.failure_count += 1
        self.last_failure_time = time.time()

        tripped = self.failure_count >= self.failure_threshold
        if self.state == CircuitBreakerState.HALF_OPEN or tripped:
            self.state = CircuitBreakerState.OPEN
            logger.warning(
                "Circuit breaker opened",
                name=self.name,
                failure_count=self.failure_count,
                threshold=self.failure_threshold,
            )

    def reset(self) -> None:
        self.failure_count = 0
        self.state = CircuitBreakerState.CLOSED
        self.last_failure_time = None
        logger.info("Circuit breaker reset", name=self.name)

    @property
    def status(self) -> Dict[str, Any]:
        """Get current circuit breaker status."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "last_failure_time": self.last_failure_time,
            "next_attempt_time": (
                self.last_failure_time + self.recovery_timeout if self.last_failure_time else None
            ),
        }


async def call_with_retry(
    func: Callable[..., Awaitable[Any]],
    *args,
    max_attempts: int = 1,
    backoff_max: float = 10.0,
    retry_exceptions: tuple = (Exception,),
    **kwargs,
) -> Any:
    """
    Await ``func`` with exponential backoff between attempts.

    ``max_attempts=1`` (the default) makes a single attempt and re-raises the
    original exception untouched.
    """
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=0.5, max=backoff_max),
        retry=retry_if_exception_type(retry_exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            return await func(*args, **kwargs)


def track_performance(operation_name: str):
    """
    Decorator to log the duration of a coroutine.

    Args:
        operation_name: Name of the operation for logging
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.warning(
                    "Operation failed",
                    operation=operation_name,
                    duration_seconds=round(time.time() - start_time, 4),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise

            logger.debug(
                "Operation completed",
                operation=operation_name,
                duration_seconds=round(time.time() - start_time, 4),
            )
            return result

        return wrapper

    return decorator
