"""Retry and circuit breaker helpers for collaborator calls."""

import time
import random
import logging
import threading
from typing import Callable, Any, Optional, List, Type
from functools import wraps

from .exceptions import WorkflowGuardError, StorageError
from .logging import get_logger, log_with_context


logger = get_logger(__name__)


class CircuitOpenError(WorkflowGuardError):
    """Raised when a call is refused because its circuit breaker is open."""

    def __init__(self, message: str, name: Optional[str] = None, **kwargs):
        super().__init__(message, recoverable=True, **kwargs)
        if name:
            self.add_context(circuit=name)


class RetryConfig:
    """How often and how patiently to retry a storage or collaborator call."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 5.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[List[Type[Exception]]] = None
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions or [StorageError]

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """Recoverable guard errors and the configured exception types are retried."""
        if attempt >= self.max_attempts:
            return False

        if isinstance(exception, WorkflowGuardError):
            return exception.recoverable

        return any(isinstance(exception, exc_type) for exc_type in self.retryable_exceptions)

    def get_delay(self, attempt: int) -> float:
        """Backoff before the next attempt, capped at max_delay and optionally jittered."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)

        return delay


def with_retry(config: Optional[RetryConfig] = None):
    """Retry the decorated call on recoverable errors; the last error propagates."""
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            return _execute_with_retry(func, config, *args, **kwargs)
        return wrapper

    return decorator


def _execute_with_retry(func: Callable, config: RetryConfig, *args, **kwargs) -> Any:
    for attempt in range(1, config.max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not config.should_retry(e, attempt):
                log_with_context(
                    logger, logging.ERROR,
                    f"Giving up on {func.__name__} after {attempt} attempt(s)",
                    operation=func.__name__,
                    error_type=type(e).__name__,
                    error_message=str(e),
                    attempts_used=attempt
                )
                raise

            delay = config.get_delay(attempt)
            log_with_context(
                logger, logging.WARNING,
                f"Retry attempt {attempt}/{config.max_attempts} for {func.__name__}",
                operation=func.__name__,
                error_type=type(e).__name__,
                error_message=str(e),
                attempt=attempt,
                max_attempts=config.max_attempts
            )
            time.sleep(delay)


class CircuitBreaker:
    """Circuit breaker that stops calling a collaborator after repeated failures.

    States follow the usual closed -> open -> half-open cycle. While open,
    calls fail immediately with CircuitOpenError until ``recovery_timeout``
    seconds have passed; the next call is then let through as a probe.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._state = "closed"
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        """Current breaker state: closed, open or half-open."""
        with self._lock:
            return self._state

    def __call__(self, func: Callable) -> Callable:
        """Use the breaker as a decorator."""
        @wraps(func)
        def wrapper(*args, **kwargs):
            return self.call(func, *args, **kwargs)
        return wrapper

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Call func unless the circuit is open; failures count towards opening it."""
        with self._lock:
            if self._state == "open":
                if self._clock() - self._opened_at >= self.recovery_timeout:
                    self._state = "half-open"
                    logger.info(f"Circuit breaker '{self.name}' transitioning to half-open state")
                else:
                    raise CircuitOpenError(
                        f"Circuit breaker '{self.name}' is open",
                        name=self.name
                    )

        try:
            result = func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self):
        with self._lock:
            if self._state == "half-open":
                logger.info(f"Circuit breaker '{self.name}' reset to closed state")
            self._state = "closed"
            self._failure_count = 0

    def _on_failure(self):
        with self._lock:
            self._failure_count += 1
            if self._state == "half-open" or self._failure_count >= self.failure_threshold:
                self._state = "open"
                self._opened_at = self._clock()
                log_with_context(
                    logger, logging.ERROR,
                    f"Circuit breaker '{self.name}' opened after {self._failure_count} failures",
                    circuit=self.name,
                    failures=self._failure_count
                )
