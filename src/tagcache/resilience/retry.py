"""
TagCache - Retry Logic with Exponential Backoff

Synchronous retry wrapper used by the HTTP transport.

- Retry decision is an explicit predicate (connection/timeout errors by default)
- Backoff schedule: base_delay * exponential_base^(n-1) before retry n, capped
- The wrapper returns a RetryOutcome instead of raising, so callers decide
  how to surface the final error
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from ..errors import is_retryable_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_retries: Retries after the first attempt (default: 3)
        base_delay_ms: Delay before the first retry in milliseconds (default: 100)
        max_delay_ms: Cap applied to every delay (default: 1000)
        exponential_base: Exponential backoff base (default: 2.0)
    """

    max_retries: int = 3
    base_delay_ms: float = 100.0
    max_delay_ms: float = 1000.0
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be non-negative")
        if self.max_delay_ms < 0:
            raise ValueError("max_delay_ms must be non-negative")
        if self.exponential_base < 1.0:
            raise ValueError("exponential_base must be >= 1.0")


def exponential_backoff(
    retry_number: int,
    base_delay_ms: float = 100.0,
    exponential_base: float = 2.0,
    max_delay_ms: float = 1000.0,
) -> float:
    """
    Calculate the delay before a retry, in milliseconds.

    Args:
        retry_number: Retry being scheduled (1 for the first retry)
        base_delay_ms: Delay before the first retry
        exponential_base: Base for exponential calculation
        max_delay_ms: Maximum delay cap

    Returns:
        Delay in milliseconds

    Example:
        >>> exponential_backoff(1, base_delay_ms=200)
        200.0
        >>> exponential_backoff(2, base_delay_ms=200)
        400.0
        >>> exponential_backoff(4, base_delay_ms=200)
        1000.0
    """
    if retry_number < 1:
        raise ValueError("retry_number starts at 1")

    return min(float(base_delay_ms) * (exponential_base ** (retry_number - 1)), float(max_delay_ms))


@dataclass
class RetryOutcome(Generic[T]):
    """
    Result of a retried call.

    Exactly one of ``value``/``error`` is meaningful: ``error`` is None on
    success.
    """

    value: T | None = None
    error: Exception | None = None
    attempts: int = 0
    delays_ms: list[float] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the final error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def with_retry_sync(
    func: Callable[[], T],
    config: RetryConfig | None = None,
    *,
    is_retryable: Callable[[Exception], bool] = is_retryable_error,
    on_retry: Callable[[int, Exception, float], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryOutcome[T]:
    """
    Execute a synchronous function with retry logic.

    Args:
        func: Zero-argument callable to execute
        config: Retry configuration (uses defaults if None)
        is_retryable: Predicate deciding whether an error is transient
        on_retry: Optional callback called before each retry (retry_number, error, delay_ms)
        sleep: Sleep function taking seconds (injectable for tests)

    Returns:
        RetryOutcome holding either the value or the last error. Errors that
        are not Exceptions (KeyboardInterrupt, SystemExit) propagate.
    """
    if config is None:
        config = RetryConfig()

    name = getattr(func, "__name__", repr(func))
    outcome: RetryOutcome[T] = RetryOutcome()

    for attempt in range(config.max_retries + 1):
        outcome.attempts = attempt + 1
        try:
            outcome.value = func()
            outcome.error = None
            if attempt > 0:
                logger.info(
                    f"Retry succeeded after {attempt} retries",
                    extra={"attempt": attempt, "function": name},
                )
            return outcome

        except Exception as e:
            outcome.error = e

            if not is_retryable(e):
                logger.debug(
                    f"Non-retryable error, not retrying: {e}",
                    extra={"error_type": type(e).__name__, "function": name},
                )
                return outcome

            if attempt >= config.max_retries:
                if config.max_retries > 0:
                    logger.error(
                        f"All {config.max_retries} retries exhausted",
                        extra={"function": name, "error": str(e), "error_type": type(e).__name__},
                    )
                return outcome

            retry_number = attempt + 1
            delay_ms = exponential_backoff(
                retry_number,
                base_delay_ms=config.base_delay_ms,
                exponential_base=config.exponential_base,
                max_delay_ms=config.max_delay_ms,
            )
            outcome.delays_ms.append(delay_ms)

            logger.warning(
                f"Retry attempt {retry_number}/{config.max_retries} after {delay_ms:.0f}ms",
                extra={
                    "attempt": retry_number,
                    "max_retries": config.max_retries,
                    "delay_ms": delay_ms,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "function": name,
                },
            )

            if on_retry:
                try:
                    on_retry(retry_number, e, delay_ms)
                except Exception as callback_error:
                    logger.error(f"Retry callback failed: {callback_error}")

            sleep(delay_ms / 1000.0)

    return outcome
