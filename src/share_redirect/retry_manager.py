"""
Retry Manager for the share redirect control plane.

This module provides bounded retry for transient resolution failures.
The default policy is the one the resolver needs: up to 3 additional
attempts with a fixed 1 second pause. A configurable backoff factor
allows growing delays where a caller wants them.

Definitive outcomes (for example a name that does not exist) are not
retried; the caller's `is_retryable` predicate decides which errors are
transient.
"""

import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from .config import RetryConfig
from .exceptions import TransientNetworkError

T = TypeVar("T")


@dataclass
class RetryResult(Generic[T]):
    """Result of a retry operation."""

    success: bool
    result: Optional[T]
    attempts: int
    last_error: Optional[Exception]


def is_transient(error: Exception) -> bool:
    """Default retry predicate: only transient network failures are retried."""
    return isinstance(error, TransientNetworkError)


class RetryManager:
    """
    Manages bounded retry with a pause between attempts.

    Total attempts are `1 + max_retries`. The pause before retry n
    (0-indexed) is `base_delay * backoff_factor ** n`, capped at
    `max_delay`.
    """

    def __init__(
        self,
        config: RetryConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the retry manager.

        Args:
            config: Retry configuration with max_retries and delays
            sleep: Function used to pause between attempts
        """
        self._config = config
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return self._config.max_retries + 1

    def _calculate_delay(self, attempt: int) -> float:
        """
        Calculate the pause before the next attempt.

        Args:
            attempt: The current attempt number (0-indexed)

        Returns:
            The delay in seconds before the next retry
        """
        delay = self._config.base_delay_seconds * (self._config.backoff_factor ** attempt)
        return min(delay, self._config.max_delay_seconds)

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        is_retryable: Optional[Callable[[Exception], bool]] = None,
        on_retry: Optional[Callable[[int, Exception], None]] = None,
    ) -> RetryResult[T]:
        """
        Execute an operation, retrying retryable failures.

        Args:
            operation: The operation to execute
            is_retryable: Decides whether an exception is worth another
                          attempt; defaults to `is_transient`
            on_retry: Called with (attempt number, error) before each pause

        Returns:
            RetryResult containing success status, result, attempts, and last error
        """
        should_retry = is_retryable or is_transient
        last_error: Optional[Exception] = None
        attempts = 0

        while attempts < self.max_attempts:
            try:
                result = operation()
                return RetryResult(
                    success=True,
                    result=result,
                    attempts=attempts + 1,
                    last_error=None,
                )
            except Exception as e:
                last_error = e
                attempts += 1

                if not should_retry(e) or attempts >= self.max_attempts:
                    break

                if on_retry is not None:
                    on_retry(attempts, e)
                self._sleep(self._calculate_delay(attempts - 1))

        return RetryResult(
            success=False,
            result=None,
            attempts=attempts,
            last_error=last_error,
        )
