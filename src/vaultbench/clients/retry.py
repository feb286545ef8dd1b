"""Retry policy for vault calls, built on tenacity.

Transient failures (5xx/429) get a fixed number of attempts with a fixed
delay between them. The defaults reproduce the observed contract: one
retry after 500 ms.

The delay is slept through an injectable function so a batch's
CancelScope can interrupt it.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=2 means: try, retry (2 total).
    """

    max_attempts: int = 2
    delay_seconds: float = 0.5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")

    @classmethod
    def no_retry(cls) -> RetryConfig:
        """Factory for no-retry configuration (single attempt)."""
        return cls(max_attempts=1, delay_seconds=0.0)

    @classmethod
    def single_retry(cls, delay_ms: int) -> RetryConfig:
        """One retry after a fixed delay."""
        return cls(max_attempts=2, delay_seconds=delay_ms / 1000)


class RetryManager:
    """Runs an operation with fixed-delay retries of retryable errors.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=2, delay_seconds=0.5))

        body = manager.execute_with_retry(
            operation=lambda: post_once(url, payload),
            is_retryable=lambda e: isinstance(e, TransientServerError),
            on_retry=lambda attempt, error: log.warning("retrying", attempt=attempt),
            sleep=scope.sleep,
        )
    """

    def __init__(self, config: RetryConfig) -> None:
        self._config = config

    @property
    def config(self) -> RetryConfig:
        return self._config

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool],
        on_retry: Callable[[int, BaseException], None] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> T:
        """Execute operation with retry logic.

        Args:
            operation: Operation to execute
            is_retryable: Function to check if error is retryable
            on_retry: Called with (attempt, error) before sleeping for a retry
            sleep: Sleep function for the retry delay (time.sleep if None)

        Returns:
            Result of operation

        Raises:
            Exception: The last error once attempts are exhausted, any
                non-retryable error immediately, or whatever ``sleep`` raises
        """

        def _before_sleep(retry_state: RetryCallState) -> None:
            if on_retry is None or retry_state.outcome is None:
                return
            error = retry_state.outcome.exception()
            if error is not None:
                on_retry(retry_state.attempt_number, error)

        kwargs: dict[str, Any] = {}
        if sleep is not None:
            kwargs["sleep"] = sleep

        retrying = Retrying(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_fixed(self._config.delay_seconds),
            retry=retry_if_exception(is_retryable),
            before_sleep=_before_sleep,
            reraise=True,
            **kwargs,
        )
        return retrying(operation)
