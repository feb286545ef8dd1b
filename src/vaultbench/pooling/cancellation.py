# src/vaultbench/pooling/cancellation.py
"""Cancellation scope shared by every worker of one batch.

A scope is cancelled either explicitly (``cancel()``, e.g. from a signal
handler) or implicitly when its deadline passes. Workers consult it
before dispatching, while sleeping between attempts, and to clamp their
HTTP timeouts so an in-flight request cannot outlive the deadline.
"""

from __future__ import annotations

import threading
import time

from vaultbench.contracts import CancellationError


class CancelScope:
    """Thread-safe cancellation signal with an optional deadline.

    Usage:
        scope = CancelScope(timeout_seconds=5.0)

        # worker
        scope.raise_if_cancelled()
        timeout = scope.clamp_timeout(30.0)
        scope.sleep(0.5)  # raises CancellationError if cancelled meanwhile

        # controller
        scope.cancel("shutdown requested")
    """

    def __init__(self, *, timeout_seconds: float | None = None, event: threading.Event | None = None) -> None:
        """Initialize scope.

        Args:
            timeout_seconds: Deadline relative to now, None for no deadline
            event: Existing event to observe (e.g. a signal handler's shutdown event)
        """
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {timeout_seconds}")
        self._event = event or threading.Event()
        self._timeout_seconds = timeout_seconds
        self._deadline = None if timeout_seconds is None else time.monotonic() + timeout_seconds
        self._reason = "batch cancelled"

    def cancel(self, reason: str = "batch cancelled") -> None:
        """Cancel the scope. Idempotent; the first reason wins."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> float | None:
        """Seconds until the deadline (never negative), None without a deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def error(self) -> CancellationError:
        """The error unfinished work is failed with."""
        if self._event.is_set():
            return CancellationError(self._reason)
        return CancellationError(f"batch deadline of {self._timeout_seconds}s exceeded")

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise self.error()

    def clamp_timeout(self, timeout: float) -> float:
        """Bound a request timeout by the time left before the deadline.

        Raises:
            CancellationError: If no time is left
        """
        self.raise_if_cancelled()
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return min(timeout, remaining)

    def sleep(self, seconds: float) -> None:
        """Sleep, waking early and raising if the scope is cancelled.

        Raises:
            CancellationError: If cancelled before or during the sleep, or if
                the deadline falls inside the sleep
        """
        self.raise_if_cancelled()
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            self._event.wait(timeout=remaining)
            raise self.error()
        if self._event.wait(timeout=seconds):
            raise self.error()
