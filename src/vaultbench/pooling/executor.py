# src/vaultbench/pooling/executor.py
"""Bounded dispatcher for concurrent vault sub-batch calls.

Runs every sub-batch of one batch while:
- Keeping at most max_concurrency calls in flight (fixed-size worker pool)
- Timing each call from dispatch to completion, retries included
- Writing each outcome into its own pre-sized slot (no shared appends)
- Joining on all calls before returning (no partial delivery)
- Honouring a CancelScope: unfinished sub-batches fail with
  CancellationError, finished ones keep their results

Cancellation abandons in-flight calls rather than aborting them: a
synchronous httpx request cannot be interrupted from another thread. An
abandoned call runs to completion in the background; its result is
discarded by the tracker and any exception it raises (including the
RuntimeError from a client closed underneath it) is logged, never
re-raised.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from threading import Lock

import structlog

from vaultbench.contracts import CallOutcome, ResponseShapeMismatch, SubBatch, VaultBenchError
from vaultbench.pooling.cancellation import CancelScope
from vaultbench.pooling.config import PoolConfig
from vaultbench.pooling.state import SubBatchTracker

logger = structlog.get_logger(__name__)

RetryHook = Callable[[int, BaseException], None]


@dataclass(frozen=True)
class CallContext:
    """Per-call collaborators handed to the call function.

    Attributes:
        scope: Batch cancellation scope
        on_retry: Invoke with (attempt, error) just before a retry is scheduled
    """

    scope: CancelScope
    on_retry: RetryHook


type CallFn[T] = Callable[[SubBatch[T], CallContext], list[str]]


@dataclass(frozen=True)
class DispatchReport:
    """Everything a dispatch produced.

    Attributes:
        outcomes: One terminal CallOutcome per sub-batch, in sub-batch order
        wall_ms: Elapsed time of the whole concurrent dispatch
        peak_in_flight: Highest number of calls observed in flight at once
    """

    outcomes: tuple[CallOutcome, ...]
    wall_ms: float
    peak_in_flight: int


class _InFlightCounter:
    """Tracks concurrent calls and their peak (thread-safe)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._active = 0
        self._peak = 0

    def enter(self) -> None:
        with self._lock:
            self._active += 1
            if self._active > self._peak:
                self._peak = self._active

    def exit(self) -> None:
        with self._lock:
            self._active -= 1

    @property
    def peak(self) -> int:
        with self._lock:
            return self._peak


def _log_abandoned_failure(index: int) -> Callable[[Future[None]], None]:
    """Done-callback that logs what an abandoned worker raised."""

    def _callback(future: Future[None]) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning(
                "Abandoned sub-batch call raised after cancellation",
                sub_batch=index,
                error=str(error),
                error_type=type(error).__name__,
            )

    return _callback


class BoundedDispatcher:
    """Runs sub-batch calls concurrently under a concurrency bound.

    The dispatcher is synchronous from the caller's perspective:
    dispatch() blocks until every sub-batch is in a terminal state.
    Each dispatch gets its own worker pool, so concurrent invocations do
    not share permits or outcome state.

    Usage:
        dispatcher = BoundedDispatcher(PoolConfig(max_concurrency=10))

        report = dispatcher.dispatch(
            sub_batches,
            lambda sb, ctx: client.detokenize_batch(list(sb.items), scope=ctx.scope, on_retry=ctx.on_retry),
            scope=CancelScope(timeout_seconds=20),
        )

        assert len(report.outcomes) == len(sub_batches)
    """

    def __init__(self, config: PoolConfig) -> None:
        self._config = config
        self._max_concurrency = config.max_concurrency
        self._poll_interval_s = config.cancel_poll_interval_ms / 1000

    @property
    def max_concurrency(self) -> int:
        """Maximum concurrent vault calls."""
        return self._max_concurrency

    def dispatch[T](
        self,
        sub_batches: Sequence[SubBatch[T]],
        call_fn: CallFn[T],
        *,
        scope: CancelScope | None = None,
    ) -> DispatchReport:
        """Run all sub-batches and wait for every one to finish.

        Args:
            sub_batches: Sub-batches in split order; ``index`` must equal position
            call_fn: Performs one vault call, returning one result per item.
                Expected failures must be raised as VaultBenchError; anything
                else is a bug and propagates out of dispatch().
            scope: Cancellation scope (never cancelled if omitted)

        Returns:
            DispatchReport with outcomes in sub-batch order
        """
        if not sub_batches:
            return DispatchReport(outcomes=(), wall_ms=0.0, peak_in_flight=0)

        for position, sub_batch in enumerate(sub_batches):
            if sub_batch.index != position:
                raise ValueError(f"sub-batch at position {position} has index {sub_batch.index}")

        scope = scope or CancelScope()
        tracker = SubBatchTracker(len(sub_batches))
        counter = _InFlightCounter()

        pool = ThreadPoolExecutor(
            max_workers=min(self._max_concurrency, len(sub_batches)),
            thread_name_prefix="vault-dispatch",
        )
        start = time.perf_counter()
        abandoned = False
        try:
            futures: dict[Future[None], int] = {
                pool.submit(self._execute_single, sub_batch, call_fn, scope, tracker, counter): sub_batch.index
                for sub_batch in sub_batches
            }
            pending = set(futures)
            while pending:
                if scope.cancelled:
                    abandoned = True
                    break
                done, pending = wait(pending, timeout=self._poll_interval_s, return_when=FIRST_COMPLETED)
                for future in done:
                    # Re-raise programming errors from workers
                    future.result()
        finally:
            # On cancellation don't block on in-flight requests; queued work is dropped
            pool.shutdown(wait=not abandoned, cancel_futures=True)

        if abandoned:
            error = scope.error()
            unfinished = tracker.unfinished()
            for future in pending:
                future.add_done_callback(_log_abandoned_failure(futures[future]))
            for index in unfinished:
                tracker.finalize(index, CallOutcome.failure(index, error, latency_ms=tracker.elapsed_ms(index)))
            logger.warning(
                "Dispatch cancelled",
                reason=str(error),
                unfinished=len(unfinished),
                total=len(sub_batches),
            )

        wall_ms = (time.perf_counter() - start) * 1000
        return DispatchReport(outcomes=tracker.outcomes(), wall_ms=wall_ms, peak_in_flight=counter.peak)

    def _execute_single[T](
        self,
        sub_batch: SubBatch[T],
        call_fn: CallFn[T],
        scope: CancelScope,
        tracker: SubBatchTracker,
        counter: _InFlightCounter,
    ) -> None:
        """Run one sub-batch call and finalize its slot."""
        index = sub_batch.index

        if scope.cancelled:
            tracker.finalize(index, CallOutcome.failure(index, scope.error(), latency_ms=0.0))
            return
        if not tracker.start(index):
            return

        attempts = 1

        def on_retry(attempt: int, error: BaseException) -> None:
            nonlocal attempts
            attempts = attempt + 1
            tracker.mark_retrying(index)

        counter.enter()
        call_start = time.perf_counter()
        try:
            results = call_fn(sub_batch, CallContext(scope=scope, on_retry=on_retry))
            latency_ms = (time.perf_counter() - call_start) * 1000
            if len(results) != len(sub_batch):
                raise ResponseShapeMismatch("dispatch", len(sub_batch), len(results))
            outcome = CallOutcome.success(index, results, latency_ms=latency_ms, attempts=attempts)
        except VaultBenchError as e:
            latency_ms = (time.perf_counter() - call_start) * 1000
            outcome = CallOutcome.failure(index, e, latency_ms=latency_ms, attempts=attempts)
            logger.warning(
                "Vault sub-batch failed",
                sub_batch=index,
                size=len(sub_batch),
                attempts=attempts,
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            counter.exit()

        if not tracker.finalize(index, outcome):
            logger.debug("Discarding late result for cancelled sub-batch", sub_batch=index)
