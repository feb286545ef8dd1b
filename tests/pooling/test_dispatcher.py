# tests/pooling/test_dispatcher.py
"""Tests for BoundedDispatcher.

Call functions here are plain Python callables, so concurrency and
cancellation are exercised without any HTTP.
"""

from __future__ import annotations

import threading
import time
from typing import Any

import pytest

from vaultbench.contracts import (
    CancellationError,
    SubBatch,
    SubBatchState,
    TransientServerError,
    TransportError,
)
from vaultbench.engine.splitter import split_items
from vaultbench.pooling import BoundedDispatcher, CallContext, CancelScope, PoolConfig


def _echo(sub_batch: SubBatch[str], ctx: CallContext) -> list[str]:
    return [f"r-{item}" for item in sub_batch.items]


class TestDispatchBasics:
    def test_outcomes_in_sub_batch_order(self) -> None:
        dispatcher = BoundedDispatcher(PoolConfig(max_concurrency=4))

        def jittered(sub_batch: SubBatch[str], ctx: CallContext) -> list[str]:
            # Later sub-batches finish first
            time.sleep(0.01 * (5 - sub_batch.index))
            return _echo(sub_batch, ctx)

        report = dispatcher.dispatch(split_items([str(i) for i in range(10)], 2), jittered)

        assert [o.sub_batch_index for o in report.outcomes] == [0, 1, 2, 3, 4]
        assert report.outcomes[0].results == ("r-0", "r-1")
        assert all(o.state == SubBatchState.SUCCEEDED for o in report.outcomes)

    def test_empty_dispatch(self) -> None:
        report = BoundedDispatcher(PoolConfig()).dispatch([], _echo)
        assert report.outcomes == ()
        assert report.wall_ms == 0.0

    def test_index_must_match_position(self) -> None:
        with pytest.raises(ValueError, match="has index"):
            BoundedDispatcher(PoolConfig()).dispatch([SubBatch(index=1, items=("a",))], _echo)

    def test_latency_recorded(self) -> None:
        def slow(sub_batch: SubBatch[str], ctx: CallContext) -> list[str]:
            time.sleep(0.05)
            return _echo(sub_batch, ctx)

        report = BoundedDispatcher(PoolConfig()).dispatch(split_items(["a"], 1), slow)

        assert report.outcomes[0].latency_ms >= 50
        assert report.wall_ms >= report.outcomes[0].latency_ms


class TestConcurrencyBound:
    @pytest.mark.parametrize("max_concurrency", [1, 3, 8])
    def test_never_exceeds_max_concurrency(self, max_concurrency: int) -> None:
        lock = threading.Lock()
        active = 0
        peak = 0

        def tracked(sub_batch: SubBatch[int], ctx: CallContext) -> list[str]:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with lock:
                active -= 1
            return ["ok"] * len(sub_batch)

        dispatcher = BoundedDispatcher(PoolConfig(max_concurrency=max_concurrency))
        report = dispatcher.dispatch(split_items(list(range(20)), 1), tracked)

        assert peak <= max_concurrency
        assert report.peak_in_flight <= max_concurrency
        assert len(report.outcomes) == 20

    def test_calls_overlap(self) -> None:
        """Calls run in parallel: wall time is well under the sum of latencies."""

        def slow(sub_batch: SubBatch[int], ctx: CallContext) -> list[str]:
            time.sleep(0.1)
            return ["ok"] * len(sub_batch)

        report = BoundedDispatcher(PoolConfig(max_concurrency=4)).dispatch(split_items(list(range(4)), 1), slow)

        assert report.wall_ms < 350
        assert report.peak_in_flight > 1


class TestFailures:
    def test_expected_error_becomes_failed_outcome(self) -> None:
        def flaky(sub_batch: SubBatch[str], ctx: CallContext) -> list[str]:
            if sub_batch.index == 1:
                raise TransportError("vault request: connection refused")
            return _echo(sub_batch, ctx)

        report = BoundedDispatcher(PoolConfig()).dispatch(split_items(list("abc"), 1), flaky)

        assert [o.succeeded for o in report.outcomes] == [True, False, True]
        assert str(report.outcomes[1].error) == "vault request: connection refused"

    def test_wrong_result_count_is_shape_mismatch(self) -> None:
        def short(sub_batch: SubBatch[str], ctx: CallContext) -> list[str]:
            return ["only-one"]

        report = BoundedDispatcher(PoolConfig()).dispatch(split_items(list("ab"), 2), short)

        assert not report.outcomes[0].succeeded
        assert str(report.outcomes[0].error) == "dispatch: expected 2 entries, got 1"

    def test_programming_error_propagates(self) -> None:
        """Bugs in the call function are not turned into placeholders."""

        def buggy(sub_batch: SubBatch[str], ctx: CallContext) -> list[str]:
            raise KeyError("oops")

        with pytest.raises(KeyError):
            BoundedDispatcher(PoolConfig()).dispatch(split_items(["a"], 1), buggy)

    def test_retry_hook_counts_attempts(self) -> None:
        def retried_once(sub_batch: SubBatch[str], ctx: CallContext) -> list[str]:
            ctx.on_retry(1, TransientServerError(503, "busy"))
            return _echo(sub_batch, ctx)

        report = BoundedDispatcher(PoolConfig()).dispatch(split_items(["a"], 1), retried_once)

        assert report.outcomes[0].succeeded
        assert report.outcomes[0].attempts == 2


class TestCancellation:
    def test_cancel_mid_dispatch_keeps_finished_results(self) -> None:
        scope = CancelScope()
        release = threading.Event()

        def gated(sub_batch: SubBatch[str], ctx: CallContext) -> list[str]:
            if sub_batch.index == 0:
                return _echo(sub_batch, ctx)
            # Blocks like an in-flight request the cancel has to abandon
            release.wait(timeout=5)
            return _echo(sub_batch, ctx)

        def cancel_soon() -> None:
            time.sleep(0.1)
            scope.cancel("operator abort")

        canceller = threading.Thread(target=cancel_soon)
        canceller.start()
        try:
            report = BoundedDispatcher(PoolConfig(max_concurrency=2)).dispatch(
                split_items(["a", "b", "c"], 1), gated, scope=scope
            )
        finally:
            release.set()
            canceller.join()

        assert report.outcomes[0].succeeded
        for outcome in report.outcomes[1:]:
            assert not outcome.succeeded
            assert isinstance(outcome.error, CancellationError)
            assert str(outcome.error) == "operator abort"

    def test_late_result_discarded(self) -> None:
        """A worker finishing after the cancel cannot overwrite the failed slot."""
        scope = CancelScope(timeout_seconds=0.1)
        finished = threading.Event()

        def slow(sub_batch: SubBatch[str], ctx: CallContext) -> list[str]:
            time.sleep(0.3)
            finished.set()
            return _echo(sub_batch, ctx)

        report = BoundedDispatcher(PoolConfig()).dispatch(split_items(["a"], 1), slow, scope=scope)

        assert not report.outcomes[0].succeeded
        assert finished.wait(timeout=2)
        assert not report.outcomes[0].succeeded

    def test_abandoned_call_error_logged_not_raised(self, log_capture: list[dict[str, Any]]) -> None:
        """A client closed under an abandoned call surfaces as a log line only."""
        scope = CancelScope(timeout_seconds=0.1)
        release = threading.Event()

        def closed_underneath(sub_batch: SubBatch[str], ctx: CallContext) -> list[str]:
            release.wait(timeout=5)
            raise RuntimeError("Cannot send a request, as the client has been closed.")

        report = BoundedDispatcher(PoolConfig()).dispatch(split_items(["a"], 1), closed_underneath, scope=scope)
        release.set()

        assert isinstance(report.outcomes[0].error, CancellationError)
        deadline = time.monotonic() + 2
        while time.monotonic() < deadline:
            abandoned = [e for e in log_capture if e["event"].startswith("Abandoned sub-batch call")]
            if abandoned:
                break
            time.sleep(0.01)
        assert abandoned
        assert abandoned[0]["error_type"] == "RuntimeError"
        assert abandoned[0]["sub_batch"] == 0

    def test_call_context_carries_scope(self) -> None:
        scope = CancelScope()
        seen: list[CancelScope] = []

        def capture(sub_batch: SubBatch[str], ctx: CallContext) -> list[str]:
            seen.append(ctx.scope)
            return _echo(sub_batch, ctx)

        BoundedDispatcher(PoolConfig()).dispatch(split_items(["a"], 1), capture, scope=scope)

        assert seen == [scope]
