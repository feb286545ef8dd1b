# tests/contracts/test_contracts_results.py
"""Tests for CallOutcome, BatchMetrics and the row containers."""

from __future__ import annotations

import pytest

from vaultbench.contracts import (
    BatchMetrics,
    CallOutcome,
    DedupGroup,
    DedupIndex,
    Row,
    SubBatch,
    SubBatchState,
    TransportError,
)


class TestCallOutcome:
    def test_success(self) -> None:
        outcome = CallOutcome.success(0, ["a", "b"], latency_ms=12.5)
        assert outcome.succeeded
        assert outcome.state == SubBatchState.SUCCEEDED
        assert outcome.results == ("a", "b")
        assert outcome.error is None
        assert outcome.attempts == 1

    def test_failure(self) -> None:
        error = TransportError("down")
        outcome = CallOutcome.failure(3, error, latency_ms=1.0, attempts=2)
        assert not outcome.succeeded
        assert outcome.state == SubBatchState.FAILED
        assert outcome.results is None
        assert outcome.error is error
        assert outcome.attempts == 2

    def test_outcome_is_frozen(self) -> None:
        outcome = CallOutcome.success(0, ["a"], latency_ms=1.0)
        with pytest.raises(AttributeError):
            outcome.latency_ms = 2.0  # type: ignore[misc]


class TestSubBatchState:
    @pytest.mark.parametrize(
        ("state", "terminal"),
        [
            (SubBatchState.PENDING, False),
            (SubBatchState.IN_FLIGHT, False),
            (SubBatchState.RETRYING, False),
            (SubBatchState.SUCCEEDED, True),
            (SubBatchState.FAILED, True),
        ],
    )
    def test_is_terminal(self, state: SubBatchState, terminal: bool) -> None:
        assert state.is_terminal is terminal


class TestBatchMetricsLogFields:
    def test_log_fields_rounded(self) -> None:
        metrics = BatchMetrics(
            total_rows=3,
            unique_count=2,
            dedup_pct=33.33333,
            call_count=1,
            wall_ms=101.6,
            call_min_ms=99.4,
            call_avg_ms=99.5,
            call_max_ms=100.2,
            error_count=0,
        )
        fields = metrics.to_log_fields()
        assert fields["dedup_pct"] == 33.3
        assert fields["vault_calls"] == 1
        assert fields["vault_wall_ms"] == 102
        assert fields["call_min_ms"] == 99
        assert fields["call_max_ms"] == 100
        assert fields["errors"] == 0
        assert fields["malformed_rows"] == 0

    def test_log_field_order_is_stable(self) -> None:
        metrics = BatchMetrics(
            total_rows=0,
            unique_count=0,
            dedup_pct=0.0,
            call_count=0,
            wall_ms=0.0,
            call_min_ms=0.0,
            call_avg_ms=0.0,
            call_max_ms=0.0,
            error_count=0,
        )
        assert list(metrics.to_log_fields()) == [
            "total_rows",
            "unique_count",
            "dedup_pct",
            "vault_calls",
            "vault_wall_ms",
            "call_min_ms",
            "call_avg_ms",
            "call_max_ms",
            "errors",
            "malformed_rows",
            "peak_in_flight",
        ]


class TestRowContainers:
    def test_dedup_index_views(self) -> None:
        r0 = Row(0, 0, "t1")
        r1 = Row(1, 1, "t2")
        r2 = Row(2, 2, "t1")
        index = DedupIndex(groups=(DedupGroup("t1", [r0, r2]), DedupGroup("t2", [r1])))

        assert index.values == ["t1", "t2"]
        assert index.unique_count == 2
        assert index.row_count == 3
        assert [g.value for g in index] == ["t1", "t2"]

    def test_sub_batch_len(self) -> None:
        assert len(SubBatch(index=0, items=("a", "b", "c"))) == 3
