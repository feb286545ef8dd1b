"""Per-call and per-batch results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from vaultbench.contracts.enums import Operation, SubBatchState
from vaultbench.contracts.errors import VaultBenchError


@dataclass(frozen=True, slots=True)
class CallOutcome:
    """Terminal result of one sub-batch call, including any retry.

    Exactly one of ``results`` and ``error`` is set. ``latency_ms`` spans
    dispatch to completion, so it includes the retry delay when a retry
    happened.
    """

    sub_batch_index: int
    state: SubBatchState
    latency_ms: float
    results: tuple[str, ...] | None = None
    error: VaultBenchError | None = None
    attempts: int = 1

    @classmethod
    def success(
        cls,
        sub_batch_index: int,
        results: list[str] | tuple[str, ...],
        *,
        latency_ms: float,
        attempts: int = 1,
    ) -> CallOutcome:
        return cls(
            sub_batch_index=sub_batch_index,
            state=SubBatchState.SUCCEEDED,
            latency_ms=latency_ms,
            results=tuple(results),
            attempts=attempts,
        )

    @classmethod
    def failure(
        cls,
        sub_batch_index: int,
        error: VaultBenchError,
        *,
        latency_ms: float,
        attempts: int = 1,
    ) -> CallOutcome:
        return cls(
            sub_batch_index=sub_batch_index,
            state=SubBatchState.FAILED,
            latency_ms=latency_ms,
            error=error,
            attempts=attempts,
        )

    @property
    def succeeded(self) -> bool:
        return self.state == SubBatchState.SUCCEEDED


@dataclass(frozen=True, slots=True)
class BatchMetrics:
    """Aggregated telemetry for one batch. Never affects row results.

    Latencies are milliseconds. ``wall_ms`` is the span of the whole
    concurrent dispatch, not the sum of call latencies.
    """

    total_rows: int
    unique_count: int
    dedup_pct: float
    call_count: int
    wall_ms: float
    call_min_ms: float
    call_avg_ms: float
    call_max_ms: float
    error_count: int
    malformed_count: int = 0
    peak_in_flight: int = 0

    def to_log_fields(self) -> dict[str, Any]:
        """Fields for the per-batch METRIC log line, in a stable order."""
        return {
            "total_rows": self.total_rows,
            "unique_count": self.unique_count,
            "dedup_pct": round(self.dedup_pct, 1),
            "vault_calls": self.call_count,
            "vault_wall_ms": round(self.wall_ms),
            "call_min_ms": round(self.call_min_ms),
            "call_avg_ms": round(self.call_avg_ms),
            "call_max_ms": round(self.call_max_ms),
            "errors": self.error_count,
            "malformed_rows": self.malformed_count,
            "peak_in_flight": self.peak_in_flight,
        }


@dataclass(frozen=True, slots=True)
class BatchResult:
    """Outbound batch plus its telemetry.

    ``rows`` has one ``[row_key, result_or_error]`` pair per inbound row,
    in inbound order.
    """

    operation: Operation
    rows: list[list[Any]]
    metrics: BatchMetrics
    outcomes: tuple[CallOutcome, ...] = ()
