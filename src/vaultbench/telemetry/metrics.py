# src/vaultbench/telemetry/metrics.py
"""Per-batch metrics aggregation and the METRIC log line.

Metrics are computed once, after every CallOutcome is in, and are
read-only afterwards. They describe the batch; they never change row
results.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from vaultbench.contracts import BatchMetrics, CallOutcome
from vaultbench.core.logging import METRIC_EVENT, log_metric

__all__ = ["METRIC_EVENT", "MetricsCollector", "emit_batch_metrics"]


class MetricsCollector:
    """Aggregates call count, dedup ratio and call latency for one batch.

    Usage:
        metrics = MetricsCollector(total_rows=3, unique_count=2, dedup_pct=33.3).collect(
            outcomes, wall_ms=report.wall_ms, peak_in_flight=report.peak_in_flight
        )
    """

    def __init__(self, *, total_rows: int, unique_count: int, dedup_pct: float, malformed_count: int = 0) -> None:
        self._total_rows = total_rows
        self._unique_count = unique_count
        self._dedup_pct = dedup_pct
        self._malformed_count = malformed_count

    def collect(
        self,
        outcomes: Sequence[CallOutcome],
        *,
        wall_ms: float,
        peak_in_flight: int = 0,
    ) -> BatchMetrics:
        """Build BatchMetrics from the terminal outcomes of a dispatch.

        Latency stats are 0 when no call was made.
        """
        latencies = [o.latency_ms for o in outcomes]
        if latencies:
            call_min = min(latencies)
            call_max = max(latencies)
            call_avg = sum(latencies) / len(latencies)
        else:
            call_min = call_max = call_avg = 0.0

        return BatchMetrics(
            total_rows=self._total_rows,
            unique_count=self._unique_count,
            dedup_pct=self._dedup_pct,
            call_count=len(outcomes),
            wall_ms=wall_ms,
            call_min_ms=call_min,
            call_avg_ms=call_avg,
            call_max_ms=call_max,
            error_count=sum(1 for o in outcomes if not o.succeeded),
            malformed_count=self._malformed_count,
            peak_in_flight=peak_in_flight,
        )


def emit_batch_metrics(
    metrics: BatchMetrics,
    *,
    context: Mapping[str, Any] | None = None,
    log: Any = None,
) -> None:
    """Log the once-per-batch METRIC event.

    Args:
        metrics: Batch metrics
        context: Extra leading fields (operation, query_id, ...)
        log: Logger to use (the metrics logger if None)
    """
    fields: dict[str, Any] = dict(context or {})
    fields.update(metrics.to_log_fields())
    log_metric(fields, log=log)
