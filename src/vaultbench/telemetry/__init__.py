"""Batch telemetry."""

from vaultbench.telemetry.metrics import METRIC_EVENT, MetricsCollector, emit_batch_metrics

__all__ = [
    "METRIC_EVENT",
    "MetricsCollector",
    "emit_batch_metrics",
]
