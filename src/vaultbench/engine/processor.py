"""VaultBatchProcessor: the per-invocation control flow.

    normalize -> (dedup, detokenize only) -> split -> dispatch -> assemble -> metrics

Every inbound row gets exactly one outbound row, in inbound order, no
matter how many sub-batches failed or were cancelled. The only error that
escapes is BatchParseError, raised when the payload has no row structure.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Self

import httpx

from vaultbench.clients.vault import VaultClient
from vaultbench.contracts import BatchResult, Operation, Row, SubBatch
from vaultbench.core.config import VaultConfig
from vaultbench.engine.assembler import ResultAssembler
from vaultbench.engine.dedup import build_dedup_index, dedup_percentage
from vaultbench.engine.normalize import normalize_rows
from vaultbench.engine.splitter import split_items
from vaultbench.pooling import BoundedDispatcher, CallContext, CancelScope
from vaultbench.telemetry.metrics import MetricsCollector, emit_batch_metrics


class VaultBatchProcessor:
    """Tokenizes or detokenizes one inbound batch through a VaultClient.

    Example:
        processor = VaultBatchProcessor.from_config(config)

        result = processor.detokenize([[0, "t1"], [1, "t2"], [2, "t1"]])
        result.rows     # [[0, "Alice"], [1, "Bob"], [2, "Alice"]]
        result.metrics  # unique_count=2, call_count=1, ...
    """

    def __init__(
        self,
        client: VaultClient,
        dispatcher: BoundedDispatcher | None = None,
        *,
        sub_batch_size: int | None = None,
        emit_metrics: bool = True,
    ) -> None:
        """Initialize processor.

        Args:
            client: Vault client (shared across invocations)
            dispatcher: Dispatcher (built from the client's config if None)
            sub_batch_size: Override the client config's sub-batch size
            emit_metrics: Log the METRIC line after each batch
        """
        self._client = client
        self._dispatcher = dispatcher or BoundedDispatcher(client.config.to_pool_config())
        self._sub_batch_size = sub_batch_size or client.config.sub_batch_size
        self._emit_metrics = emit_metrics

    @classmethod
    def from_config(
        cls,
        config: VaultConfig,
        *,
        transport: httpx.BaseTransport | None = None,
        emit_metrics: bool = True,
    ) -> Self:
        """Build client and dispatcher from one VaultConfig."""
        client = VaultClient(config, transport=transport)
        return cls(client, BoundedDispatcher(config.to_pool_config()), emit_metrics=emit_metrics)

    @property
    def client(self) -> VaultClient:
        return self._client

    @property
    def sub_batch_size(self) -> int:
        return self._sub_batch_size

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def process(
        self,
        operation: Operation | str,
        raw_rows: Sequence[Any],
        *,
        scope: CancelScope | None = None,
        log_context: Mapping[str, Any] | None = None,
    ) -> BatchResult:
        """Run one batch for the named operation.

        Raises:
            ValueError: If the operation is unknown
            BatchParseError: If raw_rows is not a list of rows
        """
        op = Operation(operation)
        if op is Operation.TOKENIZE:
            return self.tokenize(raw_rows, scope=scope, log_context=log_context)
        return self.detokenize(raw_rows, scope=scope, log_context=log_context)

    def tokenize(
        self,
        raw_rows: Sequence[Any],
        *,
        scope: CancelScope | None = None,
        log_context: Mapping[str, Any] | None = None,
    ) -> BatchResult:
        """Tokenize every well-formed row independently (no dedup)."""
        batch = normalize_rows(raw_rows)
        sub_batches = split_items(batch.rows, self._sub_batch_size)

        def call(sub_batch: SubBatch[Row], ctx: CallContext) -> list[str]:
            return self._client.tokenize_batch(
                [row.value for row in sub_batch.items],
                scope=ctx.scope,
                on_retry=ctx.on_retry,
            )

        report = self._dispatcher.dispatch(sub_batches, call, scope=scope)

        assembler = ResultAssembler(batch)
        assembler.fill_direct(sub_batches, report.outcomes)

        metrics = MetricsCollector(
            total_rows=batch.total_rows,
            unique_count=len(batch.rows),
            dedup_pct=0.0,
            malformed_count=len(batch.rejected),
        ).collect(report.outcomes, wall_ms=report.wall_ms, peak_in_flight=report.peak_in_flight)

        result = BatchResult(
            operation=Operation.TOKENIZE,
            rows=assembler.build(),
            metrics=metrics,
            outcomes=report.outcomes,
        )
        self._report(result, log_context)
        return result

    def detokenize(
        self,
        raw_rows: Sequence[Any],
        *,
        scope: CancelScope | None = None,
        log_context: Mapping[str, Any] | None = None,
    ) -> BatchResult:
        """Detokenize distinct tokens once each, fanning values back to every row."""
        batch = normalize_rows(raw_rows)
        index = build_dedup_index(batch.rows)
        sub_batches = split_items(index.values, self._sub_batch_size)

        def call(sub_batch: SubBatch[str], ctx: CallContext) -> list[str]:
            return self._client.detokenize_batch(
                list(sub_batch.items),
                scope=ctx.scope,
                on_retry=ctx.on_retry,
            )

        report = self._dispatcher.dispatch(sub_batches, call, scope=scope)

        assembler = ResultAssembler(batch)
        assembler.fill_fanout(index, sub_batches, report.outcomes)

        metrics = MetricsCollector(
            total_rows=batch.total_rows,
            unique_count=index.unique_count,
            dedup_pct=dedup_percentage(batch.total_rows, index.unique_count),
            malformed_count=len(batch.rejected),
        ).collect(report.outcomes, wall_ms=report.wall_ms, peak_in_flight=report.peak_in_flight)

        result = BatchResult(
            operation=Operation.DETOKENIZE,
            rows=assembler.build(),
            metrics=metrics,
            outcomes=report.outcomes,
        )
        self._report(result, log_context)
        return result

    def _report(self, result: BatchResult, log_context: Mapping[str, Any] | None) -> None:
        if not self._emit_metrics:
            return
        context: dict[str, Any] = {"operation": str(result.operation)}
        context.update(log_context or {})
        emit_batch_metrics(result.metrics, context=context)
