# src/vaultbench/handler.py
"""External-function request adapter.

Turns one inbound HTTP request from the warehouse's external-function
gateway into one batch run:

    {"data": [[row_key, value], ...]}  ->  {"data": [[row_key, result], ...]}

Routing comes from headers (operation, entity). Without a configured
vault the handler runs in mock mode and answers every row locally, which
is what the overhead benchmarks measure against.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Self

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from vaultbench.contracts import BatchParseError, BatchResult, HandlerMode, Operation
from vaultbench.core.config import DEFAULT_ENTITY, VaultBenchSettings, VaultConfig, load_vault_configs
from vaultbench.core.logging import log_metric
from vaultbench.engine.normalize import normalize_rows
from vaultbench.engine.processor import VaultBatchProcessor
from vaultbench.pooling import CancelScope

logger = structlog.get_logger(__name__)

QUERY_ID_HEADER = "sf-external-function-current-query-id"
BATCH_ID_HEADER = "sf-external-function-query-batch-id"
CONFIG_HEADER = "sf-benchmark-config"
OPERATION_HEADER = "sf-custom-x-operation"
ENTITY_HEADER = "sf-custom-x-entity"

MOCK_PREFIX = "DETOK_"
MOCK_MISSING_VALUE = "DETOK_ERROR_MISSING_VALUE"

_UNKNOWN = "unknown"
_JSON_HEADERS = {"Content-Type": "application/json"}


class _RequestBody(BaseModel):
    """Inbound envelope. Rows are validated later, one by one."""

    model_config = {"extra": "ignore"}

    data: list[Any]


@dataclass(frozen=True)
class HandlerResponse:
    """What the gateway sends back to the caller."""

    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=lambda: dict(_JSON_HEADERS))


def _error_response(status_code: int, message: str) -> HandlerResponse:
    return HandlerResponse(status_code=status_code, body={"error": message})


class ExternalFunctionHandler:
    """Handles external-function requests against one processor per entity.

    The handler is built once per process and serves many invocations,
    possibly concurrently. Processors (and their HTTP connection pools)
    are shared; everything else is per request.

    Example:
        handler = ExternalFunctionHandler.from_env()
        response = handler.handle(
            b'{"data": [[0, "tok_1"], [1, "tok_2"]]}',
            {"sf-custom-x-operation": "detokenize"},
        )
        response.body  # {"data": [[0, "Alice"], [1, "Bob"]]}
    """

    def __init__(
        self,
        processors: Mapping[str, VaultBatchProcessor] | None = None,
        *,
        default_entity: str = DEFAULT_ENTITY,
        simulated_delay_ms: int = 0,
        batch_timeout_seconds: float | None = None,
    ) -> None:
        """Initialize handler.

        Args:
            processors: Processor per entity name; empty or None means mock mode
            default_entity: Entity used when the request names none
            simulated_delay_ms: Mock-mode delay per request
            batch_timeout_seconds: Default deadline per batch
        """
        self._processors = {name.upper(): p for name, p in (processors or {}).items()}
        self._default_entity = default_entity.upper()
        self._simulated_delay_s = simulated_delay_ms / 1000
        self._batch_timeout_seconds = batch_timeout_seconds
        self._mode = HandlerMode.LIVE if self._processors else HandlerMode.MOCK

        self._invocations = itertools.count(1)
        self._invocation_lock = threading.Lock()
        self._instance_id = str(time.time_ns())

        if self._mode is HandlerMode.LIVE:
            for entity, processor in self._processors.items():
                config = processor.client.config
                logger.info(
                    "Vault mode enabled",
                    entity=entity,
                    url=config.vault_url,
                    vault=config.vault_id,
                    sub_batch_size=processor.sub_batch_size,
                    max_concurrency=config.max_concurrency,
                )
        else:
            logger.info("Mock mode, no vault configured", simulated_delay_ms=simulated_delay_ms)

    @classmethod
    def from_vault_configs(
        cls,
        configs: Mapping[str, VaultConfig] | None,
        *,
        transport: httpx.BaseTransport | None = None,
        **kwargs: Any,
    ) -> Self:
        processors = {
            entity: VaultBatchProcessor.from_config(config, transport=transport, emit_metrics=False)
            for entity, config in (configs or {}).items()
        }
        return cls(processors, **kwargs)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        simulated_delay_ms: int = 0,
    ) -> Self:
        """Build from ``VAULT_*`` environment variables (mock mode if unset)."""
        return cls.from_vault_configs(
            load_vault_configs(environ),
            transport=transport,
            simulated_delay_ms=simulated_delay_ms,
        )

    @classmethod
    def from_settings(cls, settings: VaultBenchSettings, *, transport: httpx.BaseTransport | None = None) -> Self:
        return cls.from_vault_configs(
            settings.vaults,
            transport=transport,
            default_entity=settings.default_entity,
            simulated_delay_ms=settings.simulated_delay_ms,
            batch_timeout_seconds=settings.batch_timeout_seconds,
        )

    @property
    def mode(self) -> HandlerMode:
        return self._mode

    @property
    def instance_id(self) -> str:
        return self._instance_id

    @property
    def entities(self) -> list[str]:
        return sorted(self._processors)

    def close(self) -> None:
        for processor in self._processors.values():
            processor.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _next_invocation(self) -> int:
        with self._invocation_lock:
            return next(self._invocations)

    def handle(
        self,
        body: bytes | str,
        headers: Mapping[str, str],
        *,
        timeout_seconds: float | None = None,
        scope: CancelScope | None = None,
    ) -> HandlerResponse:
        """Serve one request.

        Args:
            body: Raw request body
            headers: Request headers (any case)
            timeout_seconds: Batch deadline, overriding the configured default
            scope: Externally controlled scope (takes precedence over timeouts)

        Returns:
            200 with the outbound batch, or 400 when the request cannot be routed
            or parsed. Vault failures never change the status; they show up as
            error placeholders in the rows.
        """
        received = time.perf_counter()
        invocation = self._next_invocation()

        lowered = {k.lower(): v for k, v in headers.items()}
        query_id = lowered.get(QUERY_ID_HEADER) or _UNKNOWN
        batch_id = lowered.get(BATCH_ID_HEADER) or _UNKNOWN
        bench_config = lowered.get(CONFIG_HEADER) or _UNKNOWN
        operation_name = (lowered.get(OPERATION_HEADER) or Operation.DETOKENIZE).lower()
        entity = (lowered.get(ENTITY_HEADER) or self._default_entity).upper()

        try:
            rows = _RequestBody.model_validate_json(body).data
        except ValidationError as e:
            logger.error("Failed to parse request body", query_id=query_id, batch_id=batch_id, error=str(e))
            return _error_response(400, f"invalid request body: {e.error_count()} validation error(s)")

        log_fields: dict[str, Any] = {
            "query_id": query_id,
            "batch_id": batch_id,
            "batch_size": len(rows),
            "operation": operation_name,
            "mode": str(self._mode),
        }

        result: BatchResult | None = None
        if self._mode is HandlerMode.MOCK:
            # Mock answers are the same for every operation
            data = self._mock_rows(rows)
        else:
            try:
                operation = Operation(operation_name)
            except ValueError:
                return _error_response(400, f"unknown operation: {operation_name}")

            processor = self._processors.get(entity)
            if processor is None:
                return _error_response(400, f"unknown entity: {entity} (configured: {', '.join(self.entities)})")
            log_fields["entity"] = entity

            if scope is None:
                timeout = timeout_seconds if timeout_seconds is not None else self._batch_timeout_seconds
                scope = CancelScope(timeout_seconds=timeout)
            try:
                result = processor.process(operation, rows, scope=scope)
            except BatchParseError as e:
                logger.error("Failed to parse request rows", query_id=query_id, batch_id=batch_id, error=str(e))
                return _error_response(400, f"invalid request body: {e}")
            data = result.rows

        duration_ms = (time.perf_counter() - received) * 1000
        log_fields["duration_ms"] = round(duration_ms)
        if result is not None:
            log_fields.update(result.metrics.to_log_fields())
            log_fields["overhead_ms"] = round(duration_ms - result.metrics.wall_ms)
        log_fields.update(invocation=invocation, instance=self._instance_id, config=bench_config)
        log_metric(log_fields)

        return HandlerResponse(status_code=200, body={"data": data})

    def _mock_rows(self, rows: list[Any]) -> list[list[Any]]:
        """Answer locally: ``DETOK_{value}`` per row after the simulated delay."""
        if self._simulated_delay_s > 0:
            time.sleep(self._simulated_delay_s)

        batch = normalize_rows(rows)
        out: list[list[Any] | None] = [None] * batch.total_rows
        for rejected in batch.rejected:
            out[rejected.original_index] = [rejected.row_key, MOCK_MISSING_VALUE]
        for row in batch.rows:
            out[row.original_index] = [row.row_key, MOCK_PREFIX + row.value]
        return [r for r in out if r is not None]
