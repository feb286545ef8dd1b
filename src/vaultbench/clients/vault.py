"""HTTP client for the vault's tokenize and detokenize endpoints.

One VaultClient is built per vault config and shared by every worker of
every invocation: httpx.Client is thread-safe and its connection pool is
the only cross-invocation state. Each ``*_batch`` method performs one
logical vault call for one sub-batch, including the single retry of a
transient status.

Wire shapes:

    POST {vault_url}/v2/records/insert
        {"vaultID": ..., "tableName": ..., "records": [{"data": {column: value}}, ...]}
     -> {"records": [{"tokens": {column: [{"token": ...}, ...]}}, ...]}

    POST {vault_url}/v2/tokens/detokenize
        {"vaultID": ..., "tokens": [...]}
     -> {"response": [{"token": ..., "value": ...}, ...]}
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, Self

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError

from vaultbench.clients.retry import RetryConfig, RetryManager
from vaultbench.contracts import (
    ResponseShapeMismatch,
    TransientServerError,
    TransportError,
)
from vaultbench.core.config import VaultConfig
from vaultbench.pooling.cancellation import CancelScope
from vaultbench.pooling.errors import is_success_status, is_transient_status

logger = structlog.get_logger(__name__)

TOKENIZE_PATH = "/v2/records/insert"
DETOKENIZE_PATH = "/v2/tokens/detokenize"

_ERROR_BODY_LIMIT = 200


def _truncate(text: str, max_len: int = _ERROR_BODY_LIMIT) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


class _TokenEntry(BaseModel):
    token: str


class _TokenizeRecord(BaseModel):
    tokens: dict[str, list[_TokenEntry]] = Field(default_factory=dict)


class _TokenizeResponse(BaseModel):
    records: list[_TokenizeRecord]


class _DetokenizeEntry(BaseModel):
    """One resolved token. Per-token error entries carry no value."""

    token: str = ""
    value: str | None = None


class _DetokenizeResponse(BaseModel):
    response: list[_DetokenizeEntry]


class VaultClient:
    """Batched tokenize/detokenize calls against one vault.

    Example:
        with VaultClient(config) as client:
            tokens = client.tokenize_batch(["Alice", "Bob"])
            values = client.detokenize_batch(tokens)

    Errors:
        TransientServerError: 5xx/429 on the last attempt
        TransportError: network failure, other non-2xx, undecodable body
        ResponseShapeMismatch: item count differs from the request
        CancellationError: the scope was cancelled or its deadline passed
    """

    def __init__(
        self,
        config: VaultConfig,
        *,
        http_client: httpx.Client | None = None,
        transport: httpx.BaseTransport | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Vault connection settings
            http_client: Existing client to share (not closed by close())
            transport: Transport for an owned client (e.g. httpx.MockTransport)
            retry_config: Override the single fixed-delay retry from config
        """
        self._config = config
        self._retry = RetryManager(retry_config or RetryConfig.single_retry(config.retry_delay_ms))
        self._owns_client = http_client is None
        if http_client is None:
            http_client = httpx.Client(
                timeout=config.request_timeout_seconds,
                limits=httpx.Limits(
                    max_connections=100,
                    max_keepalive_connections=50,
                    keepalive_expiry=90.0,
                ),
                transport=transport,
            )
        self._client = http_client

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config.api_key.get_secret_value()}",
        }
        if config.account_id:
            headers[config.account_id_header] = config.account_id
        self._headers = headers

    @property
    def config(self) -> VaultConfig:
        return self._config

    def close(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def tokenize_batch(
        self,
        values: Sequence[str],
        *,
        scope: CancelScope | None = None,
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> list[str]:
        """Insert values and return one token per value, in order.

        Duplicate values are sent as separate records; the vault may issue
        different tokens for them.
        """
        column = self._config.column_name
        payload = {
            "vaultID": self._config.vault_id,
            "tableName": self._config.table_name,
            "records": [{"data": {column: value}} for value in values],
        }
        response = self._post_with_retry(TOKENIZE_PATH, payload, scope=scope, on_retry=on_retry)

        try:
            parsed = _TokenizeResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise TransportError(f"tokenize: unmarshal response: {e.error_count()} validation error(s)") from e

        if len(parsed.records) != len(values):
            raise ResponseShapeMismatch("tokenize", len(values), len(parsed.records))

        tokens: list[str] = []
        for i, record in enumerate(parsed.records):
            entries = record.tokens.get(column)
            if not entries:
                raise ResponseShapeMismatch(
                    "tokenize",
                    len(values),
                    len(parsed.records),
                    detail=f"no token for column {column!r} in record {i}",
                )
            tokens.append(entries[0].token)
        return tokens

    def detokenize_batch(
        self,
        tokens: Sequence[str],
        *,
        scope: CancelScope | None = None,
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> list[str]:
        """Resolve tokens to values, one value per token, in order."""
        payload = {
            "vaultID": self._config.vault_id,
            "tokens": list(tokens),
        }
        response = self._post_with_retry(DETOKENIZE_PATH, payload, scope=scope, on_retry=on_retry)

        try:
            parsed = _DetokenizeResponse.model_validate_json(response.content)
        except ValidationError as e:
            raise TransportError(f"detokenize: unmarshal response: {e.error_count()} validation error(s)") from e

        if len(parsed.response) != len(tokens):
            raise ResponseShapeMismatch("detokenize", len(tokens), len(parsed.response))

        missing = [entry.token for entry in parsed.response if entry.value is None]
        if missing:
            logger.debug("Detokenize entries without a value", count=len(missing), tokens=missing[:5])
        return [entry.value or "" for entry in parsed.response]

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _post_with_retry(
        self,
        path: str,
        payload: dict[str, Any],
        *,
        scope: CancelScope | None,
        on_retry: Callable[[int, BaseException], None] | None,
    ) -> httpx.Response:
        scope = scope or CancelScope()
        url = f"{self._config.vault_url}{path}"
        delay_ms = self._retry.config.delay_seconds * 1000

        def _on_retry(attempt: int, error: BaseException) -> None:
            logger.warning(
                "Vault returned transient status, retrying",
                status_code=getattr(error, "status_code", None),
                attempt=attempt,
                retry_delay_ms=delay_ms,
                url=url,
            )
            if on_retry is not None:
                on_retry(attempt, error)

        return self._retry.execute_with_retry(
            lambda: self._post_once(url, payload, scope),
            is_retryable=lambda e: isinstance(e, TransientServerError),
            on_retry=_on_retry,
            sleep=scope.sleep,
        )

    def _post_once(self, url: str, payload: dict[str, Any], scope: CancelScope) -> httpx.Response:
        """Single POST. Raises on any non-2xx status."""
        timeout = scope.clamp_timeout(self._config.request_timeout_seconds)
        try:
            response = self._client.post(url, json=payload, headers=self._headers, timeout=timeout)
        except httpx.TimeoutException as e:
            if scope.cancelled:
                raise scope.error() from e
            raise TransportError(f"vault request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"vault request: {e}") from e

        status = response.status_code
        if is_transient_status(status):
            raise TransientServerError(status, _truncate(response.text))
        if not is_success_status(status):
            raise TransportError(f"vault API returned {status}: {_truncate(response.text)}", status_code=status)
        return response
