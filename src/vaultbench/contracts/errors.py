"""Error taxonomy for vault batch processing.

Only BatchParseError is batch-level. Everything else is resolved at the
smallest affected unit: a row (MalformedRowError) or a sub-batch
(TransportError and its subclasses, CancellationError). Those errors are
turned into placeholder strings in the outbound batch and never abort
sibling rows.
"""

from __future__ import annotations

ERROR_PREFIX = "ERROR: "


def error_placeholder(error: BaseException | str) -> str:
    """Render an error as the string a failed row carries in its result slot."""
    return f"{ERROR_PREFIX}{error}"


def is_error_placeholder(value: object) -> bool:
    return isinstance(value, str) and value.startswith(ERROR_PREFIX)


class VaultBenchError(Exception):
    """Base class for all expected vaultbench errors."""


class MalformedRowError(VaultBenchError):
    """Inbound row is missing its row key or value."""

    def __init__(self, original_index: int, field_count: int) -> None:
        self.original_index = original_index
        self.field_count = field_count
        super().__init__("missing value")


class TransportError(VaultBenchError):
    """Vault call failed: network failure or a non-2xx status.

    Attributes:
        status_code: HTTP status when the vault answered, None for network errors
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientServerError(TransportError):
    """5xx or 429 from the vault. Retried once before becoming terminal."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"vault API returned {status_code}: {body}", status_code=status_code)
        self.body = body


class ResponseShapeMismatch(TransportError):
    """Vault answered 2xx but the payload does not line up with the request."""

    def __init__(self, operation: str, expected: int, actual: int | None, detail: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        if detail is None:
            detail = f"expected {expected} entries, got {actual}"
        super().__init__(f"{operation}: {detail}")


class CancellationError(VaultBenchError):
    """The batch was cancelled or its deadline passed before this call finished."""

    def __init__(self, message: str = "batch cancelled") -> None:
        super().__init__(message)


class BatchParseError(VaultBenchError):
    """Inbound payload has no row structure at all. The only batch-level failure."""
