"""Shared types for vault batch processing.

Import from here rather than the submodules.
"""

from vaultbench.contracts.enums import HandlerMode, Operation, SubBatchState
from vaultbench.contracts.errors import (
    ERROR_PREFIX,
    BatchParseError,
    CancellationError,
    MalformedRowError,
    ResponseShapeMismatch,
    TransientServerError,
    TransportError,
    VaultBenchError,
    error_placeholder,
    is_error_placeholder,
)
from vaultbench.contracts.results import BatchMetrics, BatchResult, CallOutcome
from vaultbench.contracts.rows import (
    DedupGroup,
    DedupIndex,
    NormalizedBatch,
    RejectedRow,
    Row,
    SubBatch,
)

__all__ = [
    "ERROR_PREFIX",
    "BatchMetrics",
    "BatchParseError",
    "BatchResult",
    "CallOutcome",
    "CancellationError",
    "DedupGroup",
    "DedupIndex",
    "HandlerMode",
    "MalformedRowError",
    "NormalizedBatch",
    "Operation",
    "RejectedRow",
    "ResponseShapeMismatch",
    "Row",
    "SubBatch",
    "SubBatchState",
    "TransientServerError",
    "TransportError",
    "VaultBenchError",
    "error_placeholder",
    "is_error_placeholder",
]
