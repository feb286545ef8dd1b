# src/vaultbench/pooling/__init__.py
"""Bounded concurrent dispatch of vault sub-batches."""

from vaultbench.pooling.cancellation import CancelScope
from vaultbench.pooling.config import PoolConfig
from vaultbench.pooling.errors import is_success_status, is_transient_status
from vaultbench.pooling.executor import BoundedDispatcher, CallContext, DispatchReport
from vaultbench.pooling.state import InvalidTransitionError, SubBatchTracker

__all__ = [
    "BoundedDispatcher",
    "CallContext",
    "CancelScope",
    "DispatchReport",
    "InvalidTransitionError",
    "PoolConfig",
    "SubBatchTracker",
    "is_success_status",
    "is_transient_status",
]
