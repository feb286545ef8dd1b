# src/vaultbench/pooling/config.py
"""Pool configuration for concurrent vault calls."""

from __future__ import annotations

from pydantic import BaseModel, Field


class PoolConfig(BaseModel):
    """Dispatcher configuration.

    Attributes:
        max_concurrency: Max vault calls in flight at once (must be >= 1)
        cancel_poll_interval_ms: How often the joining thread checks for
            cancellation while waiting on workers
    """

    model_config = {"frozen": True, "extra": "forbid"}

    max_concurrency: int = Field(10, ge=1, description="Number of concurrent vault calls")
    cancel_poll_interval_ms: int = Field(50, gt=0, description="Cancellation poll interval in milliseconds")
