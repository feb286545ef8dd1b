"""Deterministic, order-preserving chunking into sub-batches."""

from __future__ import annotations

from collections.abc import Sequence

from vaultbench.contracts import SubBatch


def split_items[T](items: Sequence[T], size: int) -> list[SubBatch[T]]:
    """Split items into ``ceil(len(items) / size)`` contiguous sub-batches.

    Every sub-batch holds ``size`` items except the last, which holds the
    remainder. Concatenating the sub-batches gives back ``items`` exactly.

    Raises:
        ValueError: If size < 1
    """
    if size < 1:
        raise ValueError(f"sub-batch size must be >= 1, got {size}")
    return [
        SubBatch(index=n, items=tuple(items[start : start + size]))
        for n, start in enumerate(range(0, len(items), size))
    ]
