"""Batch processing stages and the processor that chains them."""

from vaultbench.engine.assembler import ResultAssembler
from vaultbench.engine.dedup import build_dedup_index, dedup_percentage
from vaultbench.engine.normalize import format_value, normalize_rows
from vaultbench.engine.processor import VaultBatchProcessor
from vaultbench.engine.splitter import split_items

__all__ = [
    "ResultAssembler",
    "VaultBatchProcessor",
    "build_dedup_index",
    "dedup_percentage",
    "format_value",
    "normalize_rows",
    "split_items",
]
