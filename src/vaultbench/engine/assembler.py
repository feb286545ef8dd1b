"""Reassembly of sub-batch outcomes into the outbound batch.

Assembly is keyed by original_index and dedup-group membership, never by
completion order, so the output is identical however the calls raced.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from vaultbench.contracts import (
    CallOutcome,
    DedupIndex,
    NormalizedBatch,
    Row,
    SubBatch,
    error_placeholder,
)


def _slot_values(sub_batch: SubBatch[Any], outcome: CallOutcome) -> list[str]:
    """One result string per item: the vault's answer or the call's error."""
    if outcome.sub_batch_index != sub_batch.index:
        raise ValueError(f"outcome {outcome.sub_batch_index} paired with sub-batch {sub_batch.index}")
    if outcome.succeeded and outcome.results is not None:
        return list(outcome.results)
    return [error_placeholder(outcome.error or "unknown error")] * len(sub_batch)


class ResultAssembler:
    """Builds the ``[row_key, result]`` list for one batch.

    Rejected rows are placed at construction. Every remaining row must be
    placed exactly once before build().

    Usage:
        assembler = ResultAssembler(normalized)
        assembler.fill_direct(sub_batches, outcomes)      # tokenize
        # or assembler.fill_fanout(index, sub_batches, outcomes)  # detokenize
        rows = assembler.build()
    """

    def __init__(self, batch: NormalizedBatch) -> None:
        self._slots: list[list[Any] | None] = [None] * batch.total_rows
        for rejected in batch.rejected:
            self._slots[rejected.original_index] = [rejected.row_key, error_placeholder(rejected.error)]

    def place(self, row: Row, result: str) -> None:
        """Set one row's result.

        Raises:
            ValueError: If the row was already placed
        """
        if self._slots[row.original_index] is not None:
            raise ValueError(f"row {row.original_index} placed twice")
        self._slots[row.original_index] = [row.row_key, result]

    def fill_direct(self, sub_batches: Sequence[SubBatch[Row]], outcomes: Sequence[CallOutcome]) -> None:
        """Tokenize: results map 1:1 onto the rows of each sub-batch."""
        for sub_batch, outcome in zip(sub_batches, outcomes, strict=True):
            for row, result in zip(sub_batch.items, _slot_values(sub_batch, outcome), strict=True):
                self.place(row, result)

    def fill_fanout(
        self,
        index: DedupIndex,
        sub_batches: Sequence[SubBatch[str]],
        outcomes: Sequence[CallOutcome],
    ) -> None:
        """Detokenize: each value's result goes to every row in its group."""
        by_value: dict[str, str] = {}
        for sub_batch, outcome in zip(sub_batches, outcomes, strict=True):
            for value, result in zip(sub_batch.items, _slot_values(sub_batch, outcome), strict=True):
                by_value[value] = result

        for group in index:
            result = by_value[group.value]
            for row in group.rows:
                self.place(row, result)

    def build(self) -> list[list[Any]]:
        """The outbound batch, in inbound order.

        Raises:
            RuntimeError: If any row was never placed
        """
        missing = [i for i, slot in enumerate(self._slots) if slot is None]
        if missing:
            raise RuntimeError(f"Assembler missing results for rows {missing[:10]} ({len(missing)} total)")
        return [slot for slot in self._slots if slot is not None]
