"""Row-level data carried through a single batch invocation.

A Batch is the ordered list of inbound rows for one invocation. Everything
here is derived from it and owned by that invocation alone.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from vaultbench.contracts.errors import MalformedRowError


@dataclass(frozen=True, slots=True)
class Row:
    """A well-formed inbound row.

    Attributes:
        original_index: Position of the row in the inbound batch
        row_key: Caller-supplied key, round-tripped unmodified
        value: Plaintext (tokenize) or token (detokenize)
    """

    original_index: int
    row_key: Any
    value: str


@dataclass(frozen=True, slots=True)
class RejectedRow:
    """An inbound row finalized with an error before any vault work."""

    original_index: int
    row_key: Any
    error: MalformedRowError


@dataclass(frozen=True, slots=True)
class NormalizedBatch:
    """Output of row normalization: well-formed rows plus pre-finalized rejects.

    Both sequences are in original_index order. Together they cover every
    inbound index exactly once.
    """

    total_rows: int
    rows: tuple[Row, ...]
    rejected: tuple[RejectedRow, ...] = ()


@dataclass(slots=True)
class DedupGroup:
    """All rows sharing one value, in first-seen order."""

    value: str
    rows: list[Row] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class DedupIndex:
    """Distinct values of a batch and the rows that asked for each.

    Groups are ordered by first occurrence of their value. No row appears in
    two groups.
    """

    groups: tuple[DedupGroup, ...]

    @property
    def values(self) -> list[str]:
        return [g.value for g in self.groups]

    @property
    def unique_count(self) -> int:
        return len(self.groups)

    @property
    def row_count(self) -> int:
        return sum(len(g.rows) for g in self.groups)

    def __iter__(self) -> Iterator[DedupGroup]:
        return iter(self.groups)


@dataclass(frozen=True, slots=True)
class SubBatch[T]:
    """Contiguous slice of distinct work items sent in one vault call.

    Attributes:
        index: Position of this sub-batch in split order
        items: Rows (tokenize) or distinct values (detokenize)
    """

    index: int
    items: tuple[T, ...]

    def __len__(self) -> int:
        return len(self.items)
