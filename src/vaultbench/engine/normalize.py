"""Row normalization: the first stage of every batch.

Splits an inbound batch into well-formed rows and rows that are finalized
on the spot with an error placeholder. A rejected row never reaches
dedup, splitting or dispatch, and never affects any other row.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from vaultbench.contracts import (
    BatchParseError,
    MalformedRowError,
    NormalizedBatch,
    RejectedRow,
    Row,
)

# Positional fields every row needs: row key, value
REQUIRED_FIELDS = 2


def format_value(value: Any) -> str:
    """Render a row value as the string sent to the vault.

    Strings pass through untouched. Other JSON scalars are rendered the way
    they appeared on the wire (``true``, ``null``, ``42``).
    """
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def normalize_rows(raw_rows: Sequence[Any]) -> NormalizedBatch:
    """Validate inbound rows and extract (original_index, row_key, value).

    A row is well-formed when it is a list with at least two positional
    fields. A malformed row keeps its first field as row key when it has
    one, otherwise its position stands in.

    Raises:
        BatchParseError: If the batch itself is not a list of rows
    """
    if not isinstance(raw_rows, list | tuple):
        raise BatchParseError(f"expected a list of rows, got {type(raw_rows).__name__}")

    rows: list[Row] = []
    rejected: list[RejectedRow] = []
    for i, raw in enumerate(raw_rows):
        if not isinstance(raw, list | tuple) or len(raw) < REQUIRED_FIELDS:
            field_count = len(raw) if isinstance(raw, list | tuple) else 0
            row_key = raw[0] if field_count >= 1 else i
            rejected.append(RejectedRow(original_index=i, row_key=row_key, error=MalformedRowError(i, field_count)))
            continue
        rows.append(Row(original_index=i, row_key=raw[0], value=format_value(raw[1])))

    return NormalizedBatch(total_rows=len(raw_rows), rows=tuple(rows), rejected=tuple(rejected))
