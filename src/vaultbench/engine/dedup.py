"""Value deduplication for the detokenize path.

Tokenize never goes through here: every plaintext row is inserted on its
own even when another row carries the same value.
"""

from __future__ import annotations

from collections.abc import Iterable

from vaultbench.contracts import DedupGroup, DedupIndex, Row


def build_dedup_index(rows: Iterable[Row]) -> DedupIndex:
    """Group rows by value, groups ordered by first occurrence.

    First-seen order only decides which sub-batch a value lands in; results
    are fanned back by group membership, not by position.
    """
    groups: dict[str, DedupGroup] = {}
    for row in rows:
        group = groups.get(row.value)
        if group is None:
            group = DedupGroup(value=row.value)
            groups[row.value] = group
        group.rows.append(row)
    return DedupIndex(groups=tuple(groups.values()))


def dedup_percentage(total_rows: int, unique_count: int) -> float:
    """Percent of rows saved by dedup: ``100 * (1 - unique / total)``.

    ``total_rows`` is the whole inbound batch, malformed rows included.
    """
    if total_rows <= 0:
        return 0.0
    return 100.0 * (1.0 - unique_count / total_rows)
