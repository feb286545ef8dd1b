# tests/engine/test_batch_properties.py
"""Property-based tests for splitting, dedup and assembly using Hypothesis.

Invariants checked over arbitrary batches:
1. Splitting: size bound, order, and lossless concatenation
2. Dedup: one group per distinct value, every row in exactly one group
3. Processor: completeness, order preservation, each value sent once
"""

from __future__ import annotations

from typing import Any

from hypothesis import given
from hypothesis import strategies as st

from vaultbench.contracts import Row, is_error_placeholder
from vaultbench.core.config import VaultConfig
from vaultbench.engine.dedup import build_dedup_index
from vaultbench.engine.processor import VaultBatchProcessor
from vaultbench.engine.splitter import split_items
from vaultbench.testing.fake_vault import FakeVault

# Small alphabet so duplicates are common
tokens = st.text(alphabet="abc", min_size=1, max_size=2)

well_formed_rows = st.lists(st.tuples(st.integers(), tokens).map(list), max_size=40)

any_rows = st.lists(
    st.one_of(
        st.tuples(st.integers(), tokens).map(list),
        st.tuples(st.integers()).map(list),
        st.just([]),
    ),
    max_size=40,
)


class TestSplitProperties:
    @given(items=st.lists(st.integers(), max_size=200), size=st.integers(min_value=1, max_value=30))
    def test_concatenation_is_lossless(self, items: list[int], size: int) -> None:
        sub_batches = split_items(items, size)
        assert [x for sb in sub_batches for x in sb.items] == items

    @given(items=st.lists(st.integers(), max_size=200), size=st.integers(min_value=1, max_value=30))
    def test_size_bound(self, items: list[int], size: int) -> None:
        sub_batches = split_items(items, size)
        assert all(1 <= len(sb) <= size for sb in sub_batches)
        # Only the last sub-batch may be short
        assert all(len(sb) == size for sb in sub_batches[:-1])
        assert len(sub_batches) == -(-len(items) // size)


class TestDedupProperties:
    @given(values=st.lists(tokens, max_size=60))
    def test_one_group_per_distinct_value(self, values: list[str]) -> None:
        rows = [Row(i, i, v) for i, v in enumerate(values)]
        index = build_dedup_index(rows)

        assert index.unique_count == len(set(values))
        assert len(index.values) == len(set(index.values))
        assert sorted(r.original_index for g in index for r in g.rows) == list(range(len(values)))
        assert all(r.value == g.value for g in index for r in g.rows)


def _seeded_processor(rows: list[Any], sub_batch_size: int) -> tuple[VaultBatchProcessor, FakeVault]:
    vault = FakeVault(record_requests=True)
    for row in rows:
        if isinstance(row, list) and len(row) >= 2:
            vault.seed(row[1], f"value-of-{row[1]}")
    config = VaultConfig(
        vault_url="https://vault.test",
        api_key="k",
        vault_id="v",
        sub_batch_size=sub_batch_size,
        max_concurrency=3,
        retry_delay_ms=0,
    )
    return VaultBatchProcessor.from_config(config, transport=vault.transport(), emit_metrics=False), vault


class TestProcessorProperties:
    @given(rows=any_rows, sub_batch_size=st.integers(min_value=1, max_value=7))
    def test_detokenize_complete_ordered_and_deduplicated(self, rows: list[Any], sub_batch_size: int) -> None:
        processor, vault = _seeded_processor(rows, sub_batch_size)
        with processor.client:
            result = processor.detokenize(rows)

        # Completeness and order
        assert len(result.rows) == len(rows)
        for raw, out in zip(rows, result.rows, strict=True):
            if len(raw) >= 2:
                assert out == [raw[0], f"value-of-{raw[1]}"]
            else:
                assert is_error_placeholder(out[1])

        # Each distinct value sent exactly once, in bounded sub-batches
        sent = [t for body in vault.requests for t in body["tokens"]]
        distinct = {raw[1] for raw in rows if len(raw) >= 2}
        assert sorted(sent) == sorted(distinct)
        assert all(size <= sub_batch_size for size in vault.stats().call_sizes)

    @given(rows=well_formed_rows, sub_batch_size=st.integers(min_value=1, max_value=7))
    def test_tokenize_sends_every_row(self, rows: list[Any], sub_batch_size: int) -> None:
        processor, vault = _seeded_processor([], sub_batch_size)
        with processor.client:
            result = processor.tokenize(rows)

        assert [r[0] for r in result.rows] == [r[0] for r in rows]
        sent = [rec["data"]["name"] for body in vault.requests for rec in body["records"]]
        assert sent == [r[1] for r in rows]
