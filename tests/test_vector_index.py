"""
Test suite for LinearScanVectorIndex, cosine_similarity and JsonSnapshotStore.
"""

import asyncio
import json
import math
from unittest.mock import AsyncMock

import pytest

from core.domain import VectorEntry
from core.exceptions import DimensionMismatchError, PersistenceError
from infrastructure.snapshot_store import JsonSnapshotStore
from infrastructure.vector_index import LinearScanVectorIndex, cosine_similarity


def entry(chunk_id, vector, **metadata):
    return VectorEntry(chunk_id=chunk_id, vector=vector, metadata=metadata)


class TestCosineSimilarity:
    """Edge cases of the similarity function."""

    def test_identical_opposite_and_orthogonal(self):
        assert cosine_similarity([1, 2, 3], [1, 2, 3]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)

    def test_degenerate_inputs_return_zero(self):
        assert cosine_similarity([1, 2], [1, 2, 3]) == 0.0
        assert cosine_similarity([], []) == 0.0
        assert cosine_similarity([0, 0], [1, 1]) == 0.0
        assert cosine_similarity(None, [1]) == 0.0

    def test_result_is_clamped(self):
        value = cosine_similarity([1e-3, 1e-3], [1e-3, 1e-3])
        assert -1.0 <= value <= 1.0


class TestVectorIndexAddAndSearch:
    """Insertion, overwrite and ranking behaviour."""

    @pytest.mark.asyncio
    async def test_search_on_empty_index_returns_nothing(self, vector_index):
        # No dimension yet, so even a "wrong" query length is fine
        assert await vector_index.search([1.0, 2.0, 3.0, 4.0], k=5) == []

    @pytest.mark.asyncio
    async def test_results_sorted_ranked_and_bounded(self, vector_index):
        await vector_index.add([
            entry("a", [1.0, 0.0, 0.0]),
            entry("b", [0.9, 0.1, 0.0]),
            entry("c", [0.0, 1.0, 0.0]),
            entry("d", [-1.0, 0.0, 0.0]),
        ])

        hits = await vector_index.search([1.0, 0.0, 0.0], k=3)

        assert [h.chunk_id for h in hits] == ["a", "b", "c"]
        assert [h.rank for h in hits] == [1, 2, 3]
        assert hits[0].similarity == pytest.approx(1.0)
        assert all(-1.0 <= h.similarity <= 1.0 for h in hits)
        assert hits[0].similarity >= hits[1].similarity >= hits[2].similarity

    @pytest.mark.asyncio
    async def test_threshold_filters_low_scores(self, vector_index):
        await vector_index.add([entry("a", [1.0, 0.0]), entry("b", [0.0, 1.0])])

        hits = await vector_index.search([1.0, 0.0], k=5, threshold=0.5)

        assert [h.chunk_id for h in hits] == ["a"]

    @pytest.mark.asyncio
    async def test_k_larger_than_index(self, vector_index):
        await vector_index.add([entry("a", [1.0, 0.0]), entry("b", [0.0, 1.0])])
        assert len(await vector_index.search([1.0, 1.0], k=10)) == 2

    @pytest.mark.asyncio
    async def test_re_adding_same_id_overwrites(self, vector_index):
        await vector_index.add([entry("a", [1.0, 0.0])])
        await vector_index.add([entry("a", [0.0, 1.0])])

        assert vector_index.stats().count == 1
        hits = await vector_index.search([0.0, 1.0], k=1)
        assert hits[0].chunk_id == "a"
        assert hits[0].similarity == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_dimension_is_locked_by_first_insert(self, vector_index):
        await vector_index.add([entry("a", [1.0, 0.0, 0.0])])

        result = await vector_index.add([entry("b", [1.0, 0.0]), entry("c", [0.0, 0.0, 1.0])])

        assert result.added == 1
        assert result.skipped == 1
        assert vector_index.stats().dimension == 3
        assert vector_index.stats().count == 2

    @pytest.mark.asyncio
    async def test_invalid_vectors_are_skipped(self, vector_index):
        result = await vector_index.add([
            entry("empty", []),
            entry("nan", [math.nan, 1.0]),
            entry("ok", [1.0, 1.0]),
        ])

        assert result.added == 1
        assert result.skipped == 2

    @pytest.mark.asyncio
    async def test_skipped_entry_does_not_fix_dimension(self, vector_index):
        result = await vector_index.add([entry("bad", [math.nan, 0.0, 0.0]), entry("ok", [1.0, 0.0])])

        assert result.added == 1
        assert result.skipped == 1
        assert vector_index.stats().dimension == 2

    @pytest.mark.asyncio
    async def test_duplicate_ids_in_one_batch_count_once(self, vector_index):
        result = await vector_index.add([
            entry("a", [1.0, 0.0]),
            entry("a", [0.0, 1.0]),
            entry("b", [1.0, 1.0]),
        ])

        assert result.added == 2
        assert result.chunk_ids == ["a", "b"]
        assert vector_index.stats().count == 2
        # Last occurrence wins
        assert vector_index.get_entry("a").vector == [0.0, 1.0]

    @pytest.mark.asyncio
    async def test_result_lists_only_accepted_ids(self, vector_index):
        await vector_index.add([entry("a", [1.0, 0.0, 0.0])])

        result = await vector_index.add([entry("short", [1.0]), entry("b", [0.0, 1.0, 0.0])])

        assert result.chunk_ids == ["b"]

    @pytest.mark.asyncio
    async def test_query_with_wrong_dimension_raises(self, vector_index):
        await vector_index.add([entry("a", [1.0, 0.0, 0.0])])

        with pytest.raises(DimensionMismatchError):
            await vector_index.search([1.0, 0.0], k=1)

    @pytest.mark.asyncio
    async def test_zero_query_vector_scores_zero(self, vector_index):
        await vector_index.add([entry("a", [1.0, 0.0])])

        hits = await vector_index.search([0.0, 0.0], k=1)

        assert hits[0].similarity == 0.0

    @pytest.mark.asyncio
    async def test_concurrent_adds_are_not_lost(self, vector_index):
        await asyncio.gather(*[
            vector_index.add([entry(f"id-{i}", [float(i + 1), 1.0])]) for i in range(10)
        ])
        assert vector_index.stats().count == 10

    @pytest.mark.asyncio
    async def test_offloaded_scan_matches_inline_scan(self, snapshot_store):
        index = LinearScanVectorIndex(snapshot_store, offload_threshold=1)
        await index.open()
        await index.add([entry("a", [1.0, 0.0]), entry("b", [0.0, 1.0])])

        hits = await index.search([1.0, 0.1], k=2)

        assert [h.chunk_id for h in hits] == ["a", "b"]


class TestVectorIndexRemoveAndRebuild:
    """Removal and whole-index replacement."""

    @pytest.mark.asyncio
    async def test_remove(self, vector_index):
        await vector_index.add([entry("a", [1.0, 0.0]), entry("b", [0.0, 1.0])])

        assert await vector_index.remove("a") is True
        assert await vector_index.remove("a") is False
        assert vector_index.stats().count == 1

    @pytest.mark.asyncio
    async def test_rebuild_replaces_contents_and_dimension(self, vector_index):
        await vector_index.add([entry("a", [1.0, 0.0, 0.0])])

        result = await vector_index.rebuild([entry("x", [1.0, 0.0]), entry("y", [0.0, 1.0])])

        assert result.added == 2
        assert vector_index.stats().count == 2
        assert vector_index.stats().dimension == 2
        assert await vector_index.search([1.0, 0.0], k=5) != []

    @pytest.mark.asyncio
    async def test_rebuild_with_nothing_empties_index(self, vector_index):
        await vector_index.add([entry("a", [1.0, 0.0])])

        await vector_index.rebuild([])

        assert vector_index.stats().count == 0
        assert await vector_index.search([1.0, 0.0, 0.0], k=1) == []


class TestVectorIndexPersistence:
    """Snapshot save/load and failure handling."""

    @pytest.mark.asyncio
    async def test_reopen_restores_entries(self, snapshot_store):
        first = LinearScanVectorIndex(snapshot_store)
        await first.open()
        await first.add([entry("a", [1.0, 0.0], document_id="doc-1"), entry("b", [0.0, 1.0])])

        second = LinearScanVectorIndex(snapshot_store)
        await second.open()

        assert second.stats().count == 2
        assert second.stats().dimension == 2
        hits = await second.search([1.0, 0.0], k=1)
        assert hits[0].chunk_id == "a"
        assert second.get_entry("a").metadata == {"document_id": "doc-1"}

    @pytest.mark.asyncio
    async def test_snapshot_file_layout(self, vector_index, snapshot_store):
        await vector_index.add([entry("a", [1.0, 0.0])])

        data = json.loads(snapshot_store.path.read_text(encoding="utf-8"))

        assert data["dimension"] == 2
        assert data["total_vectors"] == 1
        assert "last_updated" in data
        assert data["vectors"]["a"]["vector"] == [1.0, 0.0]

    @pytest.mark.asyncio
    async def test_corrupt_snapshot_starts_empty(self, tmp_path):
        path = tmp_path / "vector_data.json"
        path.write_text("{not valid json", encoding="utf-8")

        index = LinearScanVectorIndex(JsonSnapshotStore(str(path)))
        await index.open()

        assert index.stats().count == 0

    @pytest.mark.asyncio
    async def test_snapshot_with_wrong_typed_vectors_keeps_valid_entries(self, tmp_path):
        path = tmp_path / "vector_data.json"
        path.write_text(json.dumps({
            "dimension": 2,
            "vectors": {
                "a": {"vector": ["x", "y"]},
                "b": {"vector": 5},
                "c": {"vector": [[1.0], [0.0]]},
                "d": {"vector": [1.0, 0.0], "metadata": ["not", "a", "dict"]},
            }
        }), encoding="utf-8")

        index = LinearScanVectorIndex(JsonSnapshotStore(str(path)))
        await index.open()

        assert index.stats().count == 1
        assert index.get_entry("d").metadata == {}
        assert (await index.search([1.0, 0.0], k=1))[0].chunk_id == "d"

    @pytest.mark.asyncio
    async def test_snapshot_with_malformed_layout_starts_empty(self, tmp_path):
        path = tmp_path / "vector_data.json"
        path.write_text(json.dumps({"dimension": 2, "vectors": {"a": 5}}), encoding="utf-8")

        index = LinearScanVectorIndex(JsonSnapshotStore(str(path)))
        await index.open()

        assert index.stats().count == 0

    @pytest.mark.asyncio
    async def test_missing_snapshot_starts_empty(self, tmp_path):
        index = LinearScanVectorIndex(JsonSnapshotStore(str(tmp_path / "none.json")))
        await index.open()
        assert index.stats().count == 0

    @pytest.mark.asyncio
    async def test_persistence_failure_propagates(self):
        store = AsyncMock()
        store.load_snapshot.return_value = None
        store.save_snapshot.side_effect = PersistenceError("disk full")
        index = LinearScanVectorIndex(store)
        await index.open()

        with pytest.raises(PersistenceError):
            await index.add([entry("a", [1.0, 0.0])])

        # Memory stays ahead of disk; the next rebuild repairs the snapshot
        assert index.stats().count == 1

    @pytest.mark.asyncio
    async def test_nothing_added_means_nothing_saved(self):
        store = AsyncMock()
        store.load_snapshot.return_value = None
        index = LinearScanVectorIndex(store)
        await index.open()

        result = await index.add([entry("a", [])])

        assert result.added == 0
        store.save_snapshot.assert_not_awaited()
