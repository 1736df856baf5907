# infrastructure/vector_index.py
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from config import settings
from core.domain import AddResult, IndexStats, SearchHit, VectorEntry, VectorSnapshot
from core.exceptions import DimensionMismatchError
from core.interfaces import ISnapshotStore, IVectorIndex

logger = logging.getLogger(settings.LOGGER_NAME)


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """
    dot(a, b) / (|a| * |b|), clamped to [-1, 1].

    Returns 0.0 instead of raising for missing input, mismatched lengths or a
    zero-norm vector.
    """
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0 or not np.isfinite(norm_a * norm_b):
        return 0.0
    return float(np.clip(np.dot(va, vb) / (norm_a * norm_b), -1.0, 1.0))


@dataclass(frozen=True)
class _IndexState:
    """Immutable view of the index; replaced wholesale on every mutation."""
    entries: Dict[str, VectorEntry] = field(default_factory=dict)
    dimension: Optional[int] = None
    ids: Tuple[str, ...] = ()
    matrix: Optional[np.ndarray] = None  # (n, dimension) float32, row i ↔ ids[i]
    norms: Optional[np.ndarray] = None

    @classmethod
    def build(cls, entries: Dict[str, VectorEntry], dimension: Optional[int]) -> '_IndexState':
        if not entries:
            return cls(entries={}, dimension=dimension)
        ids = tuple(entries.keys())
        matrix = np.asarray([entries[i].vector for i in ids], dtype=np.float32)
        norms = np.linalg.norm(matrix, axis=1)
        return cls(entries=entries, dimension=dimension, ids=ids, matrix=matrix, norms=norms)


class LinearScanVectorIndex(IVectorIndex):
    """
    Exact nearest-neighbour index scoring every stored vector by cosine similarity.

    - One asyncio.Lock serializes add/remove/rebuild (no lost updates between batches)
    - Mutations build a new _IndexState and swap it in with a single assignment,
      so concurrent searches see either the old or the new state, never a torn one
    - The full entry set is persisted once per mutating batch
    - The scan is a linear pass by contract; large scans are moved off the event loop
    """

    def __init__(self, snapshot_store: ISnapshotStore,
                 offload_threshold: int = settings.VECTOR_SCAN_OFFLOAD_THRESHOLD):
        self._store = snapshot_store
        self._offload_threshold = offload_threshold
        self._state = _IndexState()
        self._lock = asyncio.Lock()

    async def open(self) -> None:
        """Loads the persisted snapshot; any failure leaves an empty index."""
        try:
            snapshot = await self._store.load_snapshot()
            if snapshot is not None:
                entries, dimension, _, skipped = self._merge({}, None, list(snapshot.entries))
        except Exception as e:
            logger.warning(f"[INDEX] Failed to load snapshot: {e}. Starting with an empty index.")
            snapshot = None

        if snapshot is None:
            logger.info("[INDEX] No usable snapshot, starting with an empty index.")
            self._state = _IndexState()
            return

        self._state = _IndexState.build(entries, dimension)
        if skipped:
            logger.warning(f"[INDEX] Dropped {skipped} invalid vectors while loading snapshot.")
        logger.info(f"[INDEX] Loaded {len(entries)} vectors (dimension {dimension}).")

    async def close(self) -> None:
        # Wait for an in-flight mutation to finish persisting
        async with self._lock:
            logger.info(f"[INDEX] Closed with {len(self._state.entries)} vectors.")

    # ============= Mutations =============

    @staticmethod
    def _coerce(vector) -> Optional[np.ndarray]:
        """1-D finite float64 array, or None when `vector` is not a usable numeric sequence."""
        try:
            values = np.asarray(vector, dtype=np.float64)
        except (TypeError, ValueError):
            return None
        if values.ndim != 1 or values.size == 0 or not np.all(np.isfinite(values)):
            return None
        return values

    @classmethod
    def _merge(
        cls,
        base: Dict[str, VectorEntry],
        dimension: Optional[int],
        batch: List[VectorEntry]
    ) -> Tuple[Dict[str, VectorEntry], Optional[int], List[str], int]:
        """
        Validate `batch` and overlay it on a copy of `base`.

        Returns (entries, dimension, accepted chunk ids without duplicates, skipped).
        """
        entries = dict(base)
        if not entries:
            # First valid insertion into an empty index fixes the dimension
            dimension = None
        accepted: Dict[str, None] = {}
        skipped = 0

        for item in batch:
            values = cls._coerce(item.vector) if item.chunk_id else None
            if values is None:
                logger.warning(f"[INDEX] Skipping invalid vector for chunk '{item.chunk_id}'")
                skipped += 1
                continue

            if dimension is None:
                dimension = int(values.size)

            if values.size != dimension:
                logger.warning(
                    f"[INDEX] Skipping vector with mismatched dimension "
                    f"(expected {dimension}, got {values.size}): {item.chunk_id}"
                )
                skipped += 1
                continue

            metadata = item.metadata if isinstance(item.metadata, dict) else {}
            entries[item.chunk_id] = VectorEntry(
                chunk_id=item.chunk_id,
                vector=values.tolist(),
                metadata=dict(metadata)
            )
            accepted[item.chunk_id] = None

        return entries, dimension, list(accepted), skipped

    async def _persist(self, state: _IndexState) -> None:
        await self._store.save_snapshot(
            VectorSnapshot(dimension=state.dimension, entries=list(state.entries.values()))
        )

    async def add(self, entries: List[VectorEntry]) -> AddResult:
        if not entries:
            return AddResult(added=0, skipped=0)

        async with self._lock:
            current = self._state
            merged, dimension, accepted, skipped = self._merge(current.entries, current.dimension, entries)

            if not accepted:
                logger.info(f"[INDEX] No valid vectors to add ({skipped} skipped).")
                return AddResult(added=0, skipped=skipped)

            new_state = _IndexState.build(merged, dimension)
            self._state = new_state
            await self._persist(new_state)

        logger.info(f"[INDEX] Added {len(accepted)} vectors ({skipped} skipped). Total: {len(new_state.entries)}")
        return AddResult(added=len(accepted), skipped=skipped, chunk_ids=accepted)

    async def remove(self, chunk_id: str) -> bool:
        async with self._lock:
            current = self._state
            if chunk_id not in current.entries:
                logger.debug(f"[INDEX] Vector {chunk_id} not in index, nothing to remove.")
                return False

            remaining = {k: v for k, v in current.entries.items() if k != chunk_id}
            new_state = _IndexState.build(remaining, current.dimension)
            self._state = new_state
            await self._persist(new_state)

        logger.info(f"[INDEX] Removed vector {chunk_id}. Remaining: {len(remaining)}")
        return True

    async def rebuild(self, entries: List[VectorEntry]) -> AddResult:
        logger.info(f"[INDEX] Rebuilding index from {len(entries)} entries...")
        async with self._lock:
            merged, dimension, accepted, skipped = self._merge({}, None, entries)
            new_state = _IndexState.build(merged, dimension)
            self._state = new_state
            await self._persist(new_state)

        logger.info(f"[INDEX] Rebuild complete: {len(merged)} vectors ({skipped} skipped).")
        return AddResult(added=len(accepted), skipped=skipped, chunk_ids=accepted)

    # ============= Queries =============

    async def search(self, query_vector: List[float], k: int = 5,
                     threshold: Optional[float] = None) -> List[SearchHit]:
        state = self._state

        if not state.ids:
            logger.debug("[INDEX] Search called but index is empty.")
            return []

        if query_vector is None or len(query_vector) != state.dimension:
            actual = 0 if query_vector is None else len(query_vector)
            raise DimensionMismatchError(expected=state.dimension, actual=actual)

        if k <= 0:
            return []

        if len(state.ids) > self._offload_threshold:
            scores = await asyncio.to_thread(self._score, state, query_vector)
        else:
            scores = self._score(state, query_vector)

        order = np.argsort(-scores, kind="stable")
        hits: List[SearchHit] = []
        for row in order:
            similarity = float(scores[row])
            if threshold is not None and similarity < threshold:
                # Sorted descending: nothing after this passes either
                break
            hits.append(SearchHit(chunk_id=state.ids[row], similarity=similarity, rank=len(hits) + 1))
            if len(hits) >= k:
                break
        return hits

    @staticmethod
    def _score(state: _IndexState, query_vector: List[float]) -> np.ndarray:
        query = np.asarray(query_vector, dtype=np.float32)
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            return np.zeros(len(state.ids), dtype=np.float32)

        dots = state.matrix @ query
        denominators = state.norms * query_norm
        scores = np.divide(
            dots, denominators,
            out=np.zeros_like(dots),
            where=denominators > 0
        )
        return np.clip(scores, -1.0, 1.0)

    def stats(self) -> IndexStats:
        state = self._state
        return IndexStats(count=len(state.entries), dimension=state.dimension)

    def get_entry(self, chunk_id: str) -> Optional[VectorEntry]:
        return self._state.entries.get(chunk_id)
