# services/indexing_pipeline.py
"""Chunk embedding, index maintenance and semantic search over the vector index."""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from config import settings
from core.domain import Chunk, IndexingResult, RankedResult, RebuildResult, VectorEntry
from core.exceptions import EmbeddingFailedError, InvalidInputError
from core.interfaces import IChunkRepository, IEmbeddingService, IVectorIndex
from infrastructure.vector_index import cosine_similarity
from utils.common import generate_preview

logger = logging.getLogger(settings.LOGGER_NAME)


def vector_id_for(chunk_id: str) -> str:
    return f"vec_{chunk_id}"


class IndexingPipeline:
    """
    Glue between chunks, the embedding model and the vector index.

    Indexing:  chunks → embed (batched) → VectorIndex.add → record vector ids
    Search:    query → embed → VectorIndex.search (over-fetch) → join chunk metadata
               → drop stale / filtered hits → re-rank → previews
    """

    def __init__(
        self,
        embedding_service: IEmbeddingService,
        vector_index: IVectorIndex,
        chunk_repo: IChunkRepository,
        batch_size: int = settings.EMBEDDING_BATCH_SIZE,
        batch_pause: float = settings.EMBEDDING_BATCH_PAUSE_SEC,
        overfetch_factor: int = settings.SEARCH_OVERFETCH_FACTOR,
        preview_length: int = settings.PREVIEW_LENGTH,
        default_top_k: int = settings.DEFAULT_TOP_K,
        default_threshold: float = settings.DEFAULT_SIMILARITY_THRESHOLD,
        max_vectorize_texts: int = settings.MAX_VECTORIZE_TEXTS
    ):
        self.embedding_service = embedding_service
        self.vector_index = vector_index
        self.chunk_repo = chunk_repo
        self.batch_size = max(1, batch_size)
        self.batch_pause = batch_pause
        self.overfetch_factor = max(1, overfetch_factor)
        self.preview_length = preview_length
        self.default_top_k = default_top_k
        self.default_threshold = default_threshold
        self.max_vectorize_texts = max_vectorize_texts

    # ============= Embedding =============

    @staticmethod
    def _to_entry(chunk: Chunk, vector: List[float]) -> VectorEntry:
        return VectorEntry(
            chunk_id=chunk.id,
            vector=vector,
            metadata={
                "document_id": chunk.document_id,
                "document_name": chunk.document_name,
                "chunk_index": chunk.index,
                "vector_id": vector_id_for(chunk.id)
            }
        )

    async def _embed_chunks(self, chunks: List[Chunk]) -> Tuple[List[VectorEntry], int]:
        """Embed in batches. A failing batch is retried chunk by chunk so one bad chunk only skips itself."""
        entries: List[VectorEntry] = []
        skipped = 0
        total_batches = (len(chunks) + self.batch_size - 1) // self.batch_size

        for batch_no, start in enumerate(range(0, len(chunks), self.batch_size), start=1):
            batch = chunks[start:start + self.batch_size]
            logger.debug(f"[PIPELINE] Embedding batch {batch_no}/{total_batches} ({len(batch)} chunks)")

            try:
                vectors = await self.embedding_service.embed_batch([c.text for c in batch])
                if len(vectors) != len(batch):
                    raise EmbeddingFailedError(
                        f"Embedding returned {len(vectors)} vectors for {len(batch)} texts"
                    )
                entries.extend(self._to_entry(c, v) for c, v in zip(batch, vectors))
            except EmbeddingFailedError as e:
                logger.warning(f"[PIPELINE] Batch {batch_no} failed ({e}), retrying chunk by chunk")
                for chunk in batch:
                    try:
                        vector = await self.embedding_service.embed(chunk.text)
                        entries.append(self._to_entry(chunk, vector))
                    except EmbeddingFailedError as chunk_error:
                        logger.error(f"[PIPELINE] Skipping chunk {chunk.id}: {chunk_error}")
                        skipped += 1

            if batch_no < total_batches and self.batch_pause > 0:
                await asyncio.sleep(self.batch_pause)

        return entries, skipped

    async def _record_vector_ids(self, chunk_ids: List[str]) -> None:
        if chunk_ids:
            await self.chunk_repo.update_vector_ids({cid: vector_id_for(cid) for cid in chunk_ids})

    # ============= Indexing =============

    async def index_chunks(self, chunks: List[Chunk]) -> IndexingResult:
        """Embed `chunks` and add them to the index (overwriting existing entries)."""
        if not chunks:
            return IndexingResult(indexed=0, skipped=0)

        logger.info(f"[PIPELINE] Indexing {len(chunks)} chunks...")
        entries, skipped = await self._embed_chunks(chunks)
        if not entries:
            logger.warning(f"[PIPELINE] No chunk could be embedded ({skipped} skipped).")
            return IndexingResult(indexed=0, skipped=skipped)

        result = await self.vector_index.add(entries)
        await self._record_vector_ids(result.chunk_ids)

        logger.info(f"[PIPELINE] Indexed {result.added} chunks ({skipped + result.skipped} skipped).")
        return IndexingResult(indexed=result.added, skipped=skipped + result.skipped)

    async def load_all_chunks(self) -> List[Chunk]:
        return await self.chunk_repo.get_all_chunks()

    async def build_index(self) -> IndexingResult:
        """Incremental build: embed only the stored chunks that have no vector in the index yet."""
        chunks = await self.load_all_chunks()
        missing = [c for c in chunks if self.vector_index.get_entry(c.id) is None]
        logger.info(f"[PIPELINE] Incremental build: {len(missing)} of {len(chunks)} chunks need vectors.")
        return await self.index_chunks(missing)

    async def rebuild_all(self, chunks: Optional[List[Chunk]] = None) -> RebuildResult:
        """Re-embed every chunk and replace the index contents."""
        if chunks is None:
            chunks = await self.load_all_chunks()

        logger.info(f"[PIPELINE] Rebuilding index from {len(chunks)} chunks...")
        entries, skipped = await self._embed_chunks(chunks)
        result = await self.vector_index.rebuild(entries)
        await self._record_vector_ids(result.chunk_ids)

        if skipped or result.skipped:
            logger.warning(f"[PIPELINE] Rebuild skipped {skipped + result.skipped} chunks.")
        return RebuildResult(rebuilt=result.added, success=True)

    # ============= Search =============

    async def search(
        self,
        query: str,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
        document_ids: Optional[List[str]] = None
    ) -> List[RankedResult]:
        if not query or not query.strip():
            raise InvalidInputError("Search query must not be empty")

        top_k = self.default_top_k if top_k is None else top_k
        threshold = self.default_threshold if threshold is None else threshold
        if top_k <= 0:
            return []

        if self.vector_index.stats().count == 0:
            logger.info("[PIPELINE] Search skipped, index is empty.")
            return []

        query_vector = await self.embedding_service.embed(query)
        hits = await self.vector_index.search(
            query_vector, k=top_k * self.overfetch_factor, threshold=threshold
        )
        if not hits:
            return []

        chunks = await self.chunk_repo.get_chunks([h.chunk_id for h in hits])
        allowed = set(document_ids) if document_ids else None

        results: List[RankedResult] = []
        for hit in hits:
            chunk = chunks.get(hit.chunk_id)
            if chunk is None:
                logger.debug(f"[PIPELINE] Dropping stale hit {hit.chunk_id}")
                continue
            if allowed is not None and chunk.document_id not in allowed:
                continue
            results.append(RankedResult(
                chunk_id=chunk.id,
                similarity=hit.similarity,
                rank=0,
                document_id=chunk.document_id,
                document_name=chunk.document_name,
                chunk_index=chunk.index,
                content=chunk.text,
                metadata=dict(chunk.metadata)
            ))

        results.sort(key=lambda r: r.similarity, reverse=True)
        results = results[:top_k]
        for rank, result in enumerate(results, start=1):
            result.rank = rank
            result.preview = generate_preview(result.content, query, self.preview_length)

        logger.info(f"[PIPELINE] Search returned {len(results)} results (from {len(hits)} hits).")
        return results

    def get_stats(self) -> Dict[str, Any]:
        stats = self.vector_index.stats()
        return {
            "total_vectors": stats.count,
            "dimension": stats.dimension,
            "default_top_k": self.default_top_k,
            "default_threshold": self.default_threshold,
            "batch_size": self.batch_size
        }

    # ============= Vector utilities =============

    async def vectorize(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            raise InvalidInputError("At least one text is required")
        if len(texts) > self.max_vectorize_texts:
            raise InvalidInputError(f"Too many texts ({len(texts)} > {self.max_vectorize_texts})")
        if any(not isinstance(t, str) or not t.strip() for t in texts):
            raise InvalidInputError("Texts must be non-empty strings")
        return await self.embedding_service.embed_batch(texts)

    @staticmethod
    def similarities(vector: List[float], candidates: List[List[float]]) -> List[float]:
        """Cosine similarity of `vector` against each candidate; unusable pairs score 0.0."""
        if not vector:
            raise InvalidInputError("A reference vector is required")
        if not candidates:
            raise InvalidInputError("At least one vector to compare is required")
        return [cosine_similarity(vector, candidate) for candidate in candidates]
