"""
Shared test fixtures and configuration for the test suite.

Provides: deterministic embedding/LLM fakes, an in-memory chunk repository,
an in-memory SQLite session factory and snapshot stores under tmp_path.
"""

from typing import Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.domain import Chunk, GenerationResult
from core.exceptions import EmbeddingFailedError, LLMProviderError
from core.interfaces import IChunkRepository, IEmbeddingService, ILLMProvider
from database.session import Base
from infrastructure.snapshot_store import JsonSnapshotStore
from infrastructure.vector_index import LinearScanVectorIndex


class KeywordEmbedding(IEmbeddingService):
    """Bag-of-keywords vectors: similar wording gives similar vectors."""

    VOCAB = ["python", "rust", "cat", "dog", "vector", "pizza", "baking", "index"]

    def __init__(self, fail_on: Optional[List[str]] = None):
        self.fail_on = list(fail_on or [])
        self.batch_calls = 0
        self.single_calls = 0

    @property
    def dimension(self) -> int:
        return len(self.VOCAB) + 1

    def _vector(self, text: str) -> List[float]:
        if any(marker in text for marker in self.fail_on):
            raise EmbeddingFailedError(f"Cannot embed: {text[:20]}")
        lowered = text.lower()
        return [float(lowered.count(word)) for word in self.VOCAB] + [0.1]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.batch_calls += 1
        return [self._vector(t) for t in texts]

    async def embed(self, text: str) -> List[float]:
        self.single_calls += 1
        return self._vector(text)


class FakeProvider(ILLMProvider):
    """Records prompts; answers with a fixed text or raises the configured error."""

    def __init__(self, name: str, answer: str = "stub answer", error: Optional[Exception] = None,
                 is_local: bool = False):
        self.name = name
        self.model = f"{name}-model"
        self.is_local = is_local
        self.answer = answer
        self.error = error
        self.prompts: List[str] = []
        self.calls: List[dict] = []

    async def generate(self, prompt: str, max_tokens: Optional[int] = None,
                       temperature: Optional[float] = None) -> GenerationResult:
        self.prompts.append(prompt)
        self.calls.append({"max_tokens": max_tokens, "temperature": temperature})
        if self.error is not None:
            raise self.error
        return GenerationResult(text=self.answer, model_id=self.model, usage={"total_tokens": 10})

    async def test_connection(self) -> bool:
        return self.error is None


class InMemoryChunkRepository(IChunkRepository):
    def __init__(self, chunks: Optional[List[Chunk]] = None):
        self.chunks: Dict[str, Chunk] = {c.id: c for c in chunks or []}
        self.vector_ids: Dict[str, str] = {}

    async def get_chunks_by_document(self, document_id: str) -> List[Chunk]:
        return sorted(
            (c for c in self.chunks.values() if c.document_id == document_id),
            key=lambda c: c.index
        )

    async def get_all_chunks(self) -> List[Chunk]:
        return list(self.chunks.values())

    async def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        return self.chunks.get(chunk_id)

    async def get_chunks(self, chunk_ids: List[str]) -> Dict[str, Chunk]:
        return {cid: self.chunks[cid] for cid in chunk_ids if cid in self.chunks}

    async def replace_document_chunks(self, document_id: str, chunks: List[Chunk]) -> None:
        self.chunks = {k: v for k, v in self.chunks.items() if v.document_id != document_id}
        self.chunks.update({c.id: c for c in chunks})

    async def update_vector_ids(self, mapping: Dict[str, str]) -> None:
        self.vector_ids.update(mapping)

    async def get_vector_ids(self, document_id: str) -> Dict[str, Optional[str]]:
        return {
            c.id: self.vector_ids.get(c.id)
            for c in self.chunks.values() if c.document_id == document_id
        }

    async def get_chunk_statistics(self) -> Dict[str, int]:
        sizes = [len(c.text) for c in self.chunks.values()]
        average = round(sum(sizes) / len(sizes)) if sizes else 0
        return {"total_chunks": len(sizes), "average_chunk_size": average}


def make_chunk(chunk_id: str, text: str, document_id: str = "doc-1", index: int = 0,
               document_name: str = "notes.txt") -> Chunk:
    return Chunk(
        id=chunk_id,
        document_id=document_id,
        index=index,
        text=text,
        start_offset=0,
        end_offset=len(text),
        document_name=document_name
    )


@pytest.fixture
def embedding() -> KeywordEmbedding:
    return KeywordEmbedding()


@pytest.fixture
def snapshot_store(tmp_path) -> JsonSnapshotStore:
    return JsonSnapshotStore(str(tmp_path / "vectors" / "vector_data.json"))


@pytest.fixture
async def vector_index(snapshot_store) -> LinearScanVectorIndex:
    index = LinearScanVectorIndex(snapshot_store)
    await index.open()
    return index


@pytest.fixture
def chunk_repo() -> InMemoryChunkRepository:
    return InMemoryChunkRepository()


@pytest.fixture
async def session_factory():
    """
    In-memory SQLite async database for repository tests.

    Yields:
        async_sessionmaker bound to a fresh schema
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
