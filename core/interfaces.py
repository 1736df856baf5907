# core/interfaces.py
"""Core interfaces for the RAG system"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any

from core.domain import (
    AddResult, Chunk, GenerationResult, IndexStats, ProcessedDocument,
    SearchHit, VectorEntry, VectorSnapshot
)
from core.enums import ProcessingStatus

# ============= Vector Index Interface =============
class IVectorIndex(ABC):
    """
    Durable chunk-id → vector store answering top-K cosine queries.

    add/remove/rebuild are serialized against each other; search may run
    concurrently with them and observe the previous snapshot.
    """

    @abstractmethod
    async def open(self) -> None:
        """Load persisted state. Never fails on a missing or corrupt snapshot."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def add(self, entries: List[VectorEntry]) -> AddResult:
        """Insert or overwrite entries; mismatched vectors are skipped and counted."""
        pass

    @abstractmethod
    async def search(self, query_vector: List[float], k: int = 5,
                     threshold: Optional[float] = None) -> List[SearchHit]:
        """Exact top-k by cosine similarity, descending."""
        pass

    @abstractmethod
    async def remove(self, chunk_id: str) -> bool:
        pass

    @abstractmethod
    async def rebuild(self, entries: List[VectorEntry]) -> AddResult:
        """Replace the whole contents with `entries`."""
        pass

    @abstractmethod
    def stats(self) -> IndexStats:
        pass

    @abstractmethod
    def get_entry(self, chunk_id: str) -> Optional[VectorEntry]:
        pass

# ============= Snapshot Persistence Interface =============
class ISnapshotStore(ABC):
    """Durable storage for the vector index snapshot."""

    @abstractmethod
    async def load_snapshot(self) -> Optional[VectorSnapshot]:
        """Return the saved snapshot, or None when nothing was saved yet."""
        pass

    @abstractmethod
    async def save_snapshot(self, snapshot: VectorSnapshot) -> None:
        pass

# ============= Embedding Service Interface =============
class IEmbeddingService(ABC):
    """Converts text to fixed-length vectors. Failures raise EmbeddingFailedError."""

    @property
    @abstractmethod
    def dimension(self) -> Optional[int]:
        pass

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        pass

    @abstractmethod
    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        pass

# ============= Repository Interfaces =============
class IChunkRepository(ABC):
    """
    Chunk metadata store joined into search results.

    Does NOT handle vectors (see IVectorIndex).
    """

    @abstractmethod
    async def get_chunks_by_document(self, document_id: str) -> List[Chunk]:
        pass

    @abstractmethod
    async def get_all_chunks(self) -> List[Chunk]:
        """Chunks of successfully processed documents only."""
        pass

    @abstractmethod
    async def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        pass

    @abstractmethod
    async def get_chunks(self, chunk_ids: List[str]) -> Dict[str, Chunk]:
        """
        Bulk lookup keyed by chunk id; missing ids are simply absent.
        Single query replaces N individual lookups.
        """
        pass

    @abstractmethod
    async def replace_document_chunks(self, document_id: str, chunks: List[Chunk]) -> None:
        """Drop the document's old chunks and store the new ones in one transaction."""
        pass

    @abstractmethod
    async def update_vector_ids(self, mapping: Dict[str, str]) -> None:
        """Record chunk id → vector id."""
        pass

    @abstractmethod
    async def get_vector_ids(self, document_id: str) -> Dict[str, Optional[str]]:
        """chunk id → vector id for one document (None when not indexed yet)."""
        pass

    @abstractmethod
    async def get_chunk_statistics(self) -> Dict[str, int]:
        """{total_chunks, average_chunk_size} over every stored chunk."""
        pass

class IDocumentRepository(ABC):
    """Document records and their processing status."""

    @abstractmethod
    async def create(self, filename: str, metadata: Optional[Dict[str, Any]] = None) -> ProcessedDocument:
        pass

    @abstractmethod
    async def get_by_id(self, document_id: str) -> Optional[ProcessedDocument]:
        pass

    @abstractmethod
    async def list_all(self) -> List[ProcessedDocument]:
        pass

    @abstractmethod
    async def update_status(self, document_id: str, status: ProcessingStatus,
                            error: Optional[str] = None) -> bool:
        pass

    @abstractmethod
    async def delete(self, document_id: str) -> bool:
        """Delete the document record and its chunks."""
        pass

# ============= LLM Provider Interface =============
class ILLMProvider(ABC):
    """
    Uniform generate() capability over one language model backend.

    Implementations own their own timeouts and must raise EmptyResponseError
    rather than return blank text.
    """

    name: str
    model: str
    is_local: bool = False

    @abstractmethod
    async def generate(self, prompt: str, max_tokens: Optional[int] = None,
                       temperature: Optional[float] = None) -> GenerationResult:
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        pass
