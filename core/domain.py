# core/domain.py
"""Domain models for the retrieval pipeline."""
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from core.enums import ProcessingStatus

# ============= Documents & Chunks =============

@dataclass
class ProcessedDocument:
    """Domain model for documents"""
    id: str
    filename: str
    status: ProcessingStatus = ProcessingStatus.PENDING
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

@dataclass(frozen=True)
class Chunk:
    """A contiguous slice of one document's text; the unit of embedding and retrieval."""
    id: str
    document_id: str
    index: int
    text: str
    start_offset: int
    end_offset: int
    metadata: Dict[str, Any] = field(default_factory=dict)
    document_name: Optional[str] = None

# ============= Vector Index =============

@dataclass
class VectorEntry:
    """One indexed chunk vector"""
    chunk_id: str
    vector: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)

@dataclass
class VectorSnapshot:
    """Persisted form of the whole index"""
    dimension: Optional[int]
    entries: List[VectorEntry]

@dataclass
class SearchHit:
    chunk_id: str
    similarity: float
    rank: int

@dataclass
class AddResult:
    added: int
    skipped: int = 0
    chunk_ids: List[str] = field(default_factory=list)

@dataclass
class IndexStats:
    count: int
    dimension: Optional[int]

# ============= Pipeline =============

@dataclass
class RankedResult:
    """A search hit joined back to its chunk metadata"""
    chunk_id: str
    similarity: float
    rank: int
    document_id: str
    document_name: Optional[str]
    chunk_index: int
    content: str
    preview: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

@dataclass
class IndexingResult:
    indexed: int
    skipped: int = 0

@dataclass
class RebuildResult:
    rebuilt: int
    success: bool = True
    error: Optional[str] = None

# ============= LLM & RAG =============

@dataclass
class GenerationResult:
    text: str
    model_id: str
    usage: Dict[str, Any] = field(default_factory=dict)

@dataclass
class AskOptions:
    """Per-call overrides for RAGService.ask; None means use the configured default."""
    top_k: Optional[int] = None
    threshold: Optional[float] = None
    document_ids: Optional[List[str]] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None

@dataclass
class AnswerMetadata:
    search_latency_ms: int
    answer_latency_ms: int
    total_latency_ms: int
    provider_used: str
    model: str
    search_count: int
    fallback_used: bool = False
    usage: Dict[str, Any] = field(default_factory=dict)

@dataclass
class RAGAnswer:
    question: str
    answer: str
    retrieved_chunks: List[RankedResult]
    metadata: AnswerMetadata

@dataclass
class BatchAskItem:
    question: str
    result: Optional[RAGAnswer] = None
    error: Optional[str] = None

@dataclass
class ChatReply:
    """Provider answer to a message sent without retrieval"""
    message: str
    answer: str
    provider_used: str
    model: str
    latency_ms: int
    fallback_used: bool = False
    usage: Dict[str, Any] = field(default_factory=dict)

@dataclass
class DocumentDetail:
    document: ProcessedDocument
    chunks: List[Chunk]
    vector_ids: Dict[str, Optional[str]] = field(default_factory=dict)
