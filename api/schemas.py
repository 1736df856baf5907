# api/schemas.py
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional, List

from config import settings
from core.enums import ErrorCode, ProcessingStatus, RebuildState, SplitStrategy

# ---------- Documents ----------

class DocumentCreateRequest(BaseModel):
    filename: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    strategy: SplitStrategy = SplitStrategy.FIXED

class DocumentReprocessRequest(BaseModel):
    text: str = Field(..., min_length=1)
    strategy: SplitStrategy = SplitStrategy.FIXED

class DocumentResponse(BaseModel):
    id: str
    filename: str
    status: ProcessingStatus
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None

class DocumentsListResponse(BaseModel):
    documents: List[DocumentResponse]
    total: int

class DeleteResponse(BaseModel):
    status: str
    message: str

class ChunkSummaryModel(BaseModel):
    id: str
    index: int
    size: int
    preview: str
    vector_id: Optional[str] = None

class DocumentDetailResponse(BaseModel):
    document: DocumentResponse
    chunks: List[ChunkSummaryModel]

class ChunkResponse(BaseModel):
    id: str
    document_id: str
    document_name: Optional[str] = None
    index: int
    content: str
    start_offset: int
    end_offset: int
    metadata: Dict[str, Any] = Field(default_factory=dict)

class DocumentStatisticsResponse(BaseModel):
    total_documents: int
    processed_documents: int
    status_distribution: Dict[str, int]
    total_chunks: int
    average_chunk_size: int

# ---------- Search ----------

class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    top_k: Optional[int] = None
    threshold: Optional[float] = None
    document_ids: Optional[List[str]] = None

class SearchResultItem(BaseModel):
    chunk_id: str
    document_id: str
    document_name: Optional[str] = None
    chunk_index: int
    similarity: float
    rank: int
    content: str
    preview: str

class SearchResponse(BaseModel):
    status: str
    query: str
    results: List[SearchResultItem]
    total_results: int

# ---------- Ask ----------

class AskOptionsModel(BaseModel):
    top_k: Optional[int] = None
    threshold: Optional[float] = None
    document_ids: Optional[List[str]] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None

class AskRequest(AskOptionsModel):
    question: str

class BatchAskRequest(AskOptionsModel):
    questions: List[str] = Field(..., min_length=1, max_length=settings.MAX_BATCH_QUESTIONS)

class AnswerMetadataModel(BaseModel):
    search_latency_ms: int
    answer_latency_ms: int
    total_latency_ms: int
    provider_used: str
    model: str
    search_count: int
    fallback_used: bool = False
    usage: Dict[str, Any] = Field(default_factory=dict)

class AskResponse(BaseModel):
    question: str
    answer: str
    retrieved_chunks: List[SearchResultItem]
    metadata: AnswerMetadataModel

class BatchAskItemModel(BaseModel):
    question: str
    success: bool
    result: Optional[AskResponse] = None
    error: Optional[str] = None

class BatchAskResponse(BaseModel):
    results: List[BatchAskItemModel]
    total: int
    succeeded: int

class ChatRequest(BaseModel):
    message: str
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None

class ChatResponse(BaseModel):
    message: str
    answer: str
    provider_used: str
    model: str
    latency_ms: int
    fallback_used: bool = False
    usage: Dict[str, Any] = Field(default_factory=dict)

# ---------- Index & status ----------

class RebuildResponse(BaseModel):
    success: bool
    rebuilt: int
    error: Optional[str] = None

class IndexBuildResponse(BaseModel):
    indexed: int
    skipped: int

class VectorizeRequest(BaseModel):
    texts: List[str] = Field(..., min_length=1)

class VectorizeResponse(BaseModel):
    vectors: List[List[float]]
    dimension: Optional[int] = None
    count: int

class SimilarityRequest(BaseModel):
    vector: List[float] = Field(..., min_length=1)
    vectors: List[List[float]] = Field(..., min_length=1)

class SimilarityResponse(BaseModel):
    similarities: List[float]
    count: int

class ProviderSwitchRequest(BaseModel):
    provider: str = Field(..., min_length=1)

class StatusResponse(BaseModel):
    providers: Dict[str, Any]
    index: Dict[str, Any]
    defaults: Dict[str, Any]
    rebuild_state: RebuildState

class ErrorResponse(BaseModel):
    detail: str
    error_code: Optional[ErrorCode] = None
