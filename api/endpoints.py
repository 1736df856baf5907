# api/endpoints.py
"""
API endpoints for the document question-answering system.

Thin layer: validation lives in the services, which raise RAGError subclasses;
those are mapped to HTTP status codes here.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from api.schemas import (
    AnswerMetadataModel,
    AskRequest,
    AskResponse,
    BatchAskItemModel,
    BatchAskRequest,
    BatchAskResponse,
    ChatRequest,
    ChatResponse,
    ChunkResponse,
    ChunkSummaryModel,
    DeleteResponse,
    DocumentCreateRequest,
    DocumentDetailResponse,
    DocumentReprocessRequest,
    DocumentResponse,
    DocumentStatisticsResponse,
    DocumentsListResponse,
    IndexBuildResponse,
    ProviderSwitchRequest,
    RebuildResponse,
    SearchRequest,
    SearchResponse,
    SearchResultItem,
    SimilarityRequest,
    SimilarityResponse,
    StatusResponse,
    VectorizeRequest,
    VectorizeResponse,
)
from config import Settings, settings
from core.domain import AskOptions, Chunk, ProcessedDocument, RAGAnswer, RankedResult
from core.enums import ErrorCode
from core.exceptions import RAGError
from services.document_service import DocumentService
from services.factory import (
    get_config,
    get_document_service,
    get_pipeline,
    get_rag_service,
    get_scheduler,
)
from services.indexing_pipeline import IndexingPipeline
from services.rag_service import RAGService
from services.rebuild_scheduler import RebuildScheduler
from utils.common import generate_preview

logger = logging.getLogger(settings.LOGGER_NAME)

router = APIRouter()

_STATUS_BY_CODE = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.LLM_PROVIDER_FAILED: 502,
    ErrorCode.EMPTY_RESPONSE: 502,
}


# ---------- Helpers ----------
def _http_error(e: RAGError) -> HTTPException:
    status_code = _STATUS_BY_CODE.get(e.error_code, 500)
    if status_code >= 500:
        logger.error(f"Request failed: {e}")
    return HTTPException(status_code=status_code, detail=str(e))


def _to_document(doc: ProcessedDocument) -> DocumentResponse:
    return DocumentResponse(
        id=doc.id,
        filename=doc.filename,
        status=doc.status,
        metadata=doc.metadata,
        error=doc.error
    )


def _to_chunk(chunk: Chunk) -> ChunkResponse:
    return ChunkResponse(
        id=chunk.id,
        document_id=chunk.document_id,
        document_name=chunk.document_name,
        index=chunk.index,
        content=chunk.text,
        start_offset=chunk.start_offset,
        end_offset=chunk.end_offset,
        metadata=chunk.metadata
    )


def _to_result_item(result: RankedResult) -> SearchResultItem:
    return SearchResultItem(
        chunk_id=result.chunk_id,
        document_id=result.document_id,
        document_name=result.document_name,
        chunk_index=result.chunk_index,
        similarity=round(result.similarity, 4),
        rank=result.rank,
        content=result.content,
        preview=result.preview
    )


def _to_ask_response(answer: RAGAnswer) -> AskResponse:
    meta = answer.metadata
    return AskResponse(
        question=answer.question,
        answer=answer.answer,
        retrieved_chunks=[_to_result_item(r) for r in answer.retrieved_chunks],
        metadata=AnswerMetadataModel(
            search_latency_ms=meta.search_latency_ms,
            answer_latency_ms=meta.answer_latency_ms,
            total_latency_ms=meta.total_latency_ms,
            provider_used=meta.provider_used,
            model=meta.model,
            search_count=meta.search_count,
            fallback_used=meta.fallback_used,
            usage=meta.usage
        )
    )


def _options(request: Any) -> AskOptions:
    return AskOptions(
        top_k=request.top_k,
        threshold=request.threshold,
        document_ids=request.document_ids,
        max_tokens=request.max_tokens,
        temperature=request.temperature
    )


# ---------- Documents ----------
@router.post("/documents", response_model=DocumentResponse)
async def create_document(
    request: DocumentCreateRequest,
    document_service: DocumentService = Depends(get_document_service),
) -> DocumentResponse:
    try:
        doc = await document_service.ingest_text(
            request.filename, request.text, request.metadata, request.strategy
        )
    except RAGError as e:
        raise _http_error(e)
    return _to_document(doc)


@router.post("/documents/{document_id}/reprocess", response_model=DocumentResponse)
async def reprocess_document(
    document_id: str,
    request: DocumentReprocessRequest,
    document_service: DocumentService = Depends(get_document_service),
) -> DocumentResponse:
    try:
        doc = await document_service.reprocess_document(document_id, request.text, request.strategy)
    except RAGError as e:
        raise _http_error(e)
    return _to_document(doc)


@router.delete("/documents/{document_id}", response_model=DeleteResponse)
async def delete_document(
    document_id: str,
    document_service: DocumentService = Depends(get_document_service),
) -> DeleteResponse:
    try:
        await document_service.delete_document(document_id)
    except RAGError as e:
        raise _http_error(e)
    return DeleteResponse(status="success", message=f"Document {document_id} deleted")


@router.get("/documents", response_model=DocumentsListResponse)
async def list_documents(
    document_service: DocumentService = Depends(get_document_service),
) -> DocumentsListResponse:
    docs = await document_service.list_documents()
    return DocumentsListResponse(documents=[_to_document(d) for d in docs], total=len(docs))


@router.get("/documents/statistics", response_model=DocumentStatisticsResponse)
async def document_statistics(
    document_service: DocumentService = Depends(get_document_service),
) -> DocumentStatisticsResponse:
    return DocumentStatisticsResponse(**await document_service.get_statistics())


@router.get("/documents/{document_id}", response_model=DocumentDetailResponse)
async def get_document(
    document_id: str,
    document_service: DocumentService = Depends(get_document_service),
) -> DocumentDetailResponse:
    try:
        detail = await document_service.get_document_detail(document_id)
    except RAGError as e:
        raise _http_error(e)

    return DocumentDetailResponse(
        document=_to_document(detail.document),
        chunks=[
            ChunkSummaryModel(
                id=chunk.id,
                index=chunk.index,
                size=len(chunk.text),
                preview=generate_preview(chunk.text, "", 100),
                vector_id=detail.vector_ids.get(chunk.id)
            )
            for chunk in detail.chunks
        ]
    )


@router.get("/documents/{document_id}/chunks/{chunk_id}", response_model=ChunkResponse)
async def get_document_chunk(
    document_id: str,
    chunk_id: str,
    document_service: DocumentService = Depends(get_document_service),
) -> ChunkResponse:
    try:
        chunk = await document_service.get_document_chunk(document_id, chunk_id)
    except RAGError as e:
        raise _http_error(e)
    return _to_chunk(chunk)


# ---------- Search ----------
@router.post("/search", response_model=SearchResponse)
async def search_endpoint(
    request: SearchRequest,
    pipeline: IndexingPipeline = Depends(get_pipeline),
    config: Settings = Depends(get_config),
) -> SearchResponse:
    top_k = request.top_k if request.top_k is not None else config.DEFAULT_TOP_K
    top_k = max(1, min(top_k, config.MAX_TOP_K))
    try:
        results = await pipeline.search(
            request.query,
            top_k=top_k,
            threshold=request.threshold,
            document_ids=request.document_ids
        )
    except RAGError as e:
        raise _http_error(e)

    return SearchResponse(
        status="success",
        query=request.query,
        results=[_to_result_item(r) for r in results],
        total_results=len(results)
    )


# ---------- Ask ----------
@router.post("/ask", response_model=AskResponse)
async def ask_endpoint(
    request: AskRequest,
    rag_service: RAGService = Depends(get_rag_service),
) -> AskResponse:
    try:
        answer = await rag_service.ask(request.question, _options(request))
    except RAGError as e:
        raise _http_error(e)
    return _to_ask_response(answer)


@router.post("/ask/batch", response_model=BatchAskResponse)
async def batch_ask_endpoint(
    request: BatchAskRequest,
    rag_service: RAGService = Depends(get_rag_service),
) -> BatchAskResponse:
    try:
        items = await rag_service.batch_ask(request.questions, _options(request))
    except RAGError as e:
        raise _http_error(e)

    results = [
        BatchAskItemModel(
            question=item.question,
            success=item.error is None,
            result=_to_ask_response(item.result) if item.result else None,
            error=item.error
        )
        for item in items
    ]
    return BatchAskResponse(
        results=results,
        total=len(results),
        succeeded=sum(1 for r in results if r.success)
    )


@router.post("/chat", response_model=ChatResponse)
async def chat_endpoint(
    request: ChatRequest,
    rag_service: RAGService = Depends(get_rag_service),
) -> ChatResponse:
    """Talk to the active provider directly, without document retrieval."""
    try:
        reply = await rag_service.chat(request.message, request.max_tokens, request.temperature)
    except RAGError as e:
        raise _http_error(e)
    return ChatResponse(
        message=reply.message,
        answer=reply.answer,
        provider_used=reply.provider_used,
        model=reply.model,
        latency_ms=reply.latency_ms,
        fallback_used=reply.fallback_used,
        usage=reply.usage
    )


# ---------- Index ----------
@router.post("/index/rebuild", response_model=RebuildResponse)
async def rebuild_index(
    scheduler: RebuildScheduler = Depends(get_scheduler),
) -> RebuildResponse:
    """Waits for the (possibly coalesced and rate-limited) rebuild to finish."""
    result = await scheduler.rebuild_now()
    return RebuildResponse(success=result.success, rebuilt=result.rebuilt, error=result.error)


@router.post("/index/build", response_model=IndexBuildResponse)
async def build_index(
    pipeline: IndexingPipeline = Depends(get_pipeline),
) -> IndexBuildResponse:
    """Embeds only the chunks that have no vector yet."""
    try:
        result = await pipeline.build_index()
    except RAGError as e:
        raise _http_error(e)
    return IndexBuildResponse(indexed=result.indexed, skipped=result.skipped)


@router.post("/vectorize", response_model=VectorizeResponse)
async def vectorize(
    request: VectorizeRequest,
    pipeline: IndexingPipeline = Depends(get_pipeline),
) -> VectorizeResponse:
    try:
        vectors = await pipeline.vectorize(request.texts)
    except RAGError as e:
        raise _http_error(e)
    return VectorizeResponse(
        vectors=vectors,
        dimension=len(vectors[0]) if vectors else None,
        count=len(vectors)
    )


@router.post("/similarity", response_model=SimilarityResponse)
async def similarity(
    request: SimilarityRequest,
    pipeline: IndexingPipeline = Depends(get_pipeline),
) -> SimilarityResponse:
    try:
        scores = pipeline.similarities(request.vector, request.vectors)
    except RAGError as e:
        raise _http_error(e)
    return SimilarityResponse(similarities=scores, count=len(scores))


# ---------- Status ----------
@router.get("/status", response_model=StatusResponse)
async def get_status(
    rag_service: RAGService = Depends(get_rag_service),
    scheduler: RebuildScheduler = Depends(get_scheduler),
) -> StatusResponse:
    status = rag_service.get_status()
    return StatusResponse(
        providers=status["providers"],
        index=status["index"],
        defaults=status["defaults"],
        rebuild_state=scheduler.state
    )


@router.get("/providers")
async def get_providers(
    rag_service: RAGService = Depends(get_rag_service),
) -> Dict[str, Any]:
    return rag_service.providers.status()


@router.post("/providers/active")
async def switch_provider(
    request: ProviderSwitchRequest,
    rag_service: RAGService = Depends(get_rag_service),
) -> Dict[str, Any]:
    try:
        return rag_service.switch_provider(request.provider)
    except RAGError as e:
        raise _http_error(e)


@router.get("/health")
async def health_check(
    check_provider: bool = False,
    rag_service: RAGService = Depends(get_rag_service),
) -> Dict[str, Any]:
    return await rag_service.health_check(check_provider=check_provider)
