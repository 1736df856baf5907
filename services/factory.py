# services/factory.py
import logging
import os
from typing import Optional

from fastapi import Depends, Request

from config import Settings, settings
from core.interfaces import IEmbeddingService
from database.session import create_session_factory, init_db
from infrastructure.embedding_services import SentenceTransformerEmbedding
from infrastructure.llm_providers import ProviderRegistry, build_provider_registry
from infrastructure.repositories import SQLChunkRepository, SQLDocumentRepository
from infrastructure.snapshot_store import JsonSnapshotStore
from infrastructure.text_splitter import TextSplitter
from infrastructure.vector_index import LinearScanVectorIndex
from services.document_service import DocumentService
from services.indexing_pipeline import IndexingPipeline
from services.rag_service import RAGService
from services.rebuild_scheduler import RebuildScheduler

logger = logging.getLogger(settings.LOGGER_NAME)


class ServiceContainer:
    """
    Composition root: builds every component and owns their open/close order.

    `embedding_service` and `providers` can be injected to swap the model or
    the LLM backends (tests, alternative deployments).
    """

    def __init__(self, config: Settings = settings,
                 embedding_service: Optional[IEmbeddingService] = None,
                 providers: Optional[ProviderRegistry] = None):
        self.config = config
        self._embedding_override = embedding_service
        self._providers_override = providers

    async def open(self) -> None:
        config = self.config
        logger.info("Opening services...")

        self.engine, self.session_factory = create_session_factory(config.DATABASE_URL)
        await init_db(self.engine)
        self.document_repo = SQLDocumentRepository(self.session_factory)
        self.chunk_repo = SQLChunkRepository(self.session_factory)

        if self._embedding_override is not None:
            self.embedding_service = self._embedding_override
        else:
            self.embedding_service = SentenceTransformerEmbedding(
                config.EMBEDDING_MODEL_NAME, config.EMBEDDING_MAX_INPUT_CHARS
            )
            await self.embedding_service.open()

        self.vector_index = LinearScanVectorIndex(
            JsonSnapshotStore(os.path.join(config.VECTOR_DB_PATH, config.VECTOR_SNAPSHOT_FILENAME)),
            offload_threshold=config.VECTOR_SCAN_OFFLOAD_THRESHOLD
        )
        await self.vector_index.open()

        self.pipeline = IndexingPipeline(
            self.embedding_service,
            self.vector_index,
            self.chunk_repo,
            batch_size=config.EMBEDDING_BATCH_SIZE,
            batch_pause=config.EMBEDDING_BATCH_PAUSE_SEC,
            overfetch_factor=config.SEARCH_OVERFETCH_FACTOR,
            preview_length=config.PREVIEW_LENGTH,
            default_top_k=config.DEFAULT_TOP_K,
            default_threshold=config.DEFAULT_SIMILARITY_THRESHOLD,
            max_vectorize_texts=config.MAX_VECTORIZE_TEXTS
        )
        self.scheduler = RebuildScheduler(
            self.pipeline,
            debounce_delay=config.REBUILD_DEBOUNCE_SEC,
            min_interval=config.REBUILD_MIN_INTERVAL_SEC
        )
        self.providers = self._providers_override or build_provider_registry(config)
        self.rag_service = RAGService(
            self.pipeline, self.providers, batch_pause=config.BATCH_REQUEST_PAUSE_SEC, config=config
        )
        self.document_service = DocumentService(
            self.document_repo,
            self.chunk_repo,
            TextSplitter(
                chunk_size=config.CHUNK_SIZE,
                chunk_overlap=config.CHUNK_OVERLAP,
                separators=config.CHUNK_SEPARATORS,
                min_ratio=config.CHUNK_MIN_RATIO
            ),
            self.scheduler,
            commit_delay=config.REBUILD_COMMIT_DELAY_SEC
        )
        logger.info("Services ready.")

    async def close(self) -> None:
        logger.info("Closing services...")
        await self.document_service.close()
        await self.scheduler.close()
        await self.vector_index.close()
        await self.engine.dispose()
        logger.info("Services closed.")


# Provider functions for FastAPI DI; the container lives on app.state
def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container

def get_rag_service(container: ServiceContainer = Depends(get_container)) -> RAGService:
    return container.rag_service

def get_document_service(container: ServiceContainer = Depends(get_container)) -> DocumentService:
    return container.document_service

def get_pipeline(container: ServiceContainer = Depends(get_container)) -> IndexingPipeline:
    return container.pipeline

def get_scheduler(container: ServiceContainer = Depends(get_container)) -> RebuildScheduler:
    return container.scheduler

def get_config(container: ServiceContainer = Depends(get_container)) -> Settings:
    return container.config
