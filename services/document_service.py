# services/document_service.py
"""Document lifecycle: store text as chunks and keep the vector index in step."""
import asyncio
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Set

from config import settings
from core.domain import Chunk, DocumentDetail, ProcessedDocument
from core.enums import ProcessingStatus, SplitStrategy
from core.exceptions import ChunkNotFoundError, DocumentNotFoundError, InvalidInputError
from core.interfaces import IChunkRepository, IDocumentRepository
from infrastructure.text_splitter import TextSplitter
from services.rebuild_scheduler import RebuildScheduler

logger = logging.getLogger(settings.LOGGER_NAME)


class DocumentService:
    def __init__(
        self,
        document_repo: IDocumentRepository,
        chunk_repo: IChunkRepository,
        splitter: TextSplitter,
        scheduler: RebuildScheduler,
        commit_delay: float = settings.REBUILD_COMMIT_DELAY_SEC
    ):
        self.document_repo = document_repo
        self.chunk_repo = chunk_repo
        self.splitter = splitter
        self.scheduler = scheduler
        self.commit_delay = commit_delay
        self._rebuild_tasks: Set[asyncio.Task] = set()

    async def ingest_text(self, filename: str, text: str,
                          metadata: Optional[Dict[str, Any]] = None,
                          strategy: SplitStrategy = SplitStrategy.FIXED) -> ProcessedDocument:
        """Create a document from plain text, chunk it and schedule an index rebuild."""
        if not filename or not filename.strip():
            raise InvalidInputError("Filename must not be empty")
        if not text or not text.strip():
            raise InvalidInputError("Document text must not be empty")

        doc = await self.document_repo.create(filename.strip(), metadata)
        logger.info(f"Ingesting document {doc.id} ('{doc.filename}', {len(text)} chars)")
        return await self._process(doc, text, strategy)

    async def reprocess_document(self, document_id: str, text: str,
                                 strategy: SplitStrategy = SplitStrategy.FIXED) -> ProcessedDocument:
        """Replace a stored document's chunks with chunks of `text`."""
        if not text or not text.strip():
            raise InvalidInputError("Document text must not be empty")

        doc = await self.document_repo.get_by_id(document_id)
        if doc is None:
            raise DocumentNotFoundError(document_id)

        logger.info(f"Reprocessing document {document_id}")
        return await self._process(doc, text, strategy)

    async def _process(self, doc: ProcessedDocument, text: str,
                       strategy: SplitStrategy) -> ProcessedDocument:
        await self.document_repo.update_status(doc.id, ProcessingStatus.PROCESSING)
        try:
            chunks = self.splitter.smart_split(text, doc.id, dict(doc.metadata), strategy)
            await self.chunk_repo.replace_document_chunks(doc.id, chunks)
        except Exception as e:
            logger.error(f"Processing document {doc.id} failed: {e}", exc_info=True)
            await self.document_repo.update_status(doc.id, ProcessingStatus.FAILED, str(e))
            raise

        await self.document_repo.update_status(doc.id, ProcessingStatus.COMPLETED)
        logger.info(f"Document {doc.id} processed into {len(chunks)} chunks")
        self._schedule_rebuild()

        updated = await self.document_repo.get_by_id(doc.id)
        return updated or doc

    async def delete_document(self, document_id: str) -> bool:
        deleted = await self.document_repo.delete(document_id)
        if not deleted:
            raise DocumentNotFoundError(document_id)
        logger.info(f"Deleted document {document_id}")
        self._schedule_rebuild()
        return True

    async def get_document(self, document_id: str) -> ProcessedDocument:
        doc = await self.document_repo.get_by_id(document_id)
        if doc is None:
            raise DocumentNotFoundError(document_id)
        return doc

    async def get_document_detail(self, document_id: str) -> DocumentDetail:
        """The document with its chunks and the vector id recorded for each chunk."""
        doc = await self.get_document(document_id)
        chunks = await self.chunk_repo.get_chunks_by_document(document_id)
        vector_ids = await self.chunk_repo.get_vector_ids(document_id)
        return DocumentDetail(document=doc, chunks=chunks, vector_ids=vector_ids)

    async def get_document_chunk(self, document_id: str, chunk_id: str) -> Chunk:
        chunk = await self.chunk_repo.get_chunk(chunk_id)
        if chunk is None or chunk.document_id != document_id:
            raise ChunkNotFoundError(document_id, chunk_id)
        return chunk

    async def list_documents(self) -> List[ProcessedDocument]:
        return await self.document_repo.list_all()

    async def get_statistics(self) -> Dict[str, Any]:
        docs = await self.document_repo.list_all()
        by_status = Counter(doc.status.value for doc in docs)
        chunk_stats = await self.chunk_repo.get_chunk_statistics()
        return {
            "total_documents": len(docs),
            "processed_documents": by_status.get(ProcessingStatus.COMPLETED.value, 0),
            "status_distribution": dict(by_status),
            **chunk_stats
        }

    # ============= Rebuild scheduling =============

    def _schedule_rebuild(self) -> None:
        """Ask for a rebuild once the write has settled."""
        task = asyncio.create_task(self._delayed_rebuild())
        self._rebuild_tasks.add(task)
        task.add_done_callback(self._rebuild_tasks.discard)

    async def _delayed_rebuild(self) -> None:
        if self.commit_delay > 0:
            await asyncio.sleep(self.commit_delay)
        self.scheduler.request_rebuild()

    async def close(self) -> None:
        for task in list(self._rebuild_tasks):
            task.cancel()
        if self._rebuild_tasks:
            await asyncio.gather(*self._rebuild_tasks, return_exceptions=True)
        self._rebuild_tasks.clear()
