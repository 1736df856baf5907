# infrastructure/repositories.py
"""Database repository implementations"""
import logging
import uuid
from typing import List, Optional, Dict, Any
from sqlalchemy import select, delete, func, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.interfaces import IChunkRepository, IDocumentRepository
from core.domain import Chunk, ProcessedDocument
from core.enums import ProcessingStatus
from database.session import ChunkEntity, DocumentEntity, session_scope
from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)

class SQLDocumentRepository(IDocumentRepository):
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    def _to_domain(self, db_doc: Optional[DocumentEntity]) -> Optional[ProcessedDocument]:
        """Converts an SQLAlchemy entity to a domain model."""
        if db_doc is None:
            return None

        # Prevent accidental mutation of DB entity metadata
        md = (db_doc.meta or {}).copy()
        if db_doc.timestamp is not None:
            md.setdefault("timestamp", db_doc.timestamp.isoformat())

        return ProcessedDocument(
            id=db_doc.id, # type: ignore
            filename=db_doc.filename, # type: ignore
            status=ProcessingStatus.from_string(db_doc.status), # type: ignore
            metadata=md,
            error=db_doc.error # type: ignore
        )

    async def create(self, filename: str, metadata: Optional[Dict[str, Any]] = None) -> ProcessedDocument:
        async with session_scope(self.session_factory) as session:
            db_doc = DocumentEntity(
                id=str(uuid.uuid4()),
                filename=filename,
                status=ProcessingStatus.PENDING.value,
                meta=metadata or {}
            )
            session.add(db_doc)
            await session.commit()
            await session.refresh(db_doc)
            logger.info(f"Created document {db_doc.id} in database")

            result = self._to_domain(db_doc)
            assert result is not None, "Created document should never be None"
            return result

    async def get_by_id(self, document_id: str) -> Optional[ProcessedDocument]:
        async with session_scope(self.session_factory) as session:
            db_doc = await session.get(DocumentEntity, document_id)
            return self._to_domain(db_doc)

    async def list_all(self) -> List[ProcessedDocument]:
        """List all documents, newest first"""
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(DocumentEntity).order_by(DocumentEntity.timestamp.desc())
            )
            docs = [self._to_domain(doc) for doc in result.scalars().all()]
            return [d for d in docs if d is not None]

    async def update_status(self, document_id: str, status: ProcessingStatus,
                            error: Optional[str] = None) -> bool:
        async with session_scope(self.session_factory) as session:
            db_doc = await session.get(DocumentEntity, document_id)
            if not db_doc:
                return False
            db_doc.status = ProcessingStatus(status).value
            db_doc.error = error
            await session.commit()
            logger.debug(f"Document {document_id} status -> {db_doc.status}")
            return True

    async def delete(self, document_id: str) -> bool:
        async with session_scope(self.session_factory) as session:
            doc = await session.get(DocumentEntity, document_id)
            if not doc:
                return False
            await session.execute(delete(ChunkEntity).where(ChunkEntity.document_id == document_id))
            await session.delete(doc)
            await session.commit()
            logger.info(f"Deleted document {document_id} and its chunks from database")
            return True

class SQLChunkRepository(IChunkRepository):
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _to_domain(entity: ChunkEntity, document_name: Optional[str] = None) -> Chunk:
        return Chunk(
            id=entity.id, # type: ignore
            document_id=entity.document_id, # type: ignore
            index=entity.chunk_index, # type: ignore
            text=entity.content, # type: ignore
            start_offset=entity.start_offset, # type: ignore
            end_offset=entity.end_offset, # type: ignore
            metadata=(entity.meta or {}).copy(),
            document_name=document_name
        )

    def _joined(self):
        return (
            select(ChunkEntity, DocumentEntity.filename)
            .join(DocumentEntity, ChunkEntity.document_id == DocumentEntity.id)
        )

    async def get_chunks_by_document(self, document_id: str) -> List[Chunk]:
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                self._joined()
                .where(ChunkEntity.document_id == document_id)
                .order_by(ChunkEntity.chunk_index)
            )
            return [self._to_domain(entity, name) for entity, name in result.all()]

    async def get_all_chunks(self) -> List[Chunk]:
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                self._joined()
                .where(DocumentEntity.status == ProcessingStatus.COMPLETED.value)
                .order_by(ChunkEntity.document_id, ChunkEntity.chunk_index)
            )
            return [self._to_domain(entity, name) for entity, name in result.all()]

    async def get_chunk(self, chunk_id: str) -> Optional[Chunk]:
        chunks = await self.get_chunks([chunk_id])
        return chunks.get(chunk_id)

    async def get_chunks(self, chunk_ids: List[str]) -> Dict[str, Chunk]:
        """
        Bulk lookup keyed by chunk id.
        Single query replaces N individual lookups.
        """
        if not chunk_ids:
            return {}

        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                self._joined().where(ChunkEntity.id.in_(list(chunk_ids)))
            )
            return {entity.id: self._to_domain(entity, name) for entity, name in result.all()}

    async def replace_document_chunks(self, document_id: str, chunks: List[Chunk]) -> None:
        async with session_scope(self.session_factory) as session:
            await session.execute(delete(ChunkEntity).where(ChunkEntity.document_id == document_id))
            session.add_all([
                ChunkEntity(
                    id=chunk.id,
                    document_id=document_id,
                    chunk_index=chunk.index,
                    content=chunk.text,
                    start_offset=chunk.start_offset,
                    end_offset=chunk.end_offset,
                    meta=dict(chunk.metadata)
                )
                for chunk in chunks
            ])
            await session.commit()
        logger.info(f"Stored {len(chunks)} chunks for document {document_id}")

    async def update_vector_ids(self, mapping: Dict[str, str]) -> None:
        if not mapping:
            return
        async with session_scope(self.session_factory) as session:
            for chunk_id, vector_id in mapping.items():
                await session.execute(
                    update(ChunkEntity).where(ChunkEntity.id == chunk_id).values(vector_id=vector_id)
                )
            await session.commit()

    async def get_vector_ids(self, document_id: str) -> Dict[str, Optional[str]]:
        """chunk id → vector id for one document (None when not indexed yet)."""
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(ChunkEntity.id, ChunkEntity.vector_id)
                .where(ChunkEntity.document_id == document_id)
            )
            return {row[0]: row[1] for row in result}

    async def get_chunk_statistics(self) -> Dict[str, int]:
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(func.count(ChunkEntity.id), func.avg(func.length(ChunkEntity.content)))
            )
            total, average = result.one()
            return {"total_chunks": int(total or 0), "average_chunk_size": round(average or 0)}
