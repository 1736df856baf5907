"""
Test suite for DocumentService.

Real SQL repositories (in-memory SQLite) and splitter; the rebuild scheduler
is a mock so only the request is observed.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from core.enums import ProcessingStatus, SplitStrategy
from core.exceptions import ChunkNotFoundError, DocumentNotFoundError, InvalidInputError
from infrastructure.repositories import SQLChunkRepository, SQLDocumentRepository
from infrastructure.text_splitter import TextSplitter
from services.document_service import DocumentService


@pytest.fixture
def scheduler() -> MagicMock:
    return MagicMock()


@pytest.fixture
def document_service(session_factory, scheduler) -> DocumentService:
    return DocumentService(
        SQLDocumentRepository(session_factory),
        SQLChunkRepository(session_factory),
        TextSplitter(chunk_size=60, chunk_overlap=10),
        scheduler,
        commit_delay=0
    )


async def settle():
    """Let the delayed rebuild request task run."""
    await asyncio.sleep(0.01)


class TestIngest:
    """Creating documents from text."""

    @pytest.mark.asyncio
    async def test_ingest_stores_chunks_and_requests_rebuild(self, document_service, scheduler):
        text = "First sentence about python. " * 10

        doc = await document_service.ingest_text("notes.txt", text, {"author": "sam"})
        await settle()

        assert doc.status == ProcessingStatus.COMPLETED
        assert doc.metadata["author"] == "sam"
        chunks = await document_service.chunk_repo.get_chunks_by_document(doc.id)
        assert len(chunks) > 1
        assert all(c.document_name == "notes.txt" for c in chunks)
        scheduler.request_rebuild.assert_called_once()

    @pytest.mark.asyncio
    async def test_ingest_with_paragraph_strategy(self, document_service):
        doc = await document_service.ingest_text(
            "p.txt", "Para one.\n\nPara two.", strategy=SplitStrategy.PARAGRAPH
        )

        chunks = await document_service.chunk_repo.get_chunks_by_document(doc.id)
        assert [c.text for c in chunks] == ["Para one.", "Para two."]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("filename,text", [("", "text"), ("a.txt", ""), ("a.txt", "   ")])
    async def test_blank_input_is_rejected(self, document_service, filename, text):
        with pytest.raises(InvalidInputError):
            await document_service.ingest_text(filename, text)

        assert await document_service.list_documents() == []

    @pytest.mark.asyncio
    async def test_split_failure_marks_document_failed(self, session_factory, scheduler):
        splitter = MagicMock()
        splitter.smart_split.side_effect = RuntimeError("tokenizer exploded")
        service = DocumentService(
            SQLDocumentRepository(session_factory), SQLChunkRepository(session_factory),
            splitter, scheduler, commit_delay=0
        )

        with pytest.raises(RuntimeError):
            await service.ingest_text("bad.txt", "some text")

        [doc] = await service.list_documents()
        assert doc.status == ProcessingStatus.FAILED
        assert "tokenizer exploded" in doc.error
        scheduler.request_rebuild.assert_not_called()


class TestReprocessAndDelete:
    """Updating and removing documents."""

    @pytest.mark.asyncio
    async def test_reprocess_replaces_chunks(self, document_service):
        doc = await document_service.ingest_text("notes.txt", "Old content.")

        await document_service.reprocess_document(doc.id, "Brand new content.")

        chunks = await document_service.chunk_repo.get_chunks_by_document(doc.id)
        assert [c.text for c in chunks] == ["Brand new content."]

    @pytest.mark.asyncio
    async def test_reprocess_unknown_document(self, document_service):
        with pytest.raises(DocumentNotFoundError):
            await document_service.reprocess_document("missing", "text")

    @pytest.mark.asyncio
    async def test_delete_removes_document_and_requests_rebuild(self, document_service, scheduler):
        doc = await document_service.ingest_text("notes.txt", "Some content.")
        await settle()
        scheduler.request_rebuild.reset_mock()

        assert await document_service.delete_document(doc.id) is True
        await settle()

        assert await document_service.chunk_repo.get_chunks_by_document(doc.id) == []
        scheduler.request_rebuild.assert_called_once()
        with pytest.raises(DocumentNotFoundError):
            await document_service.get_document(doc.id)

    @pytest.mark.asyncio
    async def test_delete_unknown_document(self, document_service):
        with pytest.raises(DocumentNotFoundError):
            await document_service.delete_document("missing")

    @pytest.mark.asyncio
    async def test_close_cancels_delayed_rebuilds(self, session_factory, scheduler):
        service = DocumentService(
            SQLDocumentRepository(session_factory), SQLChunkRepository(session_factory),
            TextSplitter(chunk_size=60, chunk_overlap=10), scheduler, commit_delay=10
        )
        await service.ingest_text("notes.txt", "Some content.")

        await service.close()

        scheduler.request_rebuild.assert_not_called()


class TestLookupAndStatistics:
    """Document detail, single chunk lookup and corpus statistics."""

    @pytest.mark.asyncio
    async def test_detail_lists_chunks_and_vector_ids(self, document_service):
        doc = await document_service.ingest_text("notes.txt", "First sentence about python. " * 10)
        chunks = await document_service.chunk_repo.get_chunks_by_document(doc.id)
        await document_service.chunk_repo.update_vector_ids({chunks[0].id: f"vec_{chunks[0].id}"})

        detail = await document_service.get_document_detail(doc.id)

        assert detail.document.id == doc.id
        assert [c.id for c in detail.chunks] == [c.id for c in chunks]
        assert detail.vector_ids[chunks[0].id] == f"vec_{chunks[0].id}"
        assert detail.vector_ids[chunks[1].id] is None

    @pytest.mark.asyncio
    async def test_detail_of_unknown_document(self, document_service):
        with pytest.raises(DocumentNotFoundError):
            await document_service.get_document_detail("missing")

    @pytest.mark.asyncio
    async def test_chunk_lookup_is_scoped_to_its_document(self, document_service):
        doc = await document_service.ingest_text("a.txt", "Alpha content.")
        other = await document_service.ingest_text("b.txt", "Beta content.")
        chunk = (await document_service.chunk_repo.get_chunks_by_document(doc.id))[0]

        found = await document_service.get_document_chunk(doc.id, chunk.id)

        assert found.text == "Alpha content."
        with pytest.raises(ChunkNotFoundError):
            await document_service.get_document_chunk(other.id, chunk.id)
        with pytest.raises(ChunkNotFoundError):
            await document_service.get_document_chunk(doc.id, "missing")

    @pytest.mark.asyncio
    async def test_statistics(self, document_service):
        await document_service.ingest_text("a.txt", "Alpha.")
        await document_service.ingest_text("b.txt", "Beta text.")
        await document_service.document_repo.create("draft.txt")

        stats = await document_service.get_statistics()

        assert stats["total_documents"] == 3
        assert stats["processed_documents"] == 2
        assert stats["status_distribution"] == {"completed": 2, "pending": 1}
        assert stats["total_chunks"] == 2
        assert stats["average_chunk_size"] == 8
