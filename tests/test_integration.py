"""
End-to-end flow through ServiceContainer: ingest → rebuild → ask.

Real SQLite file, real snapshot file, real index and scheduler; only the
embedding model and the LLM backends are fakes.
"""

import pytest

from conftest import FakeProvider, KeywordEmbedding
from config import Settings
from core.domain import AskOptions
from infrastructure.llm_providers import ProviderRegistry
from infrastructure.snapshot_store import JsonSnapshotStore
from services.factory import ServiceContainer


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'rag.db'}",
        VECTOR_DB_PATH=str(tmp_path / "vectors"),
        CHUNK_SIZE=80,
        CHUNK_OVERLAP=10,
        EMBEDDING_BATCH_PAUSE_SEC=0,
        REBUILD_DEBOUNCE_SEC=0.01,
        REBUILD_MIN_INTERVAL_SEC=0.05,
        REBUILD_COMMIT_DELAY_SEC=0,
        BATCH_REQUEST_PAUSE_SEC=0,
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider("local", answer="Python is great.", is_local=True)


@pytest.fixture
async def container(test_settings, provider):
    services = ServiceContainer(
        test_settings,
        embedding_service=KeywordEmbedding(),
        providers=ProviderRegistry({"local": provider})
    )
    await services.open()
    yield services
    await services.close()


class TestEndToEnd:
    """Whole pipeline with real storage."""

    @pytest.mark.asyncio
    async def test_ingest_rebuild_and_ask(self, container, provider):
        python_doc = await container.document_service.ingest_text(
            "python.md", "Python is a language. Python has a vector index library."
        )
        await container.document_service.ingest_text("food.md", "Pizza baking needs a hot oven.")

        result = await container.scheduler.rebuild_now()
        assert result.success is True
        assert container.vector_index.stats().count == 2

        answer = await container.rag_service.ask("Tell me about python", AskOptions(threshold=0.2))

        assert answer.answer == "Python is great."
        assert [c.document_id for c in answer.retrieved_chunks] == [python_doc.id]
        assert "[Document 1]" in provider.prompts[0]
        assert "Source: python.md" in provider.prompts[0]

    @pytest.mark.asyncio
    async def test_deleted_document_disappears_from_results(self, container):
        doc = await container.document_service.ingest_text("python.md", "Python everywhere.")
        await container.scheduler.rebuild_now()

        await container.document_service.delete_document(doc.id)
        # Before the next rebuild the vector is stale and filtered out
        results = await container.pipeline.search("python", threshold=0.1)

        assert results == []

    @pytest.mark.asyncio
    async def test_index_survives_restart(self, test_settings, provider):
        first = ServiceContainer(
            test_settings, embedding_service=KeywordEmbedding(),
            providers=ProviderRegistry({"local": provider})
        )
        await first.open()
        await first.document_service.ingest_text("python.md", "Python everywhere.")
        await first.scheduler.rebuild_now()
        await first.close()

        store = JsonSnapshotStore(f"{test_settings.VECTOR_DB_PATH}/{test_settings.VECTOR_SNAPSHOT_FILENAME}")
        snapshot = await store.load_snapshot()
        assert len(snapshot.entries) == 1

        second = ServiceContainer(
            test_settings, embedding_service=KeywordEmbedding(),
            providers=ProviderRegistry({"local": provider})
        )
        await second.open()
        try:
            assert second.vector_index.stats().count == 1
        finally:
            await second.close()
