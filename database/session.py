# database/session.py

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Tuple

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.ext.asyncio import (AsyncEngine, AsyncSession, async_sessionmaker,
                                    create_async_engine)
from sqlalchemy.orm import declarative_base

from config import settings
from core.enums import ProcessingStatus

logger = logging.getLogger(settings.LOGGER_NAME)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

# --- SQLAlchemy Models ---

class DocumentEntity(Base):
    __tablename__ = "documents"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    filename = Column(String, nullable=False)  # Display name joined into search results
    status = Column(String, nullable=False, default=ProcessingStatus.PENDING.value, index=True)
    error = Column(Text, nullable=True)
    meta = Column(JSON, nullable=True)
    timestamp = Column(DateTime, default=_utcnow)

class ChunkEntity(Base):
    __tablename__ = "chunks"
    id = Column(String, primary_key=True)
    document_id = Column(String, ForeignKey("documents.id"), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    start_offset = Column(Integer, nullable=False, default=0)
    end_offset = Column(Integer, nullable=False, default=0)
    meta = Column(JSON, nullable=True)
    vector_id = Column(String, nullable=True)  # Set once the chunk has been embedded and indexed


# ============= Engine & Session Factory =============

def create_session_factory(database_url: str = settings.DATABASE_URL
                           ) -> Tuple[AsyncEngine, async_sessionmaker]:
    """Build the async engine and its session maker."""
    engine = create_async_engine(database_url, echo=False, pool_pre_ping=True)
    return engine, async_sessionmaker(engine, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """Create tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready.")


@asynccontextmanager
async def session_scope(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a new database session with proper cleanup.

    Repositories are long-lived, so each operation opens its own session.
    Ensures proper rollback on errors and explicit closure.
    """
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
