"""
Database core module for the ingestion processor.

Document and shipment models plus the async engine/session factory.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, JSON
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

from core.config import get_config

logger = logging.getLogger(__name__)

# Base for the models
Base = declarative_base()


class Document(Base):
    """Uploaded document and its processing status"""
    __tablename__ = 'documents'

    id = Column(String(36), primary_key=True)
    document_type = Column(String(50), nullable=False, default='ETD_REPORT')
    file_name = Column(String(255))
    file_type = Column(String(20))
    file_size_bytes = Column(Integer)

    # UPLOADED -> PROCESSING -> PROCESSED | ERROR
    status = Column(String(20), nullable=False, default='UPLOADED', index=True)
    error_message = Column(Text)
    shipment_count = Column(Integer)
    parsed_date = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    shipments = relationship("ParsedShipment", back_populates="document", cascade="all, delete-orphan")


class ParsedShipment(Base):
    """One shipment bundle extracted from a document"""
    __tablename__ = 'parsed_shipments'

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(String(36), ForeignKey('documents.id', ondelete='CASCADE'), nullable=False, index=True)
    sheet_name = Column(String(255))
    row_index = Column(Integer)
    load_number = Column(String(100), index=True)
    order_number = Column(String(100))
    needs_review = Column(Boolean, default=False, index=True)
    validation_errors = Column(JSON)
    bundle = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    document = relationship("Document", back_populates="shipments")


_engine: Optional[AsyncEngine] = None
_session_factory = None


def get_database_url() -> str:
    """Async driver URL derived from DATABASE_URL."""
    url = get_config().database_url
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = create_async_engine(get_database_url(), echo=get_config().db_echo)
    return _engine


def get_session_factory():
    """Async session factory bound to the shared engine"""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False
        )
    return _session_factory


async def get_db():
    """Dependency yielding a database session"""
    async with get_session_factory()() as session:
        try:
            yield session
        finally:
            await session.close()


async def create_tables(engine: Optional[AsyncEngine] = None):
    """Create the documents and parsed_shipments tables if missing."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("[DATABASE] Tables ready")
