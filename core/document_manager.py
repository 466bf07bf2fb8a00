"""
Document storage for the ingestion pipeline.

DocumentStore is the interface the orchestrator talks to; SQLDocumentStore
implements it on SQLAlchemy async sessions. Status updates only move
forward (UPLOADED -> PROCESSING -> PROCESSED | ERROR).
"""
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from core.database import Document, ParsedShipment, get_session_factory
from core.errors import PersistenceError
from ingest.types import DocumentStatus, ParsedShipmentBundle, can_transition

logger = logging.getLogger(__name__)


class DocumentStore(ABC):
    """Storage collaborator used by the document orchestrator."""

    @abstractmethod
    async def create_document(
        self,
        document_type: str,
        file_name: str,
        file_type: str,
        file_size_bytes: int,
    ) -> str:
        """Create a record in UPLOADED and return its id."""

    @abstractmethod
    async def update_document(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: Optional[str] = None,
        shipment_count: Optional[int] = None,
        parsed_date: Optional[datetime] = None,
    ) -> None:
        """Move a document to a new status; backward moves raise PersistenceError."""

    @abstractmethod
    async def save_bundles(self, document_id: str, bundles: List[ParsedShipmentBundle]) -> int:
        """Persist bundles for a document; returns how many were stored."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        """Document fields as a dict, or None."""

    @abstractmethod
    async def list_shipments(self, document_id: str) -> List[Dict[str, Any]]:
        """Stored bundles of a document, in extraction order."""


class SQLDocumentStore(DocumentStore):
    """
    DocumentStore backed by the documents/parsed_shipments tables.

    Args:
        session_factory: Async session factory (the shared one when None)
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or get_session_factory()

    async def create_document(
        self,
        document_type: str,
        file_name: str,
        file_type: str,
        file_size_bytes: int,
    ) -> str:
        document_id = str(uuid.uuid4())
        try:
            async with self._session_factory() as session:
                session.add(Document(
                    id=document_id,
                    document_type=document_type,
                    file_name=file_name,
                    file_type=file_type,
                    file_size_bytes=file_size_bytes,
                    status=DocumentStatus.UPLOADED.value,
                ))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"[DOCUMENT_MANAGER] Error creating document for {file_name}: {e}")
            raise PersistenceError(f"Could not create document record: {e}") from e

        logger.info(f"[DOCUMENT_MANAGER] Created document {document_id} for file={file_name}")
        return document_id

    async def update_document(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: Optional[str] = None,
        shipment_count: Optional[int] = None,
        parsed_date: Optional[datetime] = None,
    ) -> None:
        status = DocumentStatus(status)
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(Document).where(Document.id == document_id))
                document = result.scalar_one_or_none()
                if document is None:
                    raise PersistenceError(f"Document {document_id} not found", code="document_not_found")

                current = DocumentStatus(document.status)
                if not can_transition(current, status):
                    raise PersistenceError(
                        f"Invalid status transition {current.value} -> {status.value} for document {document_id}",
                        code="invalid_transition",
                    )

                document.status = status.value
                document.updated_at = datetime.utcnow()
                if error_message is not None:
                    document.error_message = error_message
                if shipment_count is not None:
                    document.shipment_count = shipment_count
                if parsed_date is not None:
                    document.parsed_date = parsed_date
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"[DOCUMENT_MANAGER] Error updating document {document_id}: {e}")
            raise PersistenceError(f"Could not update document {document_id}: {e}") from e

        logger.info(f"[DOCUMENT_MANAGER] Document {document_id}: {current.value} -> {status.value}")

    async def save_bundles(self, document_id: str, bundles: List[ParsedShipmentBundle]) -> int:
        if not bundles:
            return 0
        try:
            async with self._session_factory() as session:
                for bundle in bundles:
                    session.add(ParsedShipment(
                        document_id=document_id,
                        sheet_name=bundle.source_info.sheet_name,
                        row_index=bundle.source_info.row_index,
                        load_number=bundle.base.load_number,
                        order_number=bundle.base.order_number,
                        needs_review=bundle.metadata.needs_review,
                        validation_errors=list(bundle.metadata.validation_errors),
                        bundle=bundle.to_dict(),
                    ))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"[DOCUMENT_MANAGER] Error saving {len(bundles)} bundles for {document_id}: {e}")
            raise PersistenceError(f"Could not save shipments: {e}") from e

        logger.info(f"[DOCUMENT_MANAGER] Saved {len(bundles)} shipments for document {document_id}")
        return len(bundles)

    async def get_document(self, document_id: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(select(Document).where(Document.id == document_id))
                document = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read document {document_id}: {e}") from e

        if document is None:
            return None
        return {
            "id": document.id,
            "document_type": document.document_type,
            "file_name": document.file_name,
            "status": document.status,
            "error_message": document.error_message,
            "shipment_count": document.shipment_count,
            "parsed_date": document.parsed_date.isoformat() if document.parsed_date else None,
            "created_at": document.created_at.isoformat() if document.created_at else None,
            "updated_at": document.updated_at.isoformat() if document.updated_at else None,
        }

    async def list_shipments(self, document_id: str) -> List[Dict[str, Any]]:
        """Stored bundles of a document, in row order."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(ParsedShipment)
                    .where(ParsedShipment.document_id == document_id)
                    .order_by(ParsedShipment.id)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read shipments of {document_id}: {e}") from e
        return [
            {
                "row_index": row.row_index,
                "sheet_name": row.sheet_name,
                "needs_review": row.needs_review,
                "validation_errors": row.validation_errors or [],
                "bundle": row.bundle,
            }
            for row in rows
        ]
